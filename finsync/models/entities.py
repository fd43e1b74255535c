"""
Entity Models for the Finance Tracker

These models define the strict schemas for the twelve entity types a user
owns. They are designed to:
1. Enforce type safety at runtime
2. Normalize values outside enumerated domains to documented defaults
3. Serialize to the camelCase documents the entity store holds
4. Give clear validation error messages for per-record error reporting

DESIGN DECISION: Field names are snake_case in Python and camelCase on the
wire. Exported graphs, the local snapshot and the store all use the wire
names, so every model is configured with a camelCase alias generator.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from finsync.models.timestamps import Timestamp, utcnow


DEFAULT_CURRENCY = "EGP"


# =============================================================================
# ENTITY TYPES
# =============================================================================

class EntityType(str, Enum):
    """
    The twelve entity types, valued by their pluralized payload key.

    Declaration order is the order results are reported in.
    """
    CLIENTS = "clients"
    INCOME = "income"
    EXPENSES = "expenses"
    DEBTS = "debts"
    GOALS = "goals"
    INVOICES = "invoices"
    TODOS = "todos"
    LISTS = "lists"
    SAVINGS = "savings"
    SAVINGS_TRANSACTIONS = "savingsTransactions"
    OPENING_BALANCES = "openingBalances"
    EXPECTED_INCOME = "expectedIncome"


# Fields that must be unique per user, per entity type
UNIQUE_FIELDS: dict[EntityType, tuple[str, ...]] = {
    EntityType.INVOICES: ("invoiceNumber",),
    EntityType.OPENING_BALANCES: ("periodType", "period"),
    EntityType.EXPECTED_INCOME: ("clientId", "period"),
}


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class PaymentModel(str, Enum):
    FIXED = "fixed"
    FIXED_PLUS_PERCENT = "fixed_plus_percent"
    PERCENT_ONLY = "percent_only"
    COMMISSION = "commission"
    PER_PROJECT = "per_project"


class ClientService(str, Enum):
    FB_ADS = "fb_ads"
    GOOGLE_ADS = "google_ads"
    TIKTOK_ADS = "tiktok_ads"
    STRATEGY = "strategy"
    CREATIVE = "creative"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ClientStatus(str, Enum):
    ACTIVE = "active"
    HOLD = "hold"
    INACTIVE = "inactive"


class PaymentMethod(str, Enum):
    """
    How an income was received.

    Older exports carry free-text values; see normalize_payment_method.
    """
    VODAFONE_CASH = "vodafone_cash"
    BANK_TRANSFER = "bank_transfer"
    INSTAPAY = "instapay"
    CASH = "cash"
    OTHER = "other"


class ExpenseCategory(str, Enum):
    SUBSCRIPTIONS = "subscriptions"
    FEES = "fees"
    TOOLS = "tools"
    SALARIES = "salaries"
    OUTSOURCING = "outsourcing"
    ADVERTISING = "advertising"
    OFFICE_SUPPLIES = "office_supplies"
    TRAVEL = "travel"
    RENT = "rent"
    UTILITIES = "utilities"
    INTERNET_PHONE = "internet_phone"
    TRANSPORTATION = "transportation"
    OTHER = "other"


class DebtType(str, Enum):
    OWED_TO_ME = "owed_to_me"
    I_OWE = "i_owe"


class DebtStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"


class GoalType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"
    PROFIT = "profit"


class GoalPeriod(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"


class TodoPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RecurrencePattern(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class SavingType(str, Enum):
    GOLD = "gold"
    MONEY = "money"
    CERTIFICATE = "certificate"
    STOCK = "stock"


class TransactionType(str, Enum):
    """
    Savings transaction kinds.

    deposit/withdrawal are deltas; value_update replaces the balance.
    """
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    VALUE_UPDATE = "value_update"


class PeriodType(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


# =============================================================================
# NORMALIZERS
# =============================================================================

# Legacy free-text payment methods seen in older exports
PAYMENT_METHOD_ALIASES: dict[str, PaymentMethod] = {
    "bank": PaymentMethod.BANK_TRANSFER,
    "fawaterak_international": PaymentMethod.BANK_TRANSFER,
    "fawaterak": PaymentMethod.BANK_TRANSFER,
    "fawaterak international": PaymentMethod.BANK_TRANSFER,
    "vodafone_cash": PaymentMethod.VODAFONE_CASH,
    "vodafone cash": PaymentMethod.VODAFONE_CASH,
    "bank_transfer": PaymentMethod.BANK_TRANSFER,
    "bank transfer": PaymentMethod.BANK_TRANSFER,
    "instapay": PaymentMethod.INSTAPAY,
    "cash": PaymentMethod.CASH,
    "other": PaymentMethod.OTHER,
}


def normalize_payment_method(value: Any) -> PaymentMethod:
    """Map any payment method value onto the enum; unknown values become cash."""
    if isinstance(value, PaymentMethod):
        return value
    key = str(value).strip().lower() if value is not None else ""
    return PAYMENT_METHOD_ALIASES.get(key, PaymentMethod.CASH)


def normalize_period_type(value: Any) -> PeriodType:
    """'month' and anything unrecognized become monthly."""
    if isinstance(value, PeriodType):
        return value
    key = str(value).strip().lower() if value is not None else ""
    if key == PeriodType.YEARLY.value:
        return PeriodType.YEARLY
    return PeriodType.MONTHLY


def synthesize_period_value(period: GoalPeriod, created_at: datetime) -> str:
    """
    Build a Goal periodValue from its creation time.

    monthly -> "YYYY-MM", quarterly -> "YYYY-Qn", yearly -> "YYYY"
    """
    year = created_at.year
    if period == GoalPeriod.QUARTERLY:
        return f"{year}-Q{(created_at.month - 1) // 3 + 1}"
    if period == GoalPeriod.YEARLY:
        return str(year)
    return f"{year}-{created_at.month:02d}"


# =============================================================================
# ENTITY RECORDS
# =============================================================================

class EntityRecord(BaseModel):
    """
    Base for every stored record.

    Identity (the canonical id) is assigned by the store, so it is not part
    of the model. createdAt is kept from the source when present.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        use_enum_values=True,
        extra="ignore",
    )

    user_id: str = Field(
        ...,
        min_length=1,
        description="Owning user"
    )
    created_at: Timestamp = Field(default_factory=utcnow)
    updated_at: Timestamp = Field(default_factory=utcnow)

    def to_document(self) -> dict:
        """Serialize to the camelCase document the store persists."""
        return self.model_dump(by_alias=True)


class ClientRecord(EntityRecord):
    name: str = Field(default="Unnamed Client", min_length=1, max_length=200)
    email: Optional[str] = None
    phone: Optional[str] = None
    payment_model: PaymentModel = PaymentModel.FIXED
    fixed_amount: Optional[Decimal] = None
    ad_spend_percentage: Optional[Decimal] = None
    subcontractor_cost: Optional[Decimal] = None
    currency: str = DEFAULT_CURRENCY
    services: list[ClientService] = Field(default_factory=list)
    notes: Optional[str] = None
    rating: int = Field(default=3, ge=1, le=5)
    risk_level: RiskLevel = RiskLevel.MEDIUM
    status: ClientStatus = ClientStatus.ACTIVE


class IncomeRecord(EntityRecord):
    client_id: Optional[str] = None
    amount: Decimal = Decimal("0")
    currency: str = DEFAULT_CURRENCY
    payment_method: PaymentMethod = PaymentMethod.CASH
    received_date: Timestamp = Field(default_factory=utcnow)
    is_deposit: bool = False
    is_fixed_portion_only: bool = False
    tax_category: Optional[str] = None
    is_taxable: bool = True
    tax_rate: Optional[Decimal] = None
    net_amount: Optional[Decimal] = None
    fee: Optional[Decimal] = None
    ad_spend: Optional[Decimal] = None
    project_name: Optional[str] = None
    notes: Optional[str] = None

    @field_validator('payment_method', mode='before')
    @classmethod
    def normalize_method(cls, v: Any) -> PaymentMethod:
        return normalize_payment_method(v)


class ExpenseRecord(EntityRecord):
    client_id: Optional[str] = None
    amount: Decimal = Decimal("0")
    currency: str = DEFAULT_CURRENCY
    category: ExpenseCategory = ExpenseCategory.OTHER
    date: Timestamp = Field(default_factory=utcnow)
    description: Optional[str] = None
    is_recurring: bool = False
    parent_recurring_id: Optional[str] = None
    tax_category: Optional[str] = None
    is_tax_deductible: bool = False
    tax_rate: Optional[Decimal] = None
    notes: Optional[str] = None


class DebtRecord(EntityRecord):
    type: DebtType = DebtType.OWED_TO_ME
    party_name: str = Field(default="Unknown", min_length=1)
    amount: Decimal = Decimal("0")
    currency: str = DEFAULT_CURRENCY
    due_date: Timestamp = Field(default_factory=utcnow)
    status: DebtStatus = DebtStatus.PENDING
    notes: Optional[str] = None


class GoalRecord(EntityRecord):
    """
    A financial goal for one period.

    periodValue identifies the period ("2024-06", "2024-Q2", "2024") and is
    synthesized from createdAt when the source omits it.
    """
    type: GoalType = GoalType.INCOME
    target_amount: Decimal = Decimal("0")
    current_amount: Decimal = Decimal("0")
    period: GoalPeriod = GoalPeriod.MONTHLY
    period_value: Optional[str] = None
    category: Optional[str] = None
    notes: Optional[str] = None

    @model_validator(mode='after')
    def fill_period_value(self) -> 'GoalRecord':
        if not self.period_value:
            self.period_value = synthesize_period_value(
                GoalPeriod(self.period), self.created_at
            )
        return self


class InvoiceItem(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    description: Optional[str] = None
    quantity: Optional[Decimal] = None
    price: Optional[Decimal] = None
    total: Optional[Decimal] = None


class InvoiceRecord(EntityRecord):
    client_id: str = Field(..., min_length=1)
    invoice_number: str = Field(..., min_length=1, max_length=100)
    amount: Decimal = Decimal("0")
    currency: str = DEFAULT_CURRENCY
    issue_date: Timestamp = Field(default_factory=utcnow)
    due_date: Timestamp = Field(default_factory=utcnow)
    status: InvoiceStatus = InvoiceStatus.DRAFT
    items: list[InvoiceItem] = Field(default_factory=list)
    notes: Optional[str] = None


class ListRecord(EntityRecord):
    name: str = Field(default="Unnamed List", min_length=1, max_length=100)
    color: str = "indigo"


class TodoRecord(EntityRecord):
    list_id: str = Field(..., min_length=1)
    title: str = Field(default="Untitled", min_length=1)
    description: Optional[str] = None
    priority: TodoPriority = TodoPriority.MEDIUM
    category: Optional[str] = None
    due_date: Optional[Timestamp] = None
    completed: bool = False
    is_recurring: bool = False
    recurrence_pattern: Optional[RecurrencePattern] = None


class SavingRecord(EntityRecord):
    """
    A savings pot (cash, gold, certificate or stock).

    current_amount is derived from the transaction history; the value stored
    here is only a starting point until the ledger recomputes it.
    """
    name: str = Field(default="Unnamed Saving", min_length=1)
    type: SavingType = SavingType.MONEY
    currency: str = DEFAULT_CURRENCY
    initial_amount: Decimal = Decimal("0")
    current_amount: Optional[Decimal] = None
    target_amount: Optional[Decimal] = None
    target_date: Optional[Timestamp] = None
    interest_rate: Optional[Decimal] = None
    maturity_date: Optional[Timestamp] = None
    start_date: Optional[Timestamp] = None
    quantity: Optional[Decimal] = None
    price_per_unit: Optional[Decimal] = None
    notes: Optional[str] = None

    @model_validator(mode='after')
    def fill_defaults(self) -> 'SavingRecord':
        if not self.current_amount:
            self.current_amount = self.initial_amount
        if self.start_date is None:
            self.start_date = self.created_at
        return self


class SavingsTransactionRecord(EntityRecord):
    savings_id: str = Field(..., min_length=1)
    type: TransactionType = TransactionType.DEPOSIT
    amount: Decimal = Decimal("0")
    currency: str = DEFAULT_CURRENCY
    date: Timestamp = Field(default_factory=utcnow)
    price_per_unit: Optional[Decimal] = None
    quantity: Optional[Decimal] = None
    notes: Optional[str] = None


class OpeningBalanceRecord(EntityRecord):
    period_type: PeriodType = PeriodType.MONTHLY
    period: str = ""
    amount: Decimal = Decimal("0")
    currency: str = DEFAULT_CURRENCY
    notes: Optional[str] = None

    @field_validator('period_type', mode='before')
    @classmethod
    def normalize_type(cls, v: Any) -> PeriodType:
        return normalize_period_type(v)


class ExpectedIncomeRecord(EntityRecord):
    client_id: str = Field(..., min_length=1)
    period: str = ""
    expected_amount: Decimal = Decimal("0")
    currency: str = DEFAULT_CURRENCY
    notes: Optional[str] = None
    is_paid: bool = False


RECORD_MODELS: dict[EntityType, type[EntityRecord]] = {
    EntityType.CLIENTS: ClientRecord,
    EntityType.INCOME: IncomeRecord,
    EntityType.EXPENSES: ExpenseRecord,
    EntityType.DEBTS: DebtRecord,
    EntityType.GOALS: GoalRecord,
    EntityType.INVOICES: InvoiceRecord,
    EntityType.TODOS: TodoRecord,
    EntityType.LISTS: ListRecord,
    EntityType.SAVINGS: SavingRecord,
    EntityType.SAVINGS_TRANSACTIONS: SavingsTransactionRecord,
    EntityType.OPENING_BALANCES: OpeningBalanceRecord,
    EntityType.EXPECTED_INCOME: ExpectedIncomeRecord,
}
