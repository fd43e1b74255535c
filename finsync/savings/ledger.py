"""
Savings Ledger

A saving's currentAmount is never edited directly: it is derived by folding
the saving's full transaction history over its initial amount. Every
create, update or delete of a transaction triggers a recomputation that
re-reads the current transaction set, so the stored balance always equals
what a fresh fold would produce.

Fold rules, applied in ascending date order (ties keep input order):
- deposit:       balance += amount
- withdrawal:    balance -= amount
- value_update:  balance  = quantity * pricePerUnit, or amount when either
                 is missing

DESIGN DECISION: All arithmetic is Decimal. Float accumulation over a long
history drifts by cents, and the recomputed balance has to be reproducible.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import structlog

from finsync.audit.logger import AuditLogger
from finsync.concurrency import LockManager
from finsync.models.entities import (
    EntityType,
    SavingsTransactionRecord,
    TransactionType,
)
from finsync.models.timestamps import to_epoch_ms
from finsync.services.storage import EntityStoreRegistry, NotFoundError


logger = structlog.get_logger(__name__)


# =============================================================================
# PURE FUNCTIONS
# =============================================================================

def _to_decimal(value: Any) -> Decimal:
    """Decimal for a stored amount; missing or garbage values count as 0."""
    if value is None or isinstance(value, bool):
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return Decimal("0")


def _optional_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return _to_decimal(value)


def order_transactions(transactions: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Ascending by date; sorted() is stable so equal dates keep input order."""
    return sorted(transactions, key=lambda tx: to_epoch_ms(tx.get("date")) or 0.0)


def recompute(saving: dict[str, Any], transactions: list[dict[str, Any]]) -> Decimal:
    """
    Balance of a saving after applying its transactions.

    Pure: the same saving and transaction set always give the same result,
    whatever order the transactions are passed in.
    """
    balance = _to_decimal(saving.get("initialAmount"))

    for tx in order_transactions(transactions):
        amount = _to_decimal(tx.get("amount"))
        kind = tx.get("type")

        if kind == TransactionType.DEPOSIT.value:
            balance += amount
        elif kind == TransactionType.WITHDRAWAL.value:
            balance -= amount
        elif kind == TransactionType.VALUE_UPDATE.value:
            quantity = _optional_decimal(tx.get("quantity"))
            price = _optional_decimal(tx.get("pricePerUnit"))
            if quantity is not None and price is not None:
                balance = quantity * price
            else:
                balance = amount

    return balance


def latest_holdings(transactions: list[dict[str, Any]]) -> dict[str, Decimal]:
    """
    quantity and pricePerUnit as of the latest transaction carrying each.

    Used for gold and stock savings, where the holding is tracked in units.
    """
    holdings: dict[str, Decimal] = {}
    for tx in order_transactions(transactions):
        for field in ("quantity", "pricePerUnit"):
            value = _optional_decimal(tx.get(field))
            if value is not None:
                holdings[field] = value
    return holdings


# =============================================================================
# SERVICE
# =============================================================================

class SavingsLedgerService:
    """
    Transaction writes that keep the saving's balance derived.

    Write operations hold the user lock (so they cannot interleave with a
    migration) and then the saving lock during the recompute. The importer
    already holds the user lock and calls recompute_saving directly.
    """

    def __init__(
        self,
        stores: EntityStoreRegistry,
        locks: Optional[LockManager] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._savings = stores[EntityType.SAVINGS]
        self._transactions = stores[EntityType.SAVINGS_TRANSACTIONS]
        self._locks = locks or LockManager()
        self._audit = audit_logger or AuditLogger()

    async def _transactions_for(self, user_id: str, savings_id: str) -> list[dict[str, Any]]:
        return [
            tx for tx in await self._transactions.find_by_user(user_id)
            if tx.get("savingsId") == savings_id
        ]

    async def recompute_saving(self, user_id: str, savings_id: str) -> Optional[dict[str, Any]]:
        """
        Re-derive and store one saving's balance.

        Returns:
            The updated saving, or None if it no longer exists
        """
        async with self._locks.for_saving(user_id, savings_id):
            saving = await self._savings.find_one(user_id, savings_id)
            if saving is None:
                logger.info("recompute_skipped_missing_saving", user_id=user_id, savings_id=savings_id)
                return None

            transactions = await self._transactions_for(user_id, savings_id)
            amount = recompute(saving, transactions)
            updated = await self._savings.update(
                user_id,
                savings_id,
                {"currentAmount": amount, **latest_holdings(transactions)},
            )

        await self._audit.log_savings_recomputed(
            user_id=user_id,
            savings_id=savings_id,
            current_amount=str(amount),
            transaction_count=len(transactions),
        )
        return updated

    async def create_transaction(self, user_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """
        Record a transaction against an existing saving.

        Raises:
            NotFoundError: If the saving doesn't exist for this user
            pydantic.ValidationError: If the transaction is malformed
        """
        record = SavingsTransactionRecord.model_validate({**data, "userId": user_id})

        async with self._locks.for_user(user_id):
            if await self._savings.find_one(user_id, record.savings_id) is None:
                raise NotFoundError("Savings not found")
            created = await self._transactions.create(record.to_document())
            await self.recompute_saving(user_id, record.savings_id)
        return created

    async def update_transaction(
        self,
        user_id: str,
        transaction_id: str,
        changes: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Change a transaction and recompute the balance it belongs to.

        Moving a transaction to another saving recomputes both.
        """
        async with self._locks.for_user(user_id):
            existing = await self._transactions.find_one(user_id, transaction_id)
            if existing is None:
                raise NotFoundError("Transaction not found")

            record = SavingsTransactionRecord.model_validate(
                {**existing, **changes, "userId": user_id}
            )
            if record.savings_id != existing.get("savingsId"):
                if await self._savings.find_one(user_id, record.savings_id) is None:
                    raise NotFoundError("Savings not found")

            updated = await self._transactions.update(
                user_id, transaction_id, record.to_document()
            )
            for savings_id in dict.fromkeys([existing.get("savingsId"), record.savings_id]):
                if savings_id:
                    await self.recompute_saving(user_id, savings_id)
        return updated

    async def delete_transaction(self, user_id: str, transaction_id: str) -> bool:
        async with self._locks.for_user(user_id):
            existing = await self._transactions.find_one(user_id, transaction_id)
            if existing is None:
                return False
            await self._transactions.delete(user_id, transaction_id)
            await self.recompute_saving(user_id, existing["savingsId"])
        return True

    async def delete_saving(self, user_id: str, savings_id: str) -> int:
        """
        Delete a saving together with its transactions.

        Returns:
            Number of transactions removed

        Raises:
            NotFoundError: If the saving doesn't exist for this user
        """
        async with self._locks.for_user(user_id):
            async with self._locks.for_saving(user_id, savings_id):
                if await self._savings.find_one(user_id, savings_id) is None:
                    raise NotFoundError("Saving not found")
                transactions = await self._transactions_for(user_id, savings_id)
                for tx in transactions:
                    await self._transactions.delete(user_id, tx["id"])
                await self._savings.delete(user_id, savings_id)
        return len(transactions)
