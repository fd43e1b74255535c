"""Savings balances derived from transaction history."""

from finsync.savings.ledger import (
    SavingsLedgerService,
    latest_holdings,
    order_transactions,
    recompute,
)

__all__ = [
    "SavingsLedgerService",
    "latest_holdings",
    "order_transactions",
    "recompute",
]
