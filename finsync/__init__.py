"""
finsync - Finance Tracker Sync Core

Data synchronization and bulk-migration core for a personal/small-business
finance tracker (clients, income, expenses, debts, goals, invoices, savings,
todos).

DESIGN PRINCIPLES:
1. Every query and mutation is scoped to one user
2. One bad record never aborts a batch
3. Derived values are recomputed, never trusted
4. Every step must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Finance Tracker Team"
