"""
Backoffice Kernel - accounting-consistency core of the order/invoice/inventory
back office.

- Append-only stock ledger with balances derived by replay
- Invoice/payment reconciliation under row-level locks
- Gap-safe per-tenant document numbering
- Fixed-point decimal arithmetic for every amount and quantity
- Before/after audit snapshots of every mutation
"""

__version__ = "0.1.0"
