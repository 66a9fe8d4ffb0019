"""Kernel services: flush-only writers plus the transaction-owning AccountingCore."""
