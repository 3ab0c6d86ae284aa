"""Infrastructure Layer - ledger storage backends."""
from .ledger_store import (
    InMemoryLedgerStore,
    LedgerStore,
    LedgerStoreBase,
    PaymentAndRegistration,
)
from .sql_store import SqlLedgerStore

__all__ = [
    "InMemoryLedgerStore",
    "LedgerStore",
    "LedgerStoreBase",
    "PaymentAndRegistration",
    "SqlLedgerStore",
]
