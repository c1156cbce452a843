"""Services package."""

from teambudget.services.storage import (
    BudgetStorageInterface,
    ConnectionError,
    FallbackBudgetStorage,
    LocalBudgetStorage,
    LocalKeyValueStore,
    PersistenceGateway,
    SchemaError,
    SqlBudgetStorage,
    SqlClient,
    StorageError,
)

__all__ = [
    "BudgetStorageInterface",
    "ConnectionError",
    "FallbackBudgetStorage",
    "LocalBudgetStorage",
    "LocalKeyValueStore",
    "PersistenceGateway",
    "SchemaError",
    "SqlBudgetStorage",
    "SqlClient",
    "StorageError",
]
