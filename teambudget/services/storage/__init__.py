"""
Storage Services Package

Provides the abstract backend interface, the remote relational and local
key/value backends, the fallback decorator over them, and the
persistence gateway callers actually use.
"""

from teambudget.services.storage.interface import (
    BudgetStorageInterface,
    ConnectionError,
    SchemaError,
    StorageError,
)
from teambudget.services.storage.local import (
    LocalBudgetStorage,
    LocalKeyValueStore,
)
from teambudget.services.storage.sql import (
    SqlBudgetStorage,
    SqlClient,
)
from teambudget.services.storage.fallback import FallbackBudgetStorage
from teambudget.services.storage.gateway import PersistenceGateway, new_record_id

__all__ = [
    # Interfaces
    "BudgetStorageInterface",
    # Exceptions
    "ConnectionError",
    "SchemaError",
    "StorageError",
    # Backends
    "LocalBudgetStorage",
    "LocalKeyValueStore",
    "SqlBudgetStorage",
    "SqlClient",
    # Composition
    "FallbackBudgetStorage",
    "PersistenceGateway",
    "new_record_id",
]
