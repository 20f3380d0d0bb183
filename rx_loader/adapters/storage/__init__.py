"""Storage adapters for rx-loader.

This module contains storage adapters that implement the StoragePort interface
for reading and bulk-writing reference entities, facts and import logs.
"""

from rx_loader.adapters.storage.duckdb_adapter import DuckDBAdapter
from rx_loader.adapters.storage.postgresql_adapter import PostgreSQLAdapter

__all__ = ["DuckDBAdapter", "PostgreSQLAdapter"]
