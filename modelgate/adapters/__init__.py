"""
Database Adapters for ModelGate

This package provides the database gateway used by the semantic layer.
Each adapter handles:
- Connection management
- Query execution with a row limit
- Schema introspection

Supported Engines:
- DuckDB (built-in)
"""

from modelgate.adapters.base import (
    BaseAdapter, QueryResult, TableInfo, ColumnInfo,
    AdapterError, ConnectionError, QueryError
)
from modelgate.adapters.factory import (
    DatabaseGateway,
    Datasource,
    create_adapter,
    register_adapter,
    list_adapters,
)

__all__ = [
    "BaseAdapter",
    "QueryResult",
    "TableInfo",
    "ColumnInfo",
    "AdapterError",
    "ConnectionError",
    "QueryError",
    "DatabaseGateway",
    "Datasource",
    "create_adapter",
    "register_adapter",
    "list_adapters",
]
