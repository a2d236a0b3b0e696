"""
Base Adapter Interface for ModelGate

Every database engine behind the gateway implements this interface, so the
explore service and auto-import never talk to a driver directly.

DESIGN PRINCIPLES:
-----------------
1. Results are returned as ordered rows (lists) plus typed column metadata
2. Errors are wrapped in AdapterError for consistent handling
3. Retry, timeout and cancellation policy belong to the adapter, not callers
4. Schema introspection returns engine-agnostic TableInfo/ColumnInfo
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class AdapterError(Exception):
    """Base exception for adapter errors."""

    def __init__(self, message: str, engine: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.engine = engine
        self.original_error = original_error


class ConnectionError(AdapterError):
    """Failed to connect to database."""
    pass


class QueryError(AdapterError):
    """Query execution failed."""
    pass


@dataclass
class QueryResult:
    """
    Standardized result from query execution.

    Attributes:
        columns: Column metadata as [{"name": ..., "type": ...}]
        rows: Result rows, each a list aligned with columns
        row_count: Number of rows returned
        execution_ms: Execution time in milliseconds
    """
    columns: List[Dict[str, str]]
    rows: List[List[Any]]
    row_count: int = 0
    execution_ms: float = 0.0

    def __post_init__(self):
        self.row_count = len(self.rows)

    @property
    def column_names(self) -> List[str]:
        return [c["name"] for c in self.columns]


@dataclass
class ColumnInfo:
    """Physical column metadata."""
    name: str
    data_type: str
    nullable: bool = True
    ordinal_position: int = 0

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "dataType": self.data_type,
            "nullable": self.nullable,
            "ordinalPosition": self.ordinal_position,
        }


@dataclass
class TableInfo:
    """Physical table/view metadata."""
    schema_name: Optional[str]
    table_name: str
    table_type: str = "TABLE"
    columns: List[ColumnInfo] = field(default_factory=list)

    @property
    def full_name(self) -> str:
        if self.schema_name:
            return f"{self.schema_name}.{self.table_name}"
        return self.table_name

    def to_dict(self, include_columns: bool = True) -> dict:
        result = {
            "schemaName": self.schema_name,
            "tableName": self.table_name,
            "fullName": self.full_name,
            "tableType": self.table_type,
        }
        if include_columns:
            result["columns"] = [c.to_dict() for c in self.columns]
        return result


class BaseAdapter(ABC):
    """
    Abstract base class for database adapters.

    Each adapter must implement:
    - connect(): Establish database connection
    - disconnect(): Close connection
    - execute(): Run a query, capped at a row limit
    - health_check(): Verify connection is alive
    - introspect(): Describe tables and columns

    Usage:
        with DuckDBAdapter({"database": ":memory:"}) as adapter:
            result = adapter.execute("SELECT 1 AS answer")
    """

    # Engine identifier (e.g., "duckdb", "postgres")
    ENGINE: str = "base"

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self._connection = None
        self._connected = False
        self._last_used = None

    @abstractmethod
    def connect(self) -> None:
        """
        Establish connection to database.

        Raises:
            ConnectionError: If connection fails
        """
        pass

    @abstractmethod
    def disconnect(self) -> None:
        """
        Close database connection.

        Should be safe to call even if not connected.
        """
        pass

    @abstractmethod
    def execute(self, sql: str, limit: Optional[int] = None) -> QueryResult:
        """
        Execute SQL query and return results.

        Args:
            sql: SQL query text
            limit: Maximum number of rows to fetch (None for all)

        Returns:
            QueryResult with columns, rows and timing

        Raises:
            QueryError: If query execution fails
        """
        pass

    @abstractmethod
    def health_check(self) -> bool:
        """Return True if the connection is alive and usable."""
        pass

    @abstractmethod
    def introspect(self, schema_name: Optional[str] = None) -> List[TableInfo]:
        """
        Describe the tables visible to this connection.

        Args:
            schema_name: Restrict to one schema (None for all user schemas)

        Returns:
            TableInfo list with columns populated
        """
        pass

    def is_connected(self) -> bool:
        """Check if adapter has an active connection."""
        return self._connected

    def get_engine_info(self) -> Dict[str, Any]:
        """Get information about this adapter/engine."""
        return {
            "engine": self.ENGINE,
            "connected": self._connected,
            "last_used": self._last_used.isoformat() if self._last_used else None
        }

    def _update_last_used(self):
        self._last_used = datetime.now(timezone.utc)

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()
        return False
