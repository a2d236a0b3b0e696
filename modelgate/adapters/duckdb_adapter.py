"""
DuckDB Adapter for ModelGate

DuckDB is an embedded analytical database, used for:
- Local development and demos
- Tests without infrastructure
- Small to medium datasets

Connection modes:
- In-memory (default): Fast, ephemeral
- File-based: Persistent, shareable
"""

import time
import logging
from typing import Any, Dict, List, Optional

import duckdb

from modelgate.adapters.base import (
    BaseAdapter, QueryResult, TableInfo, ColumnInfo, ConnectionError, QueryError
)

logger = logging.getLogger(__name__)


INTROSPECT_SQL = """
    SELECT t.table_schema, t.table_name, t.table_type,
           c.column_name, c.data_type, c.is_nullable, c.ordinal_position
    FROM information_schema.tables t
    JOIN information_schema.columns c
      ON c.table_schema = t.table_schema AND c.table_name = t.table_name
    WHERE t.table_schema NOT IN ('information_schema', 'pg_catalog')
"""


class DuckDBAdapter(BaseAdapter):
    """
    Adapter for DuckDB embedded database.

    Config options:
        database: Path to database file, or ":memory:" (default)
        read_only: Open in read-only mode (default: False)

    Example:
        adapter = DuckDBAdapter({"database": ":memory:"})
        adapter.connect()
        result = adapter.execute("SELECT 1 + 1 AS answer")
    """

    ENGINE = "duckdb"

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__(config or {})
        self.database = self.config.get("database", ":memory:")
        self.read_only = self.config.get("read_only", False)

    def connect(self) -> None:
        """Connect to DuckDB database."""
        try:
            self._connection = duckdb.connect(
                database=self.database,
                read_only=self.read_only
            )
            self._connected = True
            logger.info(f"DuckDB connected: {self.database}")
        except duckdb.Error as e:
            raise ConnectionError(
                f"Failed to connect to DuckDB: {e}",
                engine=self.ENGINE,
                original_error=e
            )

        init_script = self.config.get("init_sql")
        if init_script:
            self.execute_script(init_script)

    def disconnect(self) -> None:
        """Close DuckDB connection."""
        if self._connection:
            try:
                self._connection.close()
            except duckdb.Error as e:
                logger.warning(f"Error closing DuckDB connection: {e}")
            finally:
                self._connection = None
                self._connected = False

    def execute(self, sql: str, limit: Optional[int] = None) -> QueryResult:
        """Execute SQL query on DuckDB, fetching at most `limit` rows."""
        if not self._connected or not self._connection:
            raise QueryError("Not connected to DuckDB", engine=self.ENGINE)

        self._update_last_used()
        start_time = time.perf_counter()

        try:
            cursor = self._connection.execute(sql)
            description = cursor.description or []
            if limit is not None:
                raw_rows = cursor.fetchmany(limit)
            else:
                raw_rows = cursor.fetchall()
        except duckdb.Error as e:
            raise QueryError(
                f"DuckDB query failed: {e}",
                engine=self.ENGINE,
                original_error=e
            )

        columns = [
            {"name": col[0], "type": str(col[1]).lower()}
            for col in description
        ]
        execution_ms = (time.perf_counter() - start_time) * 1000

        return QueryResult(
            columns=columns,
            rows=[list(r) for r in raw_rows],
            execution_ms=round(execution_ms, 3),
        )

    def health_check(self) -> bool:
        """Check DuckDB connection health."""
        if not self._connected or not self._connection:
            return False

        try:
            self._connection.execute("SELECT 1").fetchone()
            return True
        except duckdb.Error:
            return False

    def introspect(self, schema_name: Optional[str] = None) -> List[TableInfo]:
        """Read tables and columns from information_schema."""
        sql = INTROSPECT_SQL
        params: List[Any] = []
        if schema_name:
            sql += " AND t.table_schema = ?"
            params.append(schema_name)
        sql += " ORDER BY t.table_schema, t.table_name, c.ordinal_position"

        try:
            rows = self._connection.execute(sql, params).fetchall()
        except duckdb.Error as e:
            raise QueryError(
                f"DuckDB introspection failed: {e}",
                engine=self.ENGINE,
                original_error=e
            )

        tables: Dict[tuple, TableInfo] = {}
        for schema, table, table_type, col, data_type, nullable, position in rows:
            key = (schema, table)
            if key not in tables:
                table_type = (table_type or "TABLE").upper()
                if table_type == "BASE TABLE":
                    table_type = "TABLE"
                tables[key] = TableInfo(
                    schema_name=schema,
                    table_name=table,
                    table_type=table_type,
                )
            tables[key].columns.append(ColumnInfo(
                name=col,
                data_type=str(data_type).lower(),
                nullable=str(nullable).upper() == "YES",
                ordinal_position=position,
            ))

        return list(tables.values())

    def execute_script(self, script: str) -> None:
        """
        Execute multiple SQL statements (for setup/seeding).
        """
        if not self._connected or not self._connection:
            raise QueryError("Not connected to DuckDB", engine=self.ENGINE)

        try:
            self._connection.execute(script)
        except duckdb.Error as e:
            raise QueryError(
                f"DuckDB script execution failed: {e}",
                engine=self.ENGINE,
                original_error=e
            )
