"""
Adapter Factory and Database Gateway for ModelGate

The gateway is the only way the semantic layer reaches a database:
- execute(datasource_id, sql, limit) -> QueryResult
- introspect(datasource_id) -> [TableInfo]

Adapters are created lazily per datasource and reused while healthy.

Usage:
    gateway = DatabaseGateway.from_catalog("datasources.yaml")
    result = gateway.execute("warehouse", "SELECT 1", limit=10)
"""

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Type, Union

from modelgate.adapters.base import BaseAdapter, QueryResult, TableInfo, ConnectionError
from modelgate.catalog import load_catalog, get_datasource_defs
from modelgate.errors import datasource_not_found

logger = logging.getLogger(__name__)


# =============================================================================
# ADAPTER REGISTRY
# =============================================================================

# Map of engine name -> adapter class
_ADAPTER_REGISTRY: Dict[str, Type[BaseAdapter]] = {}


def register_adapter(engine: str, adapter_class: Type[BaseAdapter]) -> None:
    """
    Register an adapter class for an engine.

    Args:
        engine: Engine identifier (e.g., "duckdb")
        adapter_class: Adapter class to use for this engine
    """
    _ADAPTER_REGISTRY[engine.lower()] = adapter_class
    logger.debug(f"Registered adapter for engine: {engine}")


def list_adapters() -> List[str]:
    """Get list of registered adapter engines."""
    return list(_ADAPTER_REGISTRY.keys())


def create_adapter(engine: str, config: Dict[str, Any]) -> BaseAdapter:
    """
    Create and connect an adapter for the specified engine.

    Raises:
        ConnectionError: If engine not supported or connection fails
    """
    engine_lower = engine.lower()

    if engine_lower not in _ADAPTER_REGISTRY:
        available = ", ".join(list_adapters())
        raise ConnectionError(
            f"Unsupported engine: {engine}. Available: {available}",
            engine=engine
        )

    adapter = _ADAPTER_REGISTRY[engine_lower](config)
    adapter.connect()
    return adapter


# =============================================================================
# DATABASE GATEWAY
# =============================================================================

@dataclass
class Datasource:
    """A configured physical datasource."""
    id: str
    name: str
    engine: str
    dialect: Optional[str] = None
    config: Dict[str, Any] = field(default_factory=dict)

    @property
    def sql_dialect(self) -> str:
        """sqlglot dialect name used to render SQL for this datasource."""
        return (self.dialect or self.engine).lower()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "engine": self.engine,
            "dialect": self.sql_dialect,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Datasource":
        return cls(
            id=str(data["id"]),
            name=data.get("name", str(data["id"])),
            engine=data.get("engine", data.get("type", "duckdb")),
            dialect=data.get("dialect"),
            config=data.get("config", {}) or {},
        )


class DatabaseGateway:
    """
    Executes SQL and introspects schemas for configured datasources.

    Thread-safe: adapter creation is serialized per gateway.
    """

    def __init__(self, datasources: Iterable[Datasource] = ()):
        self._datasources: Dict[str, Datasource] = {}
        self._adapters: Dict[str, BaseAdapter] = {}
        self._lock = threading.RLock()
        for ds in datasources:
            self.add_datasource(ds)

    @classmethod
    def from_catalog(cls, path: Union[str, Path]) -> "DatabaseGateway":
        defs = get_datasource_defs(load_catalog(path))
        gateway = cls(Datasource.from_dict(d) for d in defs)
        logger.info(f"Loaded {len(defs)} datasource(s) from {path}")
        return gateway

    def add_datasource(self, datasource: Datasource) -> None:
        with self._lock:
            self._datasources[datasource.id] = datasource
            stale = self._adapters.pop(datasource.id, None)
        if stale:
            stale.disconnect()

    def get_datasource(self, datasource_id: str) -> Datasource:
        ds = self._datasources.get(str(datasource_id))
        if ds is None:
            raise datasource_not_found(str(datasource_id), list(self._datasources.keys()))
        return ds

    def list_datasources(self) -> List[Datasource]:
        return list(self._datasources.values())

    def get_adapter(self, datasource_id: str) -> BaseAdapter:
        """Get a connected adapter, reconnecting if the cached one is unhealthy."""
        ds = self.get_datasource(datasource_id)

        with self._lock:
            adapter = self._adapters.get(ds.id)
            if adapter is not None:
                if adapter.health_check():
                    return adapter
                logger.warning(f"Cached adapter unhealthy, reconnecting: {ds.id}")
                adapter.disconnect()
                del self._adapters[ds.id]

            adapter = create_adapter(ds.engine, ds.config)
            self._adapters[ds.id] = adapter
            return adapter

    def execute(self, datasource_id: str, sql: str, limit: Optional[int] = None) -> QueryResult:
        """
        Execute SQL against a datasource.

        Raises:
            ModelGateError: unknown datasource
            AdapterError: connection or query failure, unchanged
        """
        adapter = self.get_adapter(datasource_id)
        return adapter.execute(sql, limit=limit)

    def introspect(self, datasource_id: str, schema_name: Optional[str] = None) -> List[TableInfo]:
        adapter = self.get_adapter(datasource_id)
        return adapter.introspect(schema_name)

    def close_all(self) -> int:
        """Close all cached adapters. Returns number closed."""
        with self._lock:
            adapters = list(self._adapters.values())
            self._adapters.clear()
        for adapter in adapters:
            adapter.disconnect()
        return len(adapters)

    def status(self) -> Dict[str, Any]:
        return {
            "registered_engines": list_adapters(),
            "datasources": [ds.id for ds in self._datasources.values()],
            "connected": {
                key: adapter.get_engine_info()
                for key, adapter in self._adapters.items()
            },
        }


# =============================================================================
# AUTO-REGISTER BUILT-IN ADAPTERS
# =============================================================================

def _register_builtin_adapters():
    """Register all built-in adapters."""
    from modelgate.adapters.duckdb_adapter import DuckDBAdapter
    register_adapter("duckdb", DuckDBAdapter)


_register_builtin_adapters()
