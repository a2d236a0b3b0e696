"""
Tests for the datasource catalog, DuckDB adapter and database gateway.
"""

import pytest

from modelgate.adapters import DatabaseGateway, Datasource, list_adapters
from modelgate.adapters.base import ConnectionError, QueryError
from modelgate.adapters.duckdb_adapter import DuckDBAdapter
from modelgate.cache import CacheConfig
from modelgate.catalog import get_datasource_defs, load_catalog
from modelgate.errors import ErrorCode, ModelGateError


CATALOG_YAML = """
datasources:
  - id: local
    name: Local
    engine: duckdb
    config:
      database: ":memory:"
      init_sql: "CREATE TABLE t AS SELECT 1 AS n"
  - id: ch
    name: ClickHouse
    engine: clickhouse
    dialect: ClickHouse
"""


class TestCatalog:
    """Tests for YAML datasource loading."""

    def test_missing_file(self, tmp_path):
        """Test that a missing catalog yields no datasources."""
        assert load_catalog(tmp_path / "nope.yaml") == {"datasources": []}

    def test_entries_need_id(self):
        with pytest.raises(ValueError):
            get_datasource_defs({"datasources": [{"name": "x"}]})

    def test_gateway_from_catalog(self, tmp_path):
        """Test building a gateway from a YAML file."""
        path = tmp_path / "datasources.yaml"
        path.write_text(CATALOG_YAML)
        gateway = DatabaseGateway.from_catalog(path)

        assert [ds.id for ds in gateway.list_datasources()] == ["local", "ch"]
        assert gateway.get_datasource("ch").sql_dialect == "clickhouse"
        assert gateway.get_datasource("local").sql_dialect == "duckdb"
        assert gateway.execute("local", "SELECT n FROM t").rows == [[1]]
        gateway.close_all()


class TestDuckDBAdapter:
    """Tests for the DuckDB adapter."""

    def test_context_manager(self):
        """Test connect and disconnect via with."""
        with DuckDBAdapter({"database": ":memory:"}) as adapter:
            result = adapter.execute("SELECT 1 + 1 AS answer")
            assert result.column_names == ["answer"]
            assert result.rows == [[2]]
            assert result.row_count == 1
        assert adapter.is_connected() is False

    def test_limit_fetches_at_most_n_rows(self):
        with DuckDBAdapter() as adapter:
            result = adapter.execute("SELECT * FROM range(10)", limit=3)
            assert result.row_count == 3

    def test_query_error(self):
        with DuckDBAdapter() as adapter:
            with pytest.raises(QueryError):
                adapter.execute("SELECT * FROM missing_table")

    def test_not_connected(self):
        with pytest.raises(QueryError):
            DuckDBAdapter().execute("SELECT 1")


class TestDatabaseGateway:
    """Tests for DatabaseGateway."""

    def test_unknown_datasource(self, gateway):
        with pytest.raises(ModelGateError) as exc:
            gateway.execute("nope", "SELECT 1")
        assert exc.value.code == ErrorCode.ERR_DATASOURCE_NOT_FOUND

    def test_unsupported_engine(self):
        """Test that an unregistered engine fails as a connection error."""
        gateway = DatabaseGateway([Datasource(id="x", name="X", engine="oracle")])
        with pytest.raises(ConnectionError):
            gateway.execute("x", "SELECT 1")

    def test_adapter_reused(self, gateway):
        """Test that one adapter serves repeated calls."""
        first = gateway.get_adapter("warehouse")
        assert gateway.get_adapter("warehouse") is first

    def test_unhealthy_adapter_replaced(self, gateway):
        """Test reconnecting after the cached connection dies."""
        first = gateway.get_adapter("warehouse")
        first.disconnect()
        second = gateway.get_adapter("warehouse")
        assert second is not first
        assert gateway.execute("warehouse", "SELECT COUNT(*) FROM orders").rows == [[4]]

    def test_status(self, gateway):
        gateway.execute("warehouse", "SELECT 1")
        status = gateway.status()
        assert "duckdb" in status["registered_engines"]
        assert status["datasources"] == ["warehouse"]
        assert status["connected"]["warehouse"]["connected"] is True

    def test_close_all(self, gateway):
        gateway.execute("warehouse", "SELECT 1")
        assert gateway.close_all() == 1
        assert gateway.close_all() == 0

    def test_registry(self):
        assert "duckdb" in list_adapters()


class TestCacheConfig:
    """Tests for cache configuration sources."""

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("CACHE_ENABLED", "false")
        monkeypatch.setenv("CACHE_MAX_ENTRIES", "10")
        monkeypatch.setenv("CACHE_TTL_SECONDS", "5")
        assert CacheConfig.from_env() == CacheConfig(enabled=False, max_entries=10, ttl_seconds=5)

    def test_from_settings(self, settings):
        config = CacheConfig.from_settings(settings)
        assert (config.enabled, config.max_entries, config.ttl_seconds) == (True, 100, 300)
