"""
Pytest configuration and shared fixtures for ModelGate tests.
"""

import pytest
from fastapi.testclient import TestClient

from modelgate.adapters.factory import DatabaseGateway, Datasource
from modelgate.cache import CacheConfig, ResultCache
from modelgate.core.config import Settings
from modelgate.modeling.calculated_fields import CalculatedFieldStore
from modelgate.modeling.model_store import ModelStore
from modelgate.modeling.semantic_model import FieldRole


SEED_SQL = """
CREATE TABLE customers AS
SELECT * FROM (VALUES
  (1, 'Acme', 'EU'),
  (2, 'Globex', 'US'),
  (3, 'Initech', 'US')
) t(id, name, region);

CREATE TABLE orders AS
SELECT * FROM (VALUES
  (1, 1, 100.0, 'done', TIMESTAMP '2025-12-01 10:00:00'),
  (2, 1, 50.0, 'open', TIMESTAMP '2025-12-02 11:30:00'),
  (3, 2, 200.0, 'done', TIMESTAMP '2025-12-02 15:45:00'),
  (4, 3, 25.5, 'done', TIMESTAMP '2025-12-03 09:15:00')
) t(id, customer_id, amount, status, created_at);
"""


@pytest.fixture
def db_path(tmp_path):
    """Path of a fresh SQLite database for model storage."""
    return str(tmp_path / "modelgate.db")


@pytest.fixture
def datasource():
    """In-memory DuckDB datasource seeded with orders and customers."""
    return Datasource(
        id="warehouse",
        name="Test Warehouse",
        engine="duckdb",
        dialect="duckdb",
        config={"database": ":memory:", "init_sql": SEED_SQL},
    )


@pytest.fixture
def gateway(datasource):
    """Gateway over the seeded datasource."""
    gw = DatabaseGateway([datasource])
    yield gw
    gw.close_all()


@pytest.fixture
def store(db_path, gateway):
    """Model store bound to the test gateway."""
    return ModelStore(db_path, gateway=gateway)


@pytest.fixture
def calc_store(db_path):
    """Calculated field store."""
    return CalculatedFieldStore(db_path)


@pytest.fixture
def cache():
    """Result cache with default limits."""
    return ResultCache(CacheConfig(enabled=True, max_entries=500, ttl_seconds=300))


@pytest.fixture
def settings(tmp_path, db_path):
    """Settings pointing at temporary storage."""
    return Settings(
        db_path=db_path,
        datasources_file=str(tmp_path / "datasources.yaml"),
        cache_enabled=True,
        cache_max_entries=100,
        cache_ttl_seconds=300,
    )


@pytest.fixture
def client(settings, gateway):
    """Create a test client for the FastAPI app."""
    from modelgate.main import create_app

    app = create_app(settings, gateway=gateway)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def star_model(store):
    """
    Model with orders -> customers, built through the store.

    Returns a dict of ids: model, tables, fields and the relationship.
    """
    model = store.create_model("Sales", "warehouse")
    orders = store.add_table(model.id, "orders", "ord1", is_primary=True)
    customers = store.add_table(model.id, "customers", "cus2", sort_order=1)

    order_id = store.add_field(orders.id, "Order ID", column_name="id")
    amount = store.add_field(orders.id, "Amount", column_name="amount", role=FieldRole.MEASURE)
    status = store.add_field(orders.id, "Status", column_name="status")
    name = store.add_field(customers.id, "Name", column_name="name")
    region = store.add_field(customers.id, "Region", column_name="region")

    rel = store.add_relationship(model.id, orders.id, "customer_id", customers.id, "id")

    return {
        "model": model.id,
        "orders": orders.id,
        "customers": customers.id,
        "order_id": order_id.id,
        "amount": amount.id,
        "status": status.id,
        "name": name.id,
        "region": region.id,
        "relationship": rel.id,
    }
