"""
Tests for semantic model persistence.
"""

import pytest

from modelgate.errors import ErrorCode, ModelGateError
from modelgate.modeling.model_store import ModelStore
from modelgate.modeling.semantic_model import FieldRole, ModelField


class TestModels:
    """Tests for model CRUD."""

    def test_create_and_get(self, store):
        """Test that a created model can be loaded."""
        model = store.create_model("Sales", "warehouse", description="Orders", owner_id="u1")
        loaded = store.require_model(model.id)
        assert loaded.name == "Sales"
        assert loaded.description == "Orders"
        assert loaded.datasource_id == "warehouse"
        assert loaded.tables == []

    def test_unknown_datasource_rejected(self, store):
        """Test that models must point at a configured datasource."""
        with pytest.raises(ModelGateError) as exc:
            store.create_model("Sales", "nowhere")
        assert exc.value.code == ErrorCode.ERR_DATASOURCE_NOT_FOUND
        assert store.list_models() == []

    def test_without_gateway_any_datasource(self, db_path):
        """Test that a store without a gateway does not check datasources."""
        bare = ModelStore(db_path)
        assert bare.create_model("Sales", "anything").datasource_id == "anything"

    def test_list_by_owner(self, store):
        """Test filtering models by owner."""
        store.create_model("A", "warehouse", owner_id="u1")
        store.create_model("B", "warehouse", owner_id="u2")
        assert [m.name for m in store.list_models(owner_id="u1")] == ["A"]
        assert len(store.list_models()) == 2

    def test_update(self, store):
        """Test partial model updates."""
        model = store.create_model("Sales", "warehouse", description="keep")
        store.update_model(model.id, name="Revenue", is_published=True)
        loaded = store.require_model(model.id)
        assert loaded.name == "Revenue"
        assert loaded.description == "keep"
        assert loaded.is_published is True

    def test_missing_model(self, store):
        """Test the 404 for unknown models."""
        with pytest.raises(ModelGateError) as exc:
            store.require_model("missing")
        assert exc.value.status_code == 404
        assert exc.value.code == ErrorCode.ERR_MODEL_NOT_FOUND

    def test_delete_cascades(self, store, star_model):
        """Test that deleting a model removes its children."""
        assert store.delete_model(star_model["model"]) is True
        assert store.get_model(star_model["model"]) is None
        with pytest.raises(ModelGateError):
            store.find_model_for_field(star_model["amount"])
        assert store.delete_model(star_model["model"]) is False


class TestTables:
    """Tests for tables within a model."""

    def test_duplicate_alias(self, store, star_model):
        """Test that aliases are unique within a model."""
        with pytest.raises(ModelGateError) as exc:
            store.add_table(star_model["model"], "returns", "ord1")
        assert exc.value.status_code == 409
        assert exc.value.code == ErrorCode.ERR_DUPLICATE_ALIAS

    def test_alias_reusable_across_models(self, store, star_model):
        """Test that another model may use the same alias."""
        other = store.create_model("Other", "warehouse")
        table = store.add_table(other.id, "orders", "ord1")
        assert table.alias == "ord1"

    def test_add_with_fields(self, store):
        """Test adding a table together with its fields."""
        model = store.create_model("Sales", "warehouse")
        table = store.add_table(model.id, "orders", "ord1", fields=[
            ModelField(id="f1", table_id="", label="Amount", column_name="amount", role=FieldRole.MEASURE),
        ])
        loaded = store.require_model(model.id).get_table(table.id)
        assert loaded.fields[0].table_id == table.id
        assert loaded.fields[0].aggregation == "SUM"

    def test_remove_table_cascades(self, store, star_model):
        """Test that removing a table drops its fields and relationships."""
        store.remove_table(star_model["customers"])
        model = store.require_model(star_model["model"])
        assert [t.alias for t in model.tables] == ["ord1"]
        assert model.relationships == []
        assert model.get_field(star_model["name"]) is None

    def test_find_model_for_table(self, store, star_model):
        model, table = store.find_model_for_table(star_model["orders"])
        assert model.id == star_model["model"]
        assert table.alias == "ord1"

    def test_unknown_table(self, store):
        with pytest.raises(ModelGateError) as exc:
            store.find_model_for_table("missing")
        assert exc.value.code == ErrorCode.ERR_TABLE_NOT_FOUND


class TestFields:
    """Tests for fields within a table."""

    def test_measure_defaults_to_sum(self, store, star_model):
        """Test the default aggregation for measures."""
        _, _, amount = store.find_model_for_field(star_model["amount"])
        assert amount.aggregation == "SUM"

    def test_field_needs_column_or_expression(self, store, star_model):
        """Test that a field without a source is rejected."""
        with pytest.raises(ModelGateError) as exc:
            store.add_field(star_model["orders"], "Nothing")
        assert exc.value.code == ErrorCode.ERR_DEFINITION_INVALID

    def test_expression_field(self, store, star_model):
        """Test a field defined by SQL only."""
        f = store.add_field(star_model["orders"], "Big", expression="CASE WHEN ord1.amount > 100 THEN 1 END")
        assert f.column_name is None

    def test_update_field(self, store, star_model):
        """Test changing a field's role and label."""
        store.update_field(star_model["status"], label="State", role="MEASURE", aggregation="COUNT")
        _, _, status = store.find_model_for_field(star_model["status"])
        assert status.label == "State"
        assert status.role == FieldRole.MEASURE
        assert status.aggregation == "COUNT"

    def test_update_unknown_attribute(self, store, star_model):
        with pytest.raises(ModelGateError):
            store.update_field(star_model["status"], colour="red")

    def test_remove_field(self, store, star_model):
        store.remove_field(star_model["status"])
        with pytest.raises(ModelGateError) as exc:
            store.find_model_for_field(star_model["status"])
        assert exc.value.code == ErrorCode.ERR_FIELD_NOT_FOUND


class TestRelationships:
    """Tests for relationships between tables."""

    def test_tables_must_belong_to_model(self, store, star_model):
        """Test that both ends must be tables of the model."""
        other = store.create_model("Other", "warehouse")
        foreign = store.add_table(other.id, "orders", "ord1")
        with pytest.raises(ModelGateError) as exc:
            store.add_relationship(star_model["model"], star_model["orders"], "id", foreign.id, "id")
        assert exc.value.code == ErrorCode.ERR_TABLE_NOT_FOUND

    def test_join_type_uppercased(self, store, star_model):
        rel = store.add_relationship(
            star_model["model"], star_model["customers"], "id",
            star_model["orders"], "customer_id", join_type="inner",
        )
        assert rel.join_type == "INNER"

    def test_toggle_active(self, store, star_model):
        """Test deactivating a relationship."""
        store.set_relationship_active(star_model["relationship"], False)
        model, rel = store.find_model_for_relationship(star_model["relationship"])
        assert rel.is_active is False
        assert model.active_relationships() == []

    def test_remove(self, store, star_model):
        store.remove_relationship(star_model["relationship"])
        with pytest.raises(ModelGateError) as exc:
            store.find_model_for_relationship(star_model["relationship"])
        assert exc.value.code == ErrorCode.ERR_RELATIONSHIP_NOT_FOUND
