"""
Tests for calculated field storage and application.
"""

from datetime import timezone

import pytest

from modelgate.errors import ErrorCode, ModelGateError
from modelgate.modeling.calculated_fields import CalculatedField, apply_fields
from modelgate.modeling.expressions import ResultType


def calc(name, expression, sort_order=0, result_type=ResultType.NUMBER, is_active=True):
    return CalculatedField(
        id=f"c-{name}",
        report_id="r1",
        name=name,
        expression=expression,
        result_type=result_type,
        sort_order=sort_order,
        is_active=is_active,
    )


class TestApplyFields:
    """Tests for apply_fields."""

    def test_adds_columns_and_values(self):
        """Test that a calculated column is appended and filled."""
        columns, rows = apply_fields(
            [calc("total", "[qty] * [price]")],
            ["qty", "price"],
            [{"qty": 3, "price": 9.5}, {"qty": 2, "price": 1.0}],
        )
        assert columns == ["qty", "price", "total"]
        assert [r["total"] for r in rows] == [28.5, 2.0]

    def test_later_fields_see_earlier_ones(self):
        """Test evaluation in sort order on the same row."""
        fields = [
            calc("with_tax", "[total] * 1.1", sort_order=2),
            calc("total", "[qty] * [price]", sort_order=1),
        ]
        columns, rows = apply_fields(fields, ["qty", "price"], [{"qty": 2, "price": 10}])
        assert columns == ["qty", "price", "total", "with_tax"]
        assert rows[0]["with_tax"] == pytest.approx(22.0)

    def test_existing_column_is_not_duplicated(self):
        """Test that a field named like an input column overwrites values only."""
        columns, rows = apply_fields([calc("qty", "[qty] * 2")], ["qty"], [{"qty": 4}])
        assert columns == ["qty"]
        assert rows[0]["qty"] == 8.0

    def test_inactive_fields_skipped(self):
        """Test that inactive fields are not applied."""
        columns, rows = apply_fields(
            [calc("total", "[qty] * 2", is_active=False)], ["qty"], [{"qty": 1}]
        )
        assert columns == ["qty"]
        assert "total" not in rows[0]

    def test_failing_cell_is_null(self):
        """Test that one bad cell does not affect the others."""
        fields = [
            calc("double", "[v] * 2"),
            calc("label", 'UPPER([name])', result_type=ResultType.STRING, sort_order=1),
        ]
        _, rows = apply_fields(fields, ["v", "name"], [
            {"v": "oops", "name": "a"},
            {"v": 2, "name": "b"},
        ])
        assert rows[0]["double"] is None
        assert rows[0]["label"] == "A"
        assert rows[1]["double"] == 4.0

    def test_unparseable_expression_is_null_everywhere(self):
        """Test a stored expression that no longer parses."""
        _, rows = apply_fields([calc("bad", "[a] +")], ["a"], [{"a": 1}, {"a": 2}])
        assert [r["bad"] for r in rows] == [None, None]

    def test_input_rows_not_modified(self):
        """Test that the caller's rows are left alone."""
        original = [{"qty": 1}]
        apply_fields([calc("total", "[qty] * 2")], ["qty"], original)
        assert original == [{"qty": 1}]

    def test_runtime_failures_do_not_abort_dataset(self):
        """Test that overflow and bad ROUND precision null single cells."""
        fields = [
            calc("rounded", "ROUND([x], 9999999999)", result_type=ResultType.STRING),
            calc("scaled", "[x] * 1.5", sort_order=1),
        ]
        columns, rows = apply_fields(fields, ["x"], [{"x": 1.5}, {"x": 10 ** 400}, {"x": 2}])
        assert columns == ["x", "rounded", "scaled"]
        assert [r["rounded"] for r in rows] == [None, None, None]
        assert [r["scaled"] for r in rows] == [2.25, None, 3.0]

    def test_timestamps_are_utc(self):
        field = calc("total", "[qty] * 2")
        assert field.created_at.tzinfo is timezone.utc
        assert field.updated_at.tzinfo is timezone.utc


class TestCalculatedFieldStore:
    """Tests for CalculatedFieldStore."""

    def test_create_and_get(self, calc_store):
        """Test a stored field round-trips."""
        created = calc_store.create("r1", "total", "[qty] * [price]", label="Total")
        loaded = calc_store.require(created.id)
        assert loaded.name == "total"
        assert loaded.label == "Total"
        assert loaded.result_type == ResultType.NUMBER
        assert loaded.is_active is True

    def test_invalid_expression_not_stored(self, calc_store):
        """Test that a rejected expression leaves nothing behind."""
        with pytest.raises(ModelGateError) as exc:
            calc_store.create("r1", "evil", '[a]; DROP TABLE users')
        assert exc.value.code == ErrorCode.ERR_EXPRESSION_INVALID
        assert calc_store.list_for_report("r1") == []

    def test_list_in_sort_order(self, calc_store):
        """Test listing a report's fields in sort order."""
        calc_store.create("r1", "b", "[x] + 1", sort_order=2)
        calc_store.create("r1", "a", "[x] + 2", sort_order=1)
        calc_store.create("r2", "other", "[x] + 3")
        assert [c.name for c in calc_store.list_for_report("r1")] == ["a", "b"]

    def test_update(self, calc_store):
        """Test partial updates."""
        created = calc_store.create("r1", "total", "[qty] * 2")
        updated = calc_store.update(created.id, expression="[qty] * 3", is_active=False)
        assert updated.expression == "[qty] * 3"
        assert updated.is_active is False
        assert updated.name == "total"
        assert calc_store.require(created.id).is_active is False

    def test_update_validates_expression(self, calc_store):
        """Test that updates are validated like creates."""
        created = calc_store.create("r1", "total", "[qty] * 2")
        with pytest.raises(ModelGateError):
            calc_store.update(created.id, expression="")
        with pytest.raises(ModelGateError):
            calc_store.update(created.id, expression="alter table x")
        assert calc_store.require(created.id).expression == "[qty] * 2"

    def test_delete(self, calc_store):
        """Test deleting and deleting again."""
        created = calc_store.create("r1", "total", "[qty] * 2")
        calc_store.delete(created.id)
        assert calc_store.get(created.id) is None
        with pytest.raises(ModelGateError) as exc:
            calc_store.delete(created.id)
        assert exc.value.status_code == 404

    def test_apply_uses_active_fields_only(self, calc_store):
        """Test applying a report's stored fields."""
        calc_store.create("r1", "double", "[v] * 2", sort_order=1)
        hidden = calc_store.create("r1", "triple", "[v] * 3", sort_order=2)
        calc_store.update(hidden.id, is_active=False)

        columns, rows = calc_store.apply_calculated_fields("r1", ["v"], [{"v": 5}])
        assert columns == ["v", "double"]
        assert rows == [{"v": 5, "double": 10.0}]

    def test_apply_without_fields(self, calc_store):
        """Test that a report with no fields returns the data unchanged."""
        columns, rows = calc_store.apply_calculated_fields("none", ["v"], [{"v": 1}])
        assert columns == ["v"]
        assert rows == [{"v": 1}]
