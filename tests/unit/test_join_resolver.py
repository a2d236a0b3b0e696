"""
Tests for join-path resolution.
"""

from modelgate.modeling.join_resolver import choose_primary_table, resolve_join_path
from modelgate.modeling.semantic_model import Model, ModelTable, Relationship


ALIASES = {"o": "ord1", "c": "cus2", "r": "reg3", "p": "pro4"}


def rel(rel_id, left, left_col, right, right_col, join_type="LEFT"):
    return Relationship(
        id=rel_id, model_id="m1",
        left_table_id=left, left_column=left_col,
        right_table_id=right, right_column=right_col,
        join_type=join_type,
    )


# orders -> customers -> regions, products unconnected
RELATIONSHIPS = [
    rel("r1", "o", "customer_id", "c", "id"),
    rel("r2", "c", "region_id", "r", "id", join_type="INNER"),
]


class TestResolveJoinPath:
    """Tests for resolve_join_path."""

    def test_direct_join(self):
        """Test a single hop from the primary table."""
        path = resolve_join_path("o", ["o", "c"], RELATIONSHIPS, ALIASES)
        assert len(path.joins) == 1
        join = path.joins[0]
        assert (join.table_id, join.left_alias, join.left_column) == ("c", "ord1", "customer_id")
        assert (join.right_alias, join.right_column) == ("cus2", "id")
        assert path.unreachable == []

    def test_two_hops(self):
        """Test a chain orders -> customers -> regions when all are needed."""
        path = resolve_join_path("o", ["o", "c", "r"], RELATIONSHIPS, ALIASES)
        assert [j.table_id for j in path.joins] == ["c", "r"]
        assert path.joins[1].join_type == "INNER"
        assert path.joined_table_ids == ["o", "c", "r"]

    def test_intermediate_table_must_be_needed(self):
        """Test that a table the query does not need is never joined through."""
        path = resolve_join_path("o", ["o", "r"], RELATIONSHIPS, ALIASES)
        assert path.joins == []
        assert path.unreachable == ["r"]

    def test_reverse_direction(self):
        """Test joining from the right side of a relationship."""
        path = resolve_join_path("c", ["c", "o"], RELATIONSHIPS, ALIASES)
        join = path.joins[0]
        assert join.table_id == "o"
        assert (join.left_alias, join.left_column) == ("cus2", "id")
        assert (join.right_alias, join.right_column) == ("ord1", "customer_id")

    def test_unconnected_table_is_unreachable(self):
        """Test that a table with no relationship is reported."""
        path = resolve_join_path("o", ["o", "c", "p"], RELATIONSHIPS, ALIASES)
        assert [j.table_id for j in path.joins] == ["c"]
        assert path.unreachable == ["p"]

    def test_relationship_to_missing_table_is_ignored(self):
        """Test relationships whose tables are not in the model."""
        rels = [rel("rx", "o", "ghost_id", "ghost", "id")] + RELATIONSHIPS
        path = resolve_join_path("o", ["o", "c"], rels, ALIASES)
        assert [j.relationship_id for j in path.joins] == ["r1"]

    def test_deterministic(self):
        """Test that repeated resolution yields the same joins."""
        first = resolve_join_path("o", ["o", "c", "r"], RELATIONSHIPS, ALIASES)
        for _ in range(5):
            again = resolve_join_path("o", ["o", "c", "r"], RELATIONSHIPS, ALIASES)
            assert again.joins == first.joins

    def test_primary_only(self):
        """Test a query on the primary table alone."""
        path = resolve_join_path("o", ["o"], RELATIONSHIPS, ALIASES)
        assert path.joins == []
        assert path.unreachable == []


class TestChoosePrimaryTable:
    """Tests for choose_primary_table."""

    def make_model(self, primary=None):
        tables = [
            ModelTable(id="o", model_id="m1", table_name="orders", alias="ord1", sort_order=0),
            ModelTable(id="c", model_id="m1", table_name="customers", alias="cus2", sort_order=1),
        ]
        for t in tables:
            t.is_primary = t.id == primary
        return Model(id="m1", name="Sales", datasource_id="warehouse", tables=tables)

    def test_prefers_needed_primary(self):
        """Test that the flagged primary wins when needed."""
        model = self.make_model(primary="o")
        assert choose_primary_table(model, ["c", "o"]).id == "o"

    def test_primary_not_needed(self):
        """Test that an unneeded primary table is not used."""
        model = self.make_model(primary="o")
        assert choose_primary_table(model, ["c"]).id == "c"

    def test_falls_back_to_first_needed(self):
        """Test the first needed table without any primary flag."""
        model = self.make_model()
        assert choose_primary_table(model, ["c", "o"]).id == "c"

    def test_nothing_needed(self):
        """Test an empty needed set."""
        assert choose_primary_table(self.make_model(), []) is None
