"""
Query Compiler

Compiles an explore request (selected fields, filters, sorts, limit)
against a semantic model into one SQL string:

    SELECT <dimensions>, <AGG(measure)> ...
    FROM <primary> AS <alias>
    <JOIN TYPE> JOIN <table> AS <alias> ON <l.col> = <r.col> ...
    WHERE <predicate> AND ...
    GROUP BY <dimensions>          -- only with measures AND dimensions
    ORDER BY "<label>" <dir>, ...
    LIMIT <n>

The generic SQL is Postgres-flavoured; transpile() rewrites it for the
datasource dialect with SQLGlot.

Filter values are always emitted as quoted string literals with single
quotes doubled. There is no type-aware literal formatting.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import sqlglot
from sqlglot.errors import SqlglotError

from modelgate.errors import no_fields_selected, no_join_path, invalid_limit
from .join_resolver import JoinSpec, choose_primary_table, resolve_join_path
from .semantic_model import Model, ModelTable, ModelField, Aggregation

logger = logging.getLogger(__name__)

# Dialects the generic SQL already targets; no transpile needed
GENERIC_DIALECTS = {"postgres", "postgresql", "generic", "ansi", ""}


class FilterOperator(str, Enum):
    """Filter comparison operators."""
    EQ = "EQ"
    NEQ = "NEQ"
    GT = "GT"
    GTE = "GTE"
    LT = "LT"
    LTE = "LTE"
    LIKE = "LIKE"
    IN = "IN"
    BETWEEN = "BETWEEN"
    IS_NULL = "IS_NULL"
    IS_NOT_NULL = "IS_NOT_NULL"

    @classmethod
    def parse(cls, value: Any) -> "FilterOperator":
        """Unknown operators compile as EQ."""
        try:
            return cls(str(value).upper())
        except ValueError:
            return cls.EQ


COMPARISON_SQL = {
    FilterOperator.EQ: "=",
    FilterOperator.NEQ: "<>",
    FilterOperator.GT: ">",
    FilterOperator.GTE: ">=",
    FilterOperator.LT: "<",
    FilterOperator.LTE: "<=",
    FilterOperator.LIKE: "LIKE",
}


class SortDirection(str, Enum):
    """Sort directions."""
    ASC = "ASC"
    DESC = "DESC"

    @classmethod
    def parse(cls, value: Any) -> "SortDirection":
        try:
            return cls(str(value).upper())
        except ValueError:
            return cls.ASC


@dataclass
class ExploreFilter:
    """A filter on a model field."""
    field_id: str
    operator: str = "EQ"
    value: Any = None
    values: Optional[List[Any]] = None

    @classmethod
    def from_dict(cls, data: dict) -> "ExploreFilter":
        return cls(
            field_id=str(data.get("fieldId", data.get("field_id", ""))),
            operator=data.get("operator", "EQ"),
            value=data.get("value"),
            values=data.get("values"),
        )


@dataclass
class ExploreSort:
    """Sort on a model field."""
    field_id: str
    direction: str = "ASC"

    @classmethod
    def from_dict(cls, data: dict) -> "ExploreSort":
        return cls(
            field_id=str(data.get("fieldId", data.get("field_id", ""))),
            direction=data.get("direction", "ASC"),
        )


@dataclass
class CompiledQuery:
    """Result of compilation."""
    sql: str
    columns: List[str]
    primary_table_id: str
    joins: List[JoinSpec] = field(default_factory=list)
    dimensions: List[ModelField] = field(default_factory=list)
    measures: List[ModelField] = field(default_factory=list)
    limit: int = 0

    def to_dict(self) -> dict:
        return {
            "sql": self.sql,
            "columns": self.columns,
            "primaryTableId": self.primary_table_id,
            "joins": [j.to_dict() for j in self.joins],
            "limit": self.limit,
        }


# =============================================================================
# SQL FRAGMENTS
# =============================================================================

def escape_literal(value: Any) -> str:
    """Render a filter value as the body of a single-quoted SQL literal."""
    if value is None:
        text = ""
    elif isinstance(value, bool):
        text = "true" if value else "false"
    else:
        text = str(value)
    return text.replace("'", "''")


def quote_label(label: str) -> str:
    return '"' + label.replace('"', '""') + '"'


def field_sql(f: ModelField, table: Optional[ModelTable]) -> str:
    """The field's expression, or "<alias>.<column>"."""
    if f.expression:
        return f.expression
    alias = table.alias if table else ""
    return f"{alias}.{f.column_name}"


def table_source(table: ModelTable) -> str:
    """FROM/JOIN source: custom SQL (parenthesized if a query) or schema.table."""
    if table.sql_expression:
        expr = table.sql_expression.strip()
        if expr.split(None, 1)[0].upper() in ("SELECT", "WITH"):
            return f"({expr})"
        return expr
    return table.qualified_name


def compile_filter(column_sql: str, flt: ExploreFilter) -> Optional[str]:
    """
    Compile one filter into a predicate.

    Returns None when the filter cannot form a predicate (IN without any
    value, BETWEEN without two values).
    """
    op = FilterOperator.parse(flt.operator)

    if op == FilterOperator.IS_NULL:
        return f"{column_sql} IS NULL"
    if op == FilterOperator.IS_NOT_NULL:
        return f"{column_sql} IS NOT NULL"

    if op == FilterOperator.IN:
        values = flt.values if flt.values else ([flt.value] if flt.value is not None else [])
        if not values:
            return None
        rendered = ", ".join(f"'{escape_literal(v)}'" for v in values)
        return f"{column_sql} IN ({rendered})"

    if op == FilterOperator.BETWEEN:
        values = flt.values or []
        if len(values) < 2:
            return None
        return (
            f"{column_sql} BETWEEN '{escape_literal(values[0])}' "
            f"AND '{escape_literal(values[1])}'"
        )

    return f"{column_sql} {COMPARISON_SQL[op]} '{escape_literal(flt.value)}'"


# =============================================================================
# COMPILER
# =============================================================================

def compile_explore(
    model: Model,
    field_ids: Sequence[str],
    filters: Sequence[ExploreFilter] = (),
    sorts: Sequence[ExploreSort] = (),
    limit: int = 1000,
    max_limit: Optional[int] = None,
) -> CompiledQuery:
    """
    Compile an explore request to SQL.

    Raises:
        ModelGateError: no resolvable field selected, invalid limit, or a
            needed table with no join path from the primary table
    """
    if limit is None or limit < 1:
        raise invalid_limit(limit, max_limit or limit)
    if max_limit is not None and limit > max_limit:
        logger.debug(f"Clamping explore limit {limit} to {max_limit}")
        limit = max_limit

    fields = model.field_index()
    tables: Dict[str, ModelTable] = {t.id: t for t in model.tables}

    selected = [fields[fid] for fid in dict.fromkeys(str(f) for f in field_ids) if fid in fields]
    if not selected:
        raise no_fields_selected(model.id, [str(f) for f in field_ids])

    needed: Dict[str, None] = {}
    for f in selected:
        needed[f.table_id] = None
    for flt in filters:
        if flt.field_id in fields:
            needed[fields[flt.field_id].table_id] = None
    for s in sorts:
        if s.field_id in fields:
            needed[fields[s.field_id].table_id] = None

    needed_ids = list(needed)
    primary = choose_primary_table(model, needed_ids)
    aliases = {t.id: t.alias for t in model.tables}
    path = resolve_join_path(primary.id, needed_ids, model.active_relationships(), aliases)
    if path.unreachable:
        raise no_join_path(model.id, primary.alias, [aliases[t] for t in path.unreachable])

    dimensions = [f for f in selected if not f.is_measure]
    measures = [f for f in selected if f.is_measure]

    # SELECT
    select_parts = []
    for f in dimensions:
        select_parts.append(f"{field_sql(f, tables.get(f.table_id))} AS {quote_label(f.label)}")
    for f in measures:
        measure_sql = Aggregation.render(f.aggregation, field_sql(f, tables.get(f.table_id)))
        select_parts.append(f"{measure_sql} AS {quote_label(f.label)}")

    lines = ["SELECT " + ", ".join(select_parts)]

    # FROM / JOIN
    lines.append(f"FROM {table_source(primary)} AS {primary.alias}")
    for j in path.joins:
        joined = tables[j.table_id]
        lines.append(
            f"{j.join_type} JOIN {table_source(joined)} AS {joined.alias} "
            f"ON {j.left_alias}.{j.left_column} = {j.right_alias}.{j.right_column}"
        )

    # WHERE
    where_parts = []
    for flt in filters:
        f = fields.get(flt.field_id)
        if f is None:
            continue
        predicate = compile_filter(field_sql(f, tables.get(f.table_id)), flt)
        if predicate:
            where_parts.append(predicate)
    if where_parts:
        lines.append("WHERE " + " AND ".join(where_parts))

    # GROUP BY
    if measures and dimensions:
        lines.append("GROUP BY " + ", ".join(field_sql(f, tables.get(f.table_id)) for f in dimensions))

    # ORDER BY
    order_parts = []
    for s in sorts:
        f = fields.get(s.field_id)
        if f is None:
            continue
        order_parts.append(f"{quote_label(f.label)} {SortDirection.parse(s.direction).value}")
    if order_parts:
        lines.append("ORDER BY " + ", ".join(order_parts))

    lines.append(f"LIMIT {limit}")

    sql = "\n".join(lines)
    logger.debug(f"Compiled explore SQL for model {model.id}:\n{sql}")

    return CompiledQuery(
        sql=sql,
        columns=[f.label for f in dimensions + measures],
        primary_table_id=primary.id,
        joins=path.joins,
        dimensions=dimensions,
        measures=measures,
        limit=limit,
    )


def transpile(sql: str, dialect: Optional[str]) -> str:
    """
    Rewrite generic SQL for a target dialect.

    Falls back to the input SQL (with a warning) if SQLGlot cannot parse it.
    """
    target = (dialect or "").lower()
    if target in GENERIC_DIALECTS:
        return sql

    try:
        ast = sqlglot.parse_one(sql, read="postgres")
        return ast.sql(dialect=target, pretty=True)
    except (SqlglotError, ValueError) as e:
        logger.warning(f"SQLGlot transpile to {target} failed, using generic SQL: {e}")
        return sql
