"""
Semantic Model

Logical layer over a physical datasource:
- Tables (physical table, view, or custom SQL wrapped under an alias)
- Fields (dimensions, measures and time dimensions belonging to a table)
- Relationships (join edges between two tables of the same model)

The model is a graph keyed by string ids. Tables own their fields;
relationships reference tables by id only, so there are no object cycles
and the whole model serializes to one JSON document.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple


class FieldRole(str, Enum):
    """How a field participates in a query."""
    DIMENSION = "DIMENSION"
    MEASURE = "MEASURE"
    TIME_DIMENSION = "TIME_DIMENSION"

    @classmethod
    def parse(cls, value: Any) -> "FieldRole":
        if isinstance(value, FieldRole):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            return cls.DIMENSION


class DataType(str, Enum):
    """Semantic data types."""
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    TIMESTAMP = "timestamp"


DEFAULT_AGGREGATION = "SUM"
DEFAULT_JOIN_TYPE = "LEFT"


class Aggregation(str, Enum):
    """Aggregates applied to measures."""
    SUM = "SUM"
    COUNT = "COUNT"
    COUNT_DISTINCT = "COUNT_DISTINCT"
    AVG = "AVG"
    MIN = "MIN"
    MAX = "MAX"

    @classmethod
    def render(cls, aggregation: Optional[str], expr: str) -> str:
        """AGG(expr); COUNT_DISTINCT becomes COUNT(DISTINCT expr), unknown names pass through."""
        name = (aggregation or DEFAULT_AGGREGATION).upper()
        if name == cls.COUNT_DISTINCT.value:
            return f"COUNT(DISTINCT {expr})"
        return f"{name}({expr})"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value: Any) -> Optional[datetime]:
    if isinstance(value, str):
        return datetime.fromisoformat(value)
    return value


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class ModelField:
    """
    A logical column belonging to exactly one table.

    Attributes:
        id: Unique field identifier
        table_id: Owning table ID
        column_name: Physical column (None for expression-only fields)
        role: DIMENSION, MEASURE or TIME_DIMENSION
        label: Display name, also the output column name
        data_type: Semantic type (string, number, boolean, date, timestamp)
        aggregation: SQL aggregate for measures (default SUM)
        expression: SQL that replaces "<alias>.<column>" verbatim
        format: Display format
        hidden: Hide from field pickers
        sort_order: Position within the table
    """
    id: str
    table_id: str
    label: str
    column_name: Optional[str] = None
    role: FieldRole = FieldRole.DIMENSION
    description: Optional[str] = None
    data_type: Optional[str] = None
    aggregation: Optional[str] = None
    expression: Optional[str] = None
    format: Optional[str] = None
    hidden: bool = False
    sort_order: int = 0
    created_at: Optional[datetime] = None

    def __post_init__(self):
        self.role = FieldRole.parse(self.role)
        if self.created_at is None:
            self.created_at = _now()

    @property
    def is_measure(self) -> bool:
        return self.role == FieldRole.MEASURE

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tableId": self.table_id,
            "columnName": self.column_name,
            "fieldRole": self.role.value,
            "label": self.label,
            "description": self.description,
            "dataType": self.data_type,
            "aggregation": self.aggregation,
            "expression": self.expression,
            "format": self.format,
            "hidden": self.hidden,
            "sortOrder": self.sort_order,
            "createdAt": _ts(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ModelField":
        return cls(
            id=data.get("id", str(uuid.uuid4())),
            table_id=data.get("tableId", data.get("table_id", "")),
            column_name=data.get("columnName", data.get("column_name")),
            role=data.get("fieldRole", data.get("role", FieldRole.DIMENSION)),
            label=data.get("label", ""),
            description=data.get("description"),
            data_type=data.get("dataType", data.get("data_type")),
            aggregation=data.get("aggregation"),
            expression=data.get("expression"),
            format=data.get("format"),
            hidden=data.get("hidden", False),
            sort_order=data.get("sortOrder", data.get("sort_order", 0)),
            created_at=_parse_ts(data.get("createdAt") or data.get("created_at")),
        )


@dataclass
class ModelTable:
    """
    A logical wrapper over a physical table/view or a custom SQL expression.

    The alias is unique within the model and is what generated SQL uses.
    """
    id: str
    model_id: str
    table_name: str
    alias: str
    schema_name: Optional[str] = None
    label: Optional[str] = None
    description: Optional[str] = None
    is_primary: bool = False
    sql_expression: Optional[str] = None
    sort_order: int = 0
    fields: List[ModelField] = field(default_factory=list)
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if self.created_at is None:
            self.created_at = _now()

    @property
    def qualified_name(self) -> str:
        if self.schema_name:
            return f"{self.schema_name}.{self.table_name}"
        return self.table_name

    def get_field(self, field_id: str) -> Optional[ModelField]:
        for f in self.fields:
            if f.id == field_id:
                return f
        return None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "modelId": self.model_id,
            "tableSchema": self.schema_name,
            "tableName": self.table_name,
            "alias": self.alias,
            "label": self.label,
            "description": self.description,
            "isPrimary": self.is_primary,
            "sqlExpression": self.sql_expression,
            "sortOrder": self.sort_order,
            "fields": [
                dict(f.to_dict(), tableAlias=self.alias)
                for f in sorted(self.fields, key=lambda f: f.sort_order)
            ],
            "createdAt": _ts(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ModelTable":
        return cls(
            id=data.get("id", str(uuid.uuid4())),
            model_id=data.get("modelId", data.get("model_id", "")),
            schema_name=data.get("tableSchema", data.get("schema_name")),
            table_name=data.get("tableName", data.get("table_name", "")),
            alias=data.get("alias", ""),
            label=data.get("label"),
            description=data.get("description"),
            is_primary=data.get("isPrimary", data.get("is_primary", False)),
            sql_expression=data.get("sqlExpression", data.get("sql_expression")),
            sort_order=data.get("sortOrder", data.get("sort_order", 0)),
            fields=[ModelField.from_dict(f) for f in data.get("fields", [])],
            created_at=_parse_ts(data.get("createdAt") or data.get("created_at")),
        )


@dataclass
class Relationship:
    """
    A join edge between two tables of the same model.

    Path-finding treats it as undirected; the join type is free-form
    and emitted as written.
    """
    id: str
    model_id: str
    left_table_id: str
    left_column: str
    right_table_id: str
    right_column: str
    join_type: str = DEFAULT_JOIN_TYPE
    label: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if self.created_at is None:
            self.created_at = _now()

    def touches(self, table_id: str) -> bool:
        return self.left_table_id == table_id or self.right_table_id == table_id

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "modelId": self.model_id,
            "leftTableId": self.left_table_id,
            "leftColumn": self.left_column,
            "rightTableId": self.right_table_id,
            "rightColumn": self.right_column,
            "joinType": self.join_type,
            "label": self.label,
            "isActive": self.is_active,
            "createdAt": _ts(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Relationship":
        return cls(
            id=data.get("id", str(uuid.uuid4())),
            model_id=data.get("modelId", data.get("model_id", "")),
            left_table_id=data.get("leftTableId", data.get("left_table_id", "")),
            left_column=data.get("leftColumn", data.get("left_column", "")),
            right_table_id=data.get("rightTableId", data.get("right_table_id", "")),
            right_column=data.get("rightColumn", data.get("right_column", "")),
            join_type=data.get("joinType", data.get("join_type", DEFAULT_JOIN_TYPE)),
            label=data.get("label"),
            is_active=data.get("isActive", data.get("is_active", True)),
            created_at=_parse_ts(data.get("createdAt") or data.get("created_at")),
        )


@dataclass
class Model:
    """
    A named semantic namespace bound to one physical datasource.

    Attributes:
        id: Unique model identifier
        name: Model name
        datasource_id: Physical datasource the SQL runs against
        description: Model description
        owner_id: Creating user
        is_published: Visible to report authors
        tables: Logical tables (each owns its fields)
        relationships: Join edges between tables
    """
    id: str
    name: str
    datasource_id: str
    description: Optional[str] = None
    owner_id: Optional[str] = None
    is_published: bool = False
    tables: List[ModelTable] = field(default_factory=list)
    relationships: List[Relationship] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.created_at is None:
            self.created_at = _now()
        if self.updated_at is None:
            self.updated_at = self.created_at

    # -------------------------------------------------------------------------
    # Graph lookups
    # -------------------------------------------------------------------------

    def sorted_tables(self) -> List[ModelTable]:
        return sorted(self.tables, key=lambda t: t.sort_order)

    def get_table(self, table_id: str) -> Optional[ModelTable]:
        for table in self.tables:
            if table.id == table_id:
                return table
        return None

    def get_table_by_alias(self, alias: str) -> Optional[ModelTable]:
        for table in self.tables:
            if table.alias == alias:
                return table
        return None

    def get_table_by_name(self, table_name: str) -> Optional[ModelTable]:
        for table in self.tables:
            if table.table_name == table_name:
                return table
        return None

    def iter_fields(self) -> Iterator[Tuple[ModelTable, ModelField]]:
        for table in self.tables:
            for f in table.fields:
                yield table, f

    def field_index(self) -> Dict[str, ModelField]:
        """Map field id -> field for every field in the model."""
        return {f.id: f for _, f in self.iter_fields()}

    def get_field(self, field_id: str) -> Optional[ModelField]:
        for _, f in self.iter_fields():
            if f.id == field_id:
                return f
        return None

    def get_relationship(self, relationship_id: str) -> Optional[Relationship]:
        for rel in self.relationships:
            if rel.id == relationship_id:
                return rel
        return None

    def active_relationships(self) -> List[Relationship]:
        return [r for r in self.relationships if r.is_active]

    def find_relationship(self, table_id: str, other_table_id: str, column: str) -> Optional[Relationship]:
        """Find a relationship joining table_id's `column` to other_table_id, either direction."""
        for rel in self.relationships:
            if (rel.left_table_id == table_id and rel.right_table_id == other_table_id
                    and rel.left_column == column):
                return rel
            if (rel.left_table_id == other_table_id and rel.right_table_id == table_id
                    and rel.right_column == column):
                return rel
        return None

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def touch(self) -> None:
        self.updated_at = _now()

    def remove_table(self, table_id: str) -> None:
        """Remove a table, its fields and every relationship touching it."""
        self.tables = [t for t in self.tables if t.id != table_id]
        self.relationships = [r for r in self.relationships if not r.touches(table_id)]
        self.touch()

    def remove_relationship(self, relationship_id: str) -> None:
        self.relationships = [r for r in self.relationships if r.id != relationship_id]
        self.touch()

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def summary(self) -> dict:
        """List-view form with child counts."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "datasourceId": self.datasource_id,
            "ownerId": self.owner_id,
            "isPublished": self.is_published,
            "tableCount": len(self.tables),
            "fieldCount": sum(len(t.fields) for t in self.tables),
            "relationshipCount": len(self.relationships),
            "createdAt": _ts(self.created_at),
            "updatedAt": _ts(self.updated_at),
        }

    def relationship_to_dict(self, rel: Relationship) -> dict:
        left = self.get_table(rel.left_table_id)
        right = self.get_table(rel.right_table_id)
        return dict(
            rel.to_dict(),
            leftTableAlias=left.alias if left else None,
            rightTableAlias=right.alias if right else None,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "datasourceId": self.datasource_id,
            "ownerId": self.owner_id,
            "isPublished": self.is_published,
            "tables": [t.to_dict() for t in self.sorted_tables()],
            "relationships": [self.relationship_to_dict(r) for r in self.relationships],
            "createdAt": _ts(self.created_at),
            "updatedAt": _ts(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Model":
        return cls(
            id=data.get("id", str(uuid.uuid4())),
            name=data.get("name", "Untitled"),
            datasource_id=str(data.get("datasourceId", data.get("datasource_id", ""))),
            description=data.get("description"),
            owner_id=data.get("ownerId", data.get("owner_id")),
            is_published=data.get("isPublished", data.get("is_published", False)),
            tables=[ModelTable.from_dict(t) for t in data.get("tables", [])],
            relationships=[Relationship.from_dict(r) for r in data.get("relationships", [])],
            created_at=_parse_ts(data.get("createdAt") or data.get("created_at")),
            updated_at=_parse_ts(data.get("updatedAt") or data.get("updated_at")),
        )
