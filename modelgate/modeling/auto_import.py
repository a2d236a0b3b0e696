"""
Auto-Import & Relationship Inference

Turns physical schema metadata into model tables and fields:
- Field role guessed from column name and physical type
- Semantic data type mapped from the physical type name
- Measures get SUM as their aggregation
- Relationships inferred from "<table>_id" foreign-key naming

Inference is a naming heuristic. Columns that do not follow the
"<stem>_id" -> "<stem>"/"<stem>s" convention produce no relationship.
"""

import logging
import uuid
from typing import Dict, List, Optional

from modelgate.adapters.base import TableInfo
from .model_store import ModelStore
from .semantic_model import (
    Model, ModelTable, ModelField, Relationship, FieldRole, DataType,
    DEFAULT_AGGREGATION, DEFAULT_JOIN_TYPE,
)

logger = logging.getLogger(__name__)


TIME_NAME_HINTS = ("date", "time")
TIME_TYPE_HINTS = ("date", "timestamp")
DIMENSION_NAME_SUFFIXES = ("_id", "_name", "_code", "_type")
DIMENSION_NAMES = ("id", "status", "category")
DIMENSION_TYPE_HINTS = ("char", "text", "bool")
NUMERIC_TYPE_HINTS = ("int", "float", "double", "decimal", "numeric", "real", "money")


# =============================================================================
# CLASSIFICATION
# =============================================================================

def guess_field_role(column_name: str, physical_type: str) -> FieldRole:
    """
    Guess how a physical column should be used.

    Time hints win over key/label hints, which win over numeric types,
    so "order_date" is a time dimension and "customer_id" a dimension
    even though it is an integer.
    """
    name = column_name.lower()
    type_name = (physical_type or "").lower()

    if (name.endswith("_at")
            or any(h in name for h in TIME_NAME_HINTS)
            or any(h in type_name for h in TIME_TYPE_HINTS)):
        return FieldRole.TIME_DIMENSION

    if (name in DIMENSION_NAMES
            or name.endswith(DIMENSION_NAME_SUFFIXES)
            or any(h in type_name for h in DIMENSION_TYPE_HINTS)
            or type_name == "uuid"):
        return FieldRole.DIMENSION

    if any(h in type_name for h in NUMERIC_TYPE_HINTS):
        return FieldRole.MEASURE

    return FieldRole.DIMENSION


def map_data_type(physical_type: str) -> DataType:
    """Map a physical type name to a semantic data type."""
    t = (physical_type or "").lower()

    if any(h in t for h in ("int", "float", "double", "decimal", "numeric")):
        return DataType.NUMBER
    if "bool" in t:
        return DataType.BOOLEAN
    if "date" in t and "time" not in t:
        return DataType.DATE
    if "timestamp" in t or "datetime" in t:
        return DataType.TIMESTAMP
    return DataType.STRING


def humanize(name: str) -> str:
    """customer_name -> Customer name"""
    text = name.replace("_", " ")
    return text[:1].upper() + text[1:]


def make_alias(model: Model, table_name: str) -> str:
    """First three lowercase chars of the table name plus an ordinal."""
    prefix = table_name[:3].lower()
    ordinal = len(model.tables) + 1
    alias = f"{prefix}{ordinal}"
    while model.get_table_by_alias(alias):
        ordinal += 1
        alias = f"{prefix}{ordinal}"
    return alias


# =============================================================================
# IMPORT
# =============================================================================

def build_table(model: Model, meta: TableInfo, schema_name: Optional[str]) -> ModelTable:
    """Create a table with one field per physical column (not yet attached)."""
    table = ModelTable(
        id=str(uuid.uuid4()),
        model_id=model.id,
        schema_name=schema_name or meta.schema_name,
        table_name=meta.table_name,
        alias=make_alias(model, meta.table_name),
        label=humanize(meta.table_name),
        is_primary=not model.tables,
        sort_order=len(model.tables),
    )

    for idx, col in enumerate(meta.columns):
        role = guess_field_role(col.name, col.data_type)
        table.fields.append(ModelField(
            id=str(uuid.uuid4()),
            table_id=table.id,
            column_name=col.name,
            role=role,
            label=humanize(col.name),
            data_type=map_data_type(col.data_type).value,
            aggregation=DEFAULT_AGGREGATION if role == FieldRole.MEASURE else None,
            sort_order=idx,
        ))

    return table


def auto_import(
    store: ModelStore,
    gateway,
    model_id: str,
    table_names: List[str],
    schema_name: Optional[str] = None,
    detect: bool = True,
) -> Model:
    """
    Import physical tables into a model.

    Unknown table names are skipped; tables already in the model are left
    untouched, so importing the same table twice is a no-op.

    Args:
        store: Model store
        gateway: DatabaseGateway providing introspect(datasource_id)
        model_id: Target model
        table_names: Physical table names to import
        schema_name: Schema recorded on new tables (default: introspected schema)
        detect: Infer relationships after importing

    Returns:
        The updated model
    """
    with store.lock:
        model = store.require_model(model_id)
        catalog = gateway.introspect(model.datasource_id)

        by_name: Dict[str, TableInfo] = {}
        for meta in catalog:
            if schema_name and meta.schema_name and meta.schema_name != schema_name:
                continue
            by_name.setdefault(meta.table_name, meta)

        imported = []
        skipped = []
        for table_name in table_names:
            meta = by_name.get(table_name)
            if meta is None:
                skipped.append(table_name)
                continue
            if model.get_table_by_name(table_name):
                continue

            table = build_table(model, meta, schema_name)
            model.tables.append(table)
            imported.append(table.alias)

        created = detect_relationships(model) if detect else []
        if imported or created:
            store.save(model)

    logger.info(
        f"Auto-import into model {model_id}: imported={imported} "
        f"skipped={skipped} relationships={len(created)}"
    )
    return model


# =============================================================================
# RELATIONSHIP INFERENCE
# =============================================================================

def _match_referenced_table(model: Model, owner: ModelTable, stem: str) -> Optional[ModelTable]:
    candidates = {stem, stem + "s"}
    if stem.endswith("s"):
        candidates.add(stem[:-1])
    for table in model.sorted_tables():
        if table.id != owner.id and table.table_name in candidates:
            return table
    return None


def detect_relationships(model: Model) -> List[Relationship]:
    """
    Add LEFT relationships for "<stem>_id" columns pointing at "<stem>[s].id".

    A relationship already connecting the two tables on that column, in
    either direction, suppresses the new one. Mutates `model` in place.

    Returns:
        The relationships created
    """
    created = []
    for table in model.sorted_tables():
        for f in sorted(table.fields, key=lambda f: f.sort_order):
            col = f.column_name
            if not col or not col.endswith("_id"):
                continue

            ref_table = _match_referenced_table(model, table, col[:-3])
            if ref_table is None:
                continue
            if model.find_relationship(table.id, ref_table.id, col):
                continue

            rel = Relationship(
                id=str(uuid.uuid4()),
                model_id=model.id,
                left_table_id=table.id,
                left_column=col,
                right_table_id=ref_table.id,
                right_column="id",
                join_type=DEFAULT_JOIN_TYPE,
                label=f"{table.alias}.{col} → {ref_table.alias}.id",
            )
            model.relationships.append(rel)
            created.append(rel)
            logger.info(f"Inferred relationship {rel.label}")

    return created
