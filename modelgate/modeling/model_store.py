"""
Semantic Model Store

Persists models as JSON documents in SQLite, one row per model.
An entity index maps every table, field and relationship id to its
model so child endpoints (/tables/{id}, /fields/{id}) can resolve
their owner without scanning.

Every mutation is load -> modify -> save under a lock, so concurrent
writers never interleave partial updates of the same model.
"""

import json
import logging
import sqlite3
import threading
import uuid
from typing import Any, List, Optional, Tuple

from modelgate.errors import (
    model_not_found, table_not_found, field_not_found,
    relationship_not_found, duplicate_alias, definition_invalid,
)
from .semantic_model import (
    Model, ModelTable, ModelField, Relationship, FieldRole,
    DEFAULT_AGGREGATION, DEFAULT_JOIN_TYPE,
)

logger = logging.getLogger(__name__)


class ModelStore:
    """
    Manages semantic model persistence.

    Uses SQLite for storage with JSON serialization.
    """

    def __init__(self, db_path: str, gateway=None):
        """
        Initialize model store.

        Args:
            db_path: Path to SQLite database
            gateway: Optional DatabaseGateway used to reject unknown datasources
        """
        self.db_path = db_path
        self.gateway = gateway
        self.lock = threading.RLock()
        self._init_db()

    def _init_db(self):
        """Initialize database schema."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS semantic_models (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    datasource_id TEXT NOT NULL,
                    owner_id TEXT,
                    data TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS model_entities (
                    entity_id TEXT PRIMARY KEY,
                    model_id TEXT NOT NULL,
                    kind TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_model_entities_model
                ON model_entities(model_id)
            """)
            conn.commit()

    # =========================================================================
    # Persistence
    # =========================================================================

    def _save(self, model: Model, conn: sqlite3.Connection, insert: bool = False) -> None:
        data = json.dumps(model.to_dict())
        if insert:
            conn.execute("""
                INSERT INTO semantic_models (id, name, datasource_id, owner_id, data, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                model.id, model.name, model.datasource_id, model.owner_id, data,
                model.created_at.isoformat(), model.updated_at.isoformat(),
            ))
        else:
            conn.execute("""
                UPDATE semantic_models
                SET name = ?, owner_id = ?, data = ?, updated_at = ?
                WHERE id = ?
            """, (model.name, model.owner_id, data, model.updated_at.isoformat(), model.id))

        conn.execute("DELETE FROM model_entities WHERE model_id = ?", (model.id,))
        entities = []
        for table in model.tables:
            entities.append((table.id, model.id, "table"))
            entities.extend((f.id, model.id, "field") for f in table.fields)
        entities.extend((r.id, model.id, "relationship") for r in model.relationships)
        conn.executemany(
            "INSERT OR REPLACE INTO model_entities (entity_id, model_id, kind) VALUES (?, ?, ?)",
            entities,
        )

    def save(self, model: Model) -> Model:
        """Persist an existing model after in-memory changes."""
        with self.lock, sqlite3.connect(self.db_path) as conn:
            model.touch()
            self._save(model, conn)
            conn.commit()
        return model

    def _model_id_for(self, entity_id: str, kind: str) -> Optional[str]:
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT model_id FROM model_entities WHERE entity_id = ? AND kind = ?",
                (entity_id, kind),
            ).fetchone()
        return row[0] if row else None

    # =========================================================================
    # Models
    # =========================================================================

    def create_model(
        self,
        name: str,
        datasource_id: str,
        description: Optional[str] = None,
        owner_id: Optional[str] = None,
    ) -> Model:
        """
        Create an empty model bound to a datasource.

        Raises:
            ModelGateError: if a gateway is configured and does not know the datasource
        """
        datasource_id = str(datasource_id)
        if self.gateway is not None:
            self.gateway.get_datasource(datasource_id)

        model = Model(
            id=str(uuid.uuid4()),
            name=name,
            datasource_id=datasource_id,
            description=description,
            owner_id=owner_id,
        )

        with self.lock, sqlite3.connect(self.db_path) as conn:
            self._save(model, conn, insert=True)
            conn.commit()

        logger.info(f"Created model: {model.id} ({name})")
        return model

    def get_model(self, model_id: str) -> Optional[Model]:
        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            row = conn.execute(
                "SELECT data FROM semantic_models WHERE id = ?",
                (model_id,)
            ).fetchone()

        if row:
            return Model.from_dict(json.loads(row["data"]))
        return None

    def require_model(self, model_id: str) -> Model:
        model = self.get_model(model_id)
        if model is None:
            raise model_not_found(model_id)
        return model

    def list_models(self, owner_id: Optional[str] = None) -> List[Model]:
        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            if owner_id is not None:
                rows = conn.execute(
                    "SELECT data FROM semantic_models WHERE owner_id = ? ORDER BY updated_at DESC",
                    (owner_id,)
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT data FROM semantic_models ORDER BY updated_at DESC"
                ).fetchall()

        return [Model.from_dict(json.loads(row["data"])) for row in rows]

    def update_model(
        self,
        model_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        is_published: Optional[bool] = None,
    ) -> Model:
        with self.lock:
            model = self.require_model(model_id)
            if name is not None:
                model.name = name
            if description is not None:
                model.description = description
            if is_published is not None:
                model.is_published = is_published
            self.save(model)

        logger.info(f"Updated model: {model_id}")
        return model

    def delete_model(self, model_id: str) -> bool:
        """Delete a model with all its tables, fields and relationships."""
        with self.lock, sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute("DELETE FROM semantic_models WHERE id = ?", (model_id,))
            conn.execute("DELETE FROM model_entities WHERE model_id = ?", (model_id,))
            conn.commit()
            deleted = cursor.rowcount > 0

        if deleted:
            logger.info(f"Deleted model: {model_id}")
        return deleted

    # =========================================================================
    # Tables
    # =========================================================================

    def add_table(
        self,
        model_id: str,
        table_name: str,
        alias: str,
        schema_name: Optional[str] = None,
        label: Optional[str] = None,
        description: Optional[str] = None,
        is_primary: bool = False,
        sql_expression: Optional[str] = None,
        sort_order: int = 0,
        fields: Optional[List[ModelField]] = None,
    ) -> ModelTable:
        """
        Add a table to a model.

        Raises:
            ModelGateError: unknown model (404) or alias already used (409)
        """
        if not alias:
            raise definition_invalid("Table alias is required", {"table_name": table_name})

        with self.lock:
            model = self.require_model(model_id)
            if model.get_table_by_alias(alias):
                raise duplicate_alias(model_id, alias)

            table = ModelTable(
                id=str(uuid.uuid4()),
                model_id=model.id,
                table_name=table_name,
                alias=alias,
                schema_name=schema_name,
                label=label,
                description=description,
                is_primary=is_primary,
                sql_expression=sql_expression,
                sort_order=sort_order,
            )
            for f in fields or []:
                f.table_id = table.id
                if f.is_measure and not f.aggregation:
                    f.aggregation = DEFAULT_AGGREGATION
                table.fields.append(f)

            model.tables.append(table)
            self.save(model)

        logger.info(f"Added table {alias} ({table_name}) to model {model_id}")
        return table

    def find_model_for_table(self, table_id: str) -> Tuple[Model, ModelTable]:
        model_id = self._model_id_for(table_id, "table")
        model = self.get_model(model_id) if model_id else None
        table = model.get_table(table_id) if model else None
        if table is None:
            raise table_not_found(table_id)
        return model, table

    def remove_table(self, table_id: str) -> None:
        """Remove a table; its fields and relationships go with it."""
        with self.lock:
            model, table = self.find_model_for_table(table_id)
            model.remove_table(table.id)
            self.save(model)

        logger.info(f"Removed table {table.alias} from model {model.id}")

    # =========================================================================
    # Fields
    # =========================================================================

    def add_field(
        self,
        table_id: str,
        label: str,
        column_name: Optional[str] = None,
        role: Any = FieldRole.DIMENSION,
        description: Optional[str] = None,
        data_type: Optional[str] = None,
        aggregation: Optional[str] = None,
        expression: Optional[str] = None,
        format: Optional[str] = None,
        hidden: bool = False,
        sort_order: int = 0,
    ) -> ModelField:
        if not column_name and not expression:
            raise definition_invalid(
                "A field needs a column name or an expression",
                {"table_id": table_id, "label": label},
            )

        with self.lock:
            model, table = self.find_model_for_table(table_id)
            role = FieldRole.parse(role)
            new_field = ModelField(
                id=str(uuid.uuid4()),
                table_id=table.id,
                column_name=column_name,
                role=role,
                label=label,
                description=description,
                data_type=data_type,
                aggregation=(aggregation or DEFAULT_AGGREGATION) if role == FieldRole.MEASURE else aggregation,
                expression=expression,
                format=format,
                hidden=hidden,
                sort_order=sort_order,
            )
            table.fields.append(new_field)
            self.save(model)

        logger.info(f"Added field {label} to table {table.alias}")
        return new_field

    def find_model_for_field(self, field_id: str) -> Tuple[Model, ModelTable, ModelField]:
        model_id = self._model_id_for(field_id, "field")
        model = self.get_model(model_id) if model_id else None
        if model:
            for table, f in model.iter_fields():
                if f.id == field_id:
                    return model, table, f
        raise field_not_found(field_id)

    def update_field(self, field_id: str, **changes: Any) -> ModelField:
        """Update field attributes; keys are ModelField attribute names."""
        with self.lock:
            model, _, existing = self.find_model_for_field(field_id)
            for key, value in changes.items():
                if key in ("id", "table_id", "created_at"):
                    continue
                if not hasattr(existing, key):
                    raise definition_invalid(f"Unknown field attribute: {key}")
                if key == "role":
                    value = FieldRole.parse(value)
                setattr(existing, key, value)
            if existing.role == FieldRole.MEASURE and not existing.aggregation:
                existing.aggregation = DEFAULT_AGGREGATION
            self.save(model)

        return existing

    def remove_field(self, field_id: str) -> None:
        with self.lock:
            model, table, existing = self.find_model_for_field(field_id)
            table.fields = [f for f in table.fields if f.id != existing.id]
            self.save(model)

        logger.info(f"Removed field {existing.label} from table {table.alias}")

    # =========================================================================
    # Relationships
    # =========================================================================

    def add_relationship(
        self,
        model_id: str,
        left_table_id: str,
        left_column: str,
        right_table_id: str,
        right_column: str,
        join_type: str = DEFAULT_JOIN_TYPE,
        label: Optional[str] = None,
    ) -> Relationship:
        """
        Add a join edge between two tables of the same model.

        Raises:
            ModelGateError: unknown model, or a table that is not in this model
        """
        with self.lock:
            model = self.require_model(model_id)
            for table_id in (left_table_id, right_table_id):
                if model.get_table(table_id) is None:
                    raise table_not_found(table_id)

            rel = Relationship(
                id=str(uuid.uuid4()),
                model_id=model.id,
                left_table_id=left_table_id,
                left_column=left_column,
                right_table_id=right_table_id,
                right_column=right_column,
                join_type=(join_type or DEFAULT_JOIN_TYPE).upper(),
                label=label,
            )
            model.relationships.append(rel)
            self.save(model)

        logger.info(f"Added relationship {rel.id} to model {model_id}")
        return rel

    def find_model_for_relationship(self, relationship_id: str) -> Tuple[Model, Relationship]:
        model_id = self._model_id_for(relationship_id, "relationship")
        model = self.get_model(model_id) if model_id else None
        rel = model.get_relationship(relationship_id) if model else None
        if rel is None:
            raise relationship_not_found(relationship_id)
        return model, rel

    def remove_relationship(self, relationship_id: str) -> None:
        with self.lock:
            model, rel = self.find_model_for_relationship(relationship_id)
            model.remove_relationship(rel.id)
            self.save(model)

        logger.info(f"Removed relationship {relationship_id} from model {model.id}")

    def set_relationship_active(self, relationship_id: str, active: bool) -> Relationship:
        with self.lock:
            model, rel = self.find_model_for_relationship(relationship_id)
            rel.is_active = active
            self.save(model)
        return rel
