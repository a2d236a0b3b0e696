"""
Calculated Fields

Named formulas attached to a report. After a report's query runs, its
active calculated fields are applied row by row in sort order; each
field sees the columns of the result plus every calculated field
evaluated before it.

A cell whose expression fails to evaluate becomes null. Failures never
abort the rest of the row or the dataset.
"""

import json
import logging
import sqlite3
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from modelgate.errors import calculated_field_not_found, definition_invalid
from .expressions import (
    ExpressionSyntaxError, ResultType, evaluate_result, parse, validate_expression,
)

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CalculatedField:
    """A named expression evaluated against each row of a report's data."""
    id: str
    report_id: str
    name: str
    expression: str
    label: Optional[str] = None
    result_type: ResultType = ResultType.NUMBER
    format_pattern: Optional[str] = None
    is_active: bool = True
    sort_order: int = 0
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "reportId": self.report_id,
            "name": self.name,
            "label": self.label,
            "expression": self.expression,
            "resultType": self.result_type.value,
            "formatPattern": self.format_pattern,
            "isActive": self.is_active,
            "sortOrder": self.sort_order,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CalculatedField":
        def pick(camel: str, snake: str, default=None):
            return data.get(camel, data.get(snake, default))

        created = pick("createdAt", "created_at")
        updated = pick("updatedAt", "updated_at")
        return cls(
            id=data["id"],
            report_id=str(pick("reportId", "report_id")),
            name=data["name"],
            expression=data["expression"],
            label=data.get("label"),
            result_type=ResultType.parse(pick("resultType", "result_type", "NUMBER")),
            format_pattern=pick("formatPattern", "format_pattern"),
            is_active=bool(pick("isActive", "is_active", True)),
            sort_order=int(pick("sortOrder", "sort_order", 0) or 0),
            created_at=datetime.fromisoformat(created) if created else _now(),
            updated_at=datetime.fromisoformat(updated) if updated else _now(),
        )


# =============================================================================
# APPLY
# =============================================================================

def apply_fields(
    fields: Sequence[CalculatedField],
    columns: Sequence[str],
    rows: Sequence[Mapping[str, Any]],
) -> Tuple[List[str], List[Dict[str, Any]]]:
    """
    Add calculated columns to a dataset.

    Only active fields are applied, ordered by sort_order. Input rows are
    not modified.

    Returns:
        (columns, rows) with one column per field name not already present
    """
    active = sorted((f for f in fields if f.is_active), key=lambda f: f.sort_order)
    if not active:
        return list(columns), [dict(r) for r in rows]

    new_columns = list(columns)
    for f in active:
        if f.name not in new_columns:
            new_columns.append(f.name)

    # Parse each expression once; a field that does not parse is null everywhere
    compiled = []
    for f in active:
        try:
            compiled.append((f, parse(f.expression)))
        except ExpressionSyntaxError as e:
            logger.debug(f"Failed to parse '{f.expression}': {e}")
            compiled.append((f, None))

    new_rows = []
    for row in rows:
        values = dict(row)
        for f, node in compiled:
            if node is None:
                values[f.name] = None
                continue
            outcome = evaluate_result(node, values, f.result_type)
            if not outcome.ok:
                logger.debug(f"Failed to evaluate '{f.expression}': {outcome.error}")
            values[f.name] = outcome.value
        new_rows.append(values)

    return new_columns, new_rows


# =============================================================================
# STORE
# =============================================================================

class CalculatedFieldStore:
    """
    Manages calculated field persistence.

    Uses SQLite for storage with JSON serialization.
    """

    UPDATABLE = ("name", "label", "expression", "result_type", "format_pattern", "is_active", "sort_order")

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self):
        """Initialize database schema."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS calculated_fields (
                    id TEXT PRIMARY KEY,
                    report_id TEXT NOT NULL,
                    sort_order INTEGER NOT NULL DEFAULT 0,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    data TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_calculated_fields_report
                ON calculated_fields(report_id, sort_order)
            """)
            conn.commit()

    def _write(self, calc: CalculatedField, insert: bool) -> None:
        data = json.dumps(calc.to_dict())
        with self._lock, sqlite3.connect(self.db_path) as conn:
            if insert:
                conn.execute("""
                    INSERT INTO calculated_fields
                        (id, report_id, sort_order, is_active, data, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                """, (
                    calc.id, calc.report_id, calc.sort_order, int(calc.is_active), data,
                    calc.created_at.isoformat(), calc.updated_at.isoformat(),
                ))
            else:
                conn.execute("""
                    UPDATE calculated_fields
                    SET sort_order = ?, is_active = ?, data = ?, updated_at = ?
                    WHERE id = ?
                """, (calc.sort_order, int(calc.is_active), data, calc.updated_at.isoformat(), calc.id))
            conn.commit()

    def create(
        self,
        report_id: str,
        name: str,
        expression: str,
        label: Optional[str] = None,
        result_type: Any = ResultType.NUMBER,
        format_pattern: Optional[str] = None,
        sort_order: int = 0,
    ) -> CalculatedField:
        """
        Create a calculated field.

        Raises:
            ModelGateError: invalid expression or missing name; nothing is stored
        """
        if not name or not name.strip():
            raise definition_invalid("Calculated field name is required", {"report_id": report_id})
        validate_expression(expression)

        calc = CalculatedField(
            id=str(uuid.uuid4()),
            report_id=str(report_id),
            name=name,
            label=label,
            expression=expression,
            result_type=ResultType.parse(result_type),
            format_pattern=format_pattern,
            sort_order=sort_order,
        )
        self._write(calc, insert=True)

        logger.info(f"Created calculated field {calc.id} ({name}) for report {report_id}")
        return calc

    def get(self, calc_id: str) -> Optional[CalculatedField]:
        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            row = conn.execute(
                "SELECT data FROM calculated_fields WHERE id = ?",
                (calc_id,)
            ).fetchone()

        if row:
            return CalculatedField.from_dict(json.loads(row["data"]))
        return None

    def require(self, calc_id: str) -> CalculatedField:
        calc = self.get(calc_id)
        if calc is None:
            raise calculated_field_not_found(calc_id)
        return calc

    def list_for_report(self, report_id: str, active_only: bool = False) -> List[CalculatedField]:
        query = "SELECT data FROM calculated_fields WHERE report_id = ?"
        if active_only:
            query += " AND is_active = 1"
        query += " ORDER BY sort_order, created_at"

        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            rows = conn.execute(query, (str(report_id),)).fetchall()

        return [CalculatedField.from_dict(json.loads(row["data"])) for row in rows]

    def update(self, calc_id: str, **changes: Any) -> CalculatedField:
        """
        Update attributes of a calculated field. None values are ignored.

        Raises:
            ModelGateError: unknown id (404) or invalid new expression (400)
        """
        calc = self.require(calc_id)

        for key, value in changes.items():
            if value is None:
                continue
            if key not in self.UPDATABLE:
                raise definition_invalid(f"Unknown calculated field attribute: {key}")
            if key == "expression":
                validate_expression(value)
            if key == "result_type":
                value = ResultType.parse(value)
            setattr(calc, key, value)

        calc.updated_at = _now()
        self._write(calc, insert=False)

        logger.info(f"Updated calculated field {calc_id}")
        return calc

    def delete(self, calc_id: str) -> None:
        with self._lock, sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute("DELETE FROM calculated_fields WHERE id = ?", (calc_id,))
            conn.commit()
            deleted = cursor.rowcount > 0

        if not deleted:
            raise calculated_field_not_found(calc_id)
        logger.info(f"Deleted calculated field {calc_id}")

    def apply_calculated_fields(
        self,
        report_id: str,
        columns: Sequence[str],
        rows: Sequence[Mapping[str, Any]],
    ) -> Tuple[List[str], List[Dict[str, Any]]]:
        """Apply the report's active calculated fields to a dataset."""
        fields = self.list_for_report(report_id, active_only=True)
        if not fields:
            return list(columns), [dict(r) for r in rows]
        return apply_fields(fields, columns, rows)
