"""
Calculated Field Routes

CRUD for report calculated fields, expression validation, and applying
a report's fields to a dataset.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel, Field

from modelgate.core.dependencies import get_calculated_field_store
from modelgate.errors import ModelGateError
from .calculated_fields import CalculatedFieldStore
from .expressions import ResultType, validate_expression

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/calculated-fields", tags=["Calculated Fields"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class CalcFieldCreate(BaseModel):
    """Create a calculated field on a report."""
    reportId: str
    name: str
    expression: str
    label: Optional[str] = None
    resultType: ResultType = ResultType.NUMBER
    formatPattern: Optional[str] = None
    sortOrder: int = 0


class CalcFieldUpdate(BaseModel):
    """Update a calculated field. Omitted attributes are left unchanged."""
    name: Optional[str] = None
    label: Optional[str] = None
    expression: Optional[str] = None
    resultType: Optional[ResultType] = None
    formatPattern: Optional[str] = None
    isActive: Optional[bool] = None
    sortOrder: Optional[int] = None


class ApplyRequest(BaseModel):
    """Dataset to extend with a report's calculated fields."""
    columns: List[str] = Field(default_factory=list)
    rows: List[Dict[str, Any]] = Field(default_factory=list)


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("")
async def create_calculated_field(
    body: CalcFieldCreate,
    store: CalculatedFieldStore = Depends(get_calculated_field_store),
):
    """Create a calculated field. The expression is validated first."""
    calc = store.create(
        report_id=body.reportId,
        name=body.name,
        expression=body.expression,
        label=body.label,
        result_type=body.resultType,
        format_pattern=body.formatPattern,
        sort_order=body.sortOrder,
    )
    return calc.to_dict()


@router.post("/validate")
async def validate_calculated_expression(expression: str = Body(..., embed=True)):
    """Check an expression without storing anything."""
    try:
        validate_expression(expression)
    except ModelGateError as e:
        return {"valid": False, "errors": [e.message]}
    return {"valid": True, "errors": []}


@router.get("/report/{report_id}")
async def list_calculated_fields(
    report_id: str,
    store: CalculatedFieldStore = Depends(get_calculated_field_store),
):
    """List a report's calculated fields in sort order."""
    return {"fields": [c.to_dict() for c in store.list_for_report(report_id)]}


@router.post("/report/{report_id}/apply")
async def apply_calculated_fields(
    report_id: str,
    body: ApplyRequest,
    store: CalculatedFieldStore = Depends(get_calculated_field_store),
):
    """Add the report's active calculated fields as columns of the dataset."""
    columns, rows = store.apply_calculated_fields(report_id, body.columns, body.rows)
    return {"columns": columns, "rows": rows, "rowCount": len(rows)}


@router.get("/{calc_id}")
async def get_calculated_field(
    calc_id: str,
    store: CalculatedFieldStore = Depends(get_calculated_field_store),
):
    return store.require(calc_id).to_dict()


@router.put("/{calc_id}")
async def update_calculated_field(
    calc_id: str,
    body: CalcFieldUpdate,
    store: CalculatedFieldStore = Depends(get_calculated_field_store),
):
    calc = store.update(
        calc_id,
        name=body.name,
        label=body.label,
        expression=body.expression,
        result_type=body.resultType,
        format_pattern=body.formatPattern,
        is_active=body.isActive,
        sort_order=body.sortOrder,
    )
    return calc.to_dict()


@router.delete("/{calc_id}")
async def delete_calculated_field(
    calc_id: str,
    store: CalculatedFieldStore = Depends(get_calculated_field_store),
):
    store.delete(calc_id)
    return {"deleted": True}
