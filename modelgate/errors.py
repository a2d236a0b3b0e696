"""
ModelGate - Structured Error Handling

Every failure that reaches an API caller is a ModelGateError with a stable
code, a human-readable message and optional details.

ERROR FAMILIES:
---------------
1. Definition errors (2xxx): authoring a model, table, field, relationship
   or calculated field that references something missing or is invalid
2. Compilation errors (3xxx): an explore request that cannot become SQL
3. Execution errors (4xxx): the database gateway rejected or failed a query
4. Internal errors (9xxx): anything unexpected

ERROR RESPONSE FORMAT:
----------------------
{
    "error": {
        "code": "ERR_2001",
        "message": "Model '42' not found",
        "details": {"model_id": "42"},
        "suggestion": "List models with GET /v1/modeling/models",
        "request_id": "abc-123",
        "timestamp": "2026-01-01T00:00:00+00:00"
    }
}

Calculated-field cell failures and cache failures never surface here: the
former become null cells, the latter are treated as cache misses.
"""

import logging
import uuid
from typing import Optional, Dict, Any, List
from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timezone

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


# =============================================================================
# ERROR CODES
# =============================================================================

class ErrorCode(str, Enum):
    """Unique error codes for every error type."""

    # Definition (2xxx)
    ERR_MODEL_NOT_FOUND = "ERR_2001"
    ERR_TABLE_NOT_FOUND = "ERR_2002"
    ERR_FIELD_NOT_FOUND = "ERR_2003"
    ERR_RELATIONSHIP_NOT_FOUND = "ERR_2004"
    ERR_DATASOURCE_NOT_FOUND = "ERR_2005"
    ERR_DUPLICATE_ALIAS = "ERR_2006"
    ERR_CALCULATED_FIELD_NOT_FOUND = "ERR_2007"
    ERR_EXPRESSION_INVALID = "ERR_2008"
    ERR_DEFINITION_INVALID = "ERR_2009"

    # Compilation (3xxx)
    ERR_NO_FIELDS_SELECTED = "ERR_3001"
    ERR_NO_JOIN_PATH = "ERR_3002"
    ERR_INVALID_LIMIT = "ERR_3003"

    # Execution (4xxx)
    ERR_QUERY_FAILED = "ERR_4001"
    ERR_CONNECTION_FAILED = "ERR_4002"

    # Internal (9xxx)
    ERR_INTERNAL = "ERR_9001"


# =============================================================================
# ERROR RESPONSE
# =============================================================================

@dataclass
class ModelGateError(Exception):
    """
    Structured error with all context needed for debugging.

    Attributes:
        code: Unique error code for searching logs
        message: Human-readable error message
        status_code: HTTP status code
        details: Additional context (dict)
        suggestion: How to fix the issue
        request_id: Request tracing ID
    """
    code: ErrorCode
    message: str
    status_code: int = 400
    details: Dict[str, Any] = field(default_factory=dict)
    suggestion: Optional[str] = None
    request_id: Optional[str] = None

    def __post_init__(self):
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to API response format."""
        error_dict = {
            "code": self.code.value,
            "message": self.message,
        }

        if self.details:
            error_dict["details"] = self.details

        if self.suggestion:
            error_dict["suggestion"] = self.suggestion

        if self.request_id:
            error_dict["request_id"] = self.request_id

        error_dict["timestamp"] = datetime.now(timezone.utc).isoformat()

        return {"error": error_dict}

    def to_response(self) -> JSONResponse:
        """Convert to FastAPI JSONResponse."""
        return JSONResponse(
            status_code=self.status_code,
            content=self.to_dict()
        )

    def log(self, level: Optional[str] = None):
        """Log the error with context. Client errors log as warnings."""
        if level is None:
            level = "error" if self.status_code >= 500 else "warning"

        log_msg = f"[{self.code.value}] {self.message}"
        if self.details:
            log_msg += f" | details={self.details}"
        if self.request_id:
            log_msg += f" | request_id={self.request_id}"

        getattr(logger, level)(log_msg)


# =============================================================================
# DEFINITION ERRORS
# =============================================================================

def _not_found(code: ErrorCode, kind: str, key: str, entity_id: Any, suggestion: Optional[str] = None) -> ModelGateError:
    return ModelGateError(
        code=code,
        message=f"{kind} '{entity_id}' not found",
        status_code=404,
        details={key: entity_id},
        suggestion=suggestion,
    )


def model_not_found(model_id: str) -> ModelGateError:
    return _not_found(
        ErrorCode.ERR_MODEL_NOT_FOUND, "Model", "model_id", model_id,
        suggestion="List models with GET /v1/modeling/models",
    )


def table_not_found(table_id: str) -> ModelGateError:
    return _not_found(ErrorCode.ERR_TABLE_NOT_FOUND, "Table", "table_id", table_id)


def field_not_found(field_id: str) -> ModelGateError:
    return _not_found(ErrorCode.ERR_FIELD_NOT_FOUND, "Field", "field_id", field_id)


def relationship_not_found(relationship_id: str) -> ModelGateError:
    return _not_found(
        ErrorCode.ERR_RELATIONSHIP_NOT_FOUND, "Relationship", "relationship_id", relationship_id
    )


def calculated_field_not_found(calc_id: str) -> ModelGateError:
    return _not_found(
        ErrorCode.ERR_CALCULATED_FIELD_NOT_FOUND, "Calculated field", "calculated_field_id", calc_id
    )


def datasource_not_found(
    datasource_id: str,
    available: Optional[List[str]] = None
) -> ModelGateError:
    """Create datasource not found error with the configured alternatives."""
    details = {"datasource_id": datasource_id}
    if available:
        details["available_datasources"] = available[:10]

    return ModelGateError(
        code=ErrorCode.ERR_DATASOURCE_NOT_FOUND,
        message=f"Datasource '{datasource_id}' not found",
        status_code=404,
        details=details,
        suggestion="Check the datasources file for configured datasource ids",
    )


def duplicate_alias(model_id: str, alias: str) -> ModelGateError:
    return ModelGateError(
        code=ErrorCode.ERR_DUPLICATE_ALIAS,
        message=f"Alias '{alias}' is already used in model '{model_id}'",
        status_code=409,
        details={"model_id": model_id, "alias": alias},
        suggestion="Table aliases must be unique within a model",
    )


def expression_invalid(message: str, expression: Optional[str] = None) -> ModelGateError:
    details = {}
    if expression is not None:
        details["expression"] = expression[:200]
    return ModelGateError(
        code=ErrorCode.ERR_EXPRESSION_INVALID,
        message=message,
        status_code=400,
        details=details,
    )


def definition_invalid(message: str, details: Optional[Dict[str, Any]] = None) -> ModelGateError:
    return ModelGateError(
        code=ErrorCode.ERR_DEFINITION_INVALID,
        message=message,
        status_code=400,
        details=details or {},
    )


# =============================================================================
# COMPILATION ERRORS
# =============================================================================

def no_fields_selected(model_id: str, field_ids: Optional[List[str]] = None) -> ModelGateError:
    return ModelGateError(
        code=ErrorCode.ERR_NO_FIELDS_SELECTED,
        message="No valid fields selected",
        status_code=400,
        details={"model_id": model_id, "field_ids": field_ids or []},
        suggestion="Select at least one field that belongs to the model",
    )


def no_join_path(model_id: str, primary_alias: str, unreachable: List[str]) -> ModelGateError:
    """Create error for tables that no active relationship connects."""
    return ModelGateError(
        code=ErrorCode.ERR_NO_JOIN_PATH,
        message=(
            f"No join path from '{primary_alias}' to: {', '.join(unreachable)}"
        ),
        status_code=400,
        details={
            "model_id": model_id,
            "primary_table": primary_alias,
            "unreachable_tables": unreachable,
        },
        suggestion="Add an active relationship connecting these tables",
    )


def invalid_limit(limit: int, max_limit: int) -> ModelGateError:
    return ModelGateError(
        code=ErrorCode.ERR_INVALID_LIMIT,
        message=f"Limit must be between 1 and {max_limit}, got {limit}",
        status_code=400,
        details={"limit": limit, "max_limit": max_limit},
    )


# =============================================================================
# EXECUTION ERRORS
# =============================================================================

def query_failed(
    datasource_id: str,
    error: str,
    sql: Optional[str] = None
) -> ModelGateError:
    details = {"datasource_id": datasource_id, "error": error}
    if sql:
        details["sql"] = sql
    return ModelGateError(
        code=ErrorCode.ERR_QUERY_FAILED,
        message=f"Query failed on datasource '{datasource_id}': {error}",
        status_code=502,
        details=details,
    )


def connection_failed(datasource_id: str, error: str) -> ModelGateError:
    return ModelGateError(
        code=ErrorCode.ERR_CONNECTION_FAILED,
        message=f"Failed to connect to datasource '{datasource_id}'",
        status_code=502,
        details={"datasource_id": datasource_id, "error": error},
        suggestion="Verify the datasource connection settings",
    )


def internal_error(
    message: str = "An unexpected error occurred",
    details: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None
) -> ModelGateError:
    return ModelGateError(
        code=ErrorCode.ERR_INTERNAL,
        message=message,
        status_code=500,
        details=details or {},
        request_id=request_id,
    )


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================

async def modelgate_error_handler(request: Request, exc: ModelGateError) -> JSONResponse:
    """Handle ModelGateError and return structured response."""
    if not exc.request_id:
        exc.request_id = getattr(request.state, "request_id", None) or str(uuid.uuid4())[:8]

    exc.log()

    return exc.to_response()


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTPException and convert to structured format."""
    request_id = getattr(request.state, "request_id", None) or str(uuid.uuid4())[:8]

    if isinstance(exc.detail, dict):
        message = exc.detail.get("message", str(exc.detail))
    else:
        message = str(exc.detail)

    error_response = {
        "error": {
            "code": f"ERR_HTTP_{exc.status_code}",
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "request_id": request_id
        }
    }

    if isinstance(exc.detail, dict):
        error_response["error"]["details"] = {
            k: v for k, v in exc.detail.items()
            if k not in ("message", "error")
        }

    logger.warning(f"[ERR_HTTP_{exc.status_code}] {exc.detail} | request_id={request_id}")

    return JSONResponse(
        status_code=exc.status_code,
        content=error_response
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    request_id = getattr(request.state, "request_id", None) or str(uuid.uuid4())[:8]

    logger.exception(f"Unhandled exception | request_id={request_id}")

    error = internal_error(
        details={"exception_type": type(exc).__name__},
        request_id=request_id
    )

    return error.to_response()


def install_error_handlers(app):
    """Install error handlers on FastAPI app."""
    app.add_exception_handler(ModelGateError, modelgate_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    logger.info("Structured error handlers installed")
