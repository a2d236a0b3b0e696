"""
Explore Service

Runs an explore request end to end:

    load model -> compile -> transpile to datasource dialect
              -> execute through the result cache -> label-keyed rows

Gateway failures become QUERY_FAILED / CONNECTION_FAILED errors and are
never cached.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from modelgate.adapters.base import AdapterError, ConnectionError, QueryResult
from modelgate.cache import ResultCache
from modelgate.errors import connection_failed, query_failed
from .model_store import ModelStore
from .query_compiler import CompiledQuery, ExploreFilter, ExploreSort, compile_explore, transpile

logger = logging.getLogger(__name__)


@dataclass
class ExploreRequest:
    """Fields, filters and sorts to query from one model."""
    model_id: str
    field_ids: List[str]
    filters: List[ExploreFilter] = field(default_factory=list)
    sorts: List[ExploreSort] = field(default_factory=list)
    limit: Optional[int] = None

    @classmethod
    def from_dict(cls, data: dict) -> "ExploreRequest":
        return cls(
            model_id=str(data.get("modelId", data.get("model_id", ""))),
            field_ids=[str(f) for f in data.get("fieldIds", data.get("field_ids", []))],
            filters=[ExploreFilter.from_dict(f) for f in data.get("filters") or []],
            sorts=[ExploreSort.from_dict(s) for s in data.get("sorts") or []],
            limit=data.get("limit"),
        )


@dataclass
class ExploreResult:
    sql: str
    columns: List[str]
    rows: List[Dict[str, Any]]
    row_count: int
    execution_ms: float
    cached: bool = False

    def to_dict(self) -> dict:
        return {
            "sql": self.sql,
            "columns": self.columns,
            "rows": self.rows,
            "rowCount": self.row_count,
            "executionMs": self.execution_ms,
            "cached": self.cached,
        }


def rows_by_label(columns: Sequence[str], result: QueryResult) -> List[Dict[str, Any]]:
    """Map positional rows to dicts keyed by output label."""
    return [dict(zip(columns, row)) for row in result.rows]


class ExploreService:
    """
    Compiles and executes explore requests.

    Usage:
        service = ExploreService(store, gateway, cache, settings)
        result = service.explore(ExploreRequest(model_id, [field_id]))
    """

    def __init__(self, store: ModelStore, gateway, cache: ResultCache, settings):
        self.store = store
        self.gateway = gateway
        self.cache = cache
        self.settings = settings

    def compile(self, request: ExploreRequest) -> CompiledQuery:
        """
        Compile a request to SQL in the datasource's dialect.

        Raises:
            ModelGateError: unknown model or datasource, or a compile error
        """
        model = self.store.require_model(request.model_id)
        return self._compile(model, request)

    def _compile(self, model, request: ExploreRequest) -> CompiledQuery:
        datasource = self.gateway.get_datasource(model.datasource_id)

        limit = request.limit if request.limit is not None else self.settings.explore_default_limit
        compiled = compile_explore(
            model,
            request.field_ids,
            request.filters,
            request.sorts,
            limit=limit,
            max_limit=self.settings.explore_max_limit,
        )
        compiled.sql = transpile(compiled.sql, datasource.sql_dialect)
        return compiled

    def explore(self, request: ExploreRequest) -> ExploreResult:
        """
        Compile and execute a request.

        Raises:
            ModelGateError: compile errors, or QUERY_FAILED / CONNECTION_FAILED
                when the gateway fails
        """
        model = self.store.require_model(request.model_id)
        model_ds = model.datasource_id
        compiled = self._compile(model, request)

        def run() -> QueryResult:
            start = time.perf_counter()
            result = self.gateway.execute(model_ds, compiled.sql, compiled.limit)
            result.execution_ms = round((time.perf_counter() - start) * 1000, 2)
            return result

        try:
            result, hit = self.cache.execute_with_cache(
                model_ds, compiled.sql, {"limit": compiled.limit}, run
            )
        except ConnectionError as e:
            raise connection_failed(model_ds, str(e))
        except AdapterError as e:
            raise query_failed(model_ds, str(e), compiled.sql)

        logger.info(
            f"Explore on model {request.model_id}: {result.row_count} rows "
            f"in {result.execution_ms}ms (cached={hit})"
        )

        return ExploreResult(
            sql=compiled.sql,
            columns=compiled.columns,
            rows=rows_by_label(compiled.columns, result),
            row_count=result.row_count,
            execution_ms=result.execution_ms,
            cached=hit,
        )
