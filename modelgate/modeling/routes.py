"""
Modeling API Routes

REST API endpoints for the BI modeling UI:
- Semantic model management (models, tables, fields, relationships)
- Auto-import of physical tables
- Explore queries (compile and execute)
- Datasource listing and schema introspection
"""

import logging
import uuid
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from modelgate.adapters.base import AdapterError, ConnectionError
from modelgate.adapters.factory import DatabaseGateway
from modelgate.core.dependencies import get_explore_service, get_gateway, get_model_store
from modelgate.errors import connection_failed, model_not_found, query_failed
from .auto_import import auto_import, make_alias
from .explore import ExploreRequest, ExploreService
from .model_store import ModelStore
from .query_compiler import ExploreFilter, ExploreSort
from .semantic_model import DEFAULT_JOIN_TYPE, FieldRole, ModelField

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/modeling", tags=["Modeling"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class ModelCreate(BaseModel):
    """Create a new semantic model."""
    name: str
    datasourceId: str
    description: Optional[str] = None
    ownerId: Optional[str] = None


class ModelUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    isPublished: Optional[bool] = None


class FieldCreate(BaseModel):
    """Add a field to a table."""
    label: str
    columnName: Optional[str] = None
    fieldRole: str = FieldRole.DIMENSION.value
    description: Optional[str] = None
    dataType: Optional[str] = None
    aggregation: Optional[str] = None
    expression: Optional[str] = None
    format: Optional[str] = None
    hidden: bool = False
    sortOrder: int = 0


class FieldUpdate(BaseModel):
    label: Optional[str] = None
    columnName: Optional[str] = None
    fieldRole: Optional[str] = None
    description: Optional[str] = None
    dataType: Optional[str] = None
    aggregation: Optional[str] = None
    expression: Optional[str] = None
    format: Optional[str] = None
    hidden: Optional[bool] = None
    sortOrder: Optional[int] = None


class TableCreate(BaseModel):
    """Add a table to a model. Alias defaults to a generated one."""
    tableName: str
    alias: Optional[str] = None
    schemaName: Optional[str] = None
    label: Optional[str] = None
    description: Optional[str] = None
    isPrimary: bool = False
    sqlExpression: Optional[str] = None
    sortOrder: int = 0
    fields: List[FieldCreate] = Field(default_factory=list)


class RelationshipCreate(BaseModel):
    leftTableId: str
    leftColumn: str
    rightTableId: str
    rightColumn: str
    joinType: str = DEFAULT_JOIN_TYPE
    label: Optional[str] = None


class RelationshipUpdate(BaseModel):
    isActive: bool


class AutoImportRequest(BaseModel):
    """Import physical tables into a model."""
    tableNames: List[str]
    schemaName: Optional[str] = None
    detectRelationships: bool = True


class FilterBody(BaseModel):
    fieldId: str
    operator: str = "EQ"
    value: Any = None
    values: Optional[List[Any]] = None


class SortBody(BaseModel):
    fieldId: str
    direction: str = "ASC"


class ExploreBody(BaseModel):
    """Explore request: fields to select with optional filters and sorts."""
    modelId: str
    fieldIds: List[str]
    filters: List[FilterBody] = Field(default_factory=list)
    sorts: List[SortBody] = Field(default_factory=list)
    limit: Optional[int] = None

    def to_request(self) -> ExploreRequest:
        return ExploreRequest(
            model_id=self.modelId,
            field_ids=list(self.fieldIds),
            filters=[ExploreFilter(f.fieldId, f.operator, f.value, f.values) for f in self.filters],
            sorts=[ExploreSort(s.fieldId, s.direction) for s in self.sorts],
            limit=self.limit,
        )


FIELD_ATTRIBUTES = {
    "label": "label",
    "columnName": "column_name",
    "fieldRole": "role",
    "description": "description",
    "dataType": "data_type",
    "aggregation": "aggregation",
    "expression": "expression",
    "format": "format",
    "hidden": "hidden",
    "sortOrder": "sort_order",
}


# =============================================================================
# MODELS
# =============================================================================

@router.get("/models")
async def list_models(
    ownerId: Optional[str] = None,
    store: ModelStore = Depends(get_model_store),
):
    """List semantic models."""
    return {"models": [m.summary() for m in store.list_models(ownerId)]}


@router.post("/models")
async def create_model(body: ModelCreate, store: ModelStore = Depends(get_model_store)):
    """Create an empty semantic model bound to a datasource."""
    model = store.create_model(
        name=body.name,
        datasource_id=body.datasourceId,
        description=body.description,
        owner_id=body.ownerId,
    )
    return model.to_dict()


@router.get("/models/{model_id}")
async def get_model(model_id: str, store: ModelStore = Depends(get_model_store)):
    """Get a semantic model with its tables, fields and relationships."""
    return store.require_model(model_id).to_dict()


@router.put("/models/{model_id}")
async def update_model(model_id: str, body: ModelUpdate, store: ModelStore = Depends(get_model_store)):
    model = store.update_model(
        model_id,
        name=body.name,
        description=body.description,
        is_published=body.isPublished,
    )
    return model.to_dict()


@router.delete("/models/{model_id}")
async def delete_model(model_id: str, store: ModelStore = Depends(get_model_store)):
    """Delete a semantic model and everything in it."""
    if not store.delete_model(model_id):
        raise model_not_found(model_id)
    return {"deleted": True}


# =============================================================================
# TABLES
# =============================================================================

@router.post("/models/{model_id}/tables")
async def add_table(model_id: str, body: TableCreate, store: ModelStore = Depends(get_model_store)):
    """Add a table (or custom SQL source) to a model."""
    alias = body.alias
    if not alias:
        alias = make_alias(store.require_model(model_id), body.tableName)

    fields = [
        ModelField(
            id=str(uuid.uuid4()),
            table_id="",
            label=f.label,
            column_name=f.columnName,
            role=f.fieldRole,
            description=f.description,
            data_type=f.dataType,
            aggregation=f.aggregation,
            expression=f.expression,
            format=f.format,
            hidden=f.hidden,
            sort_order=f.sortOrder,
        )
        for f in body.fields
    ]

    table = store.add_table(
        model_id,
        table_name=body.tableName,
        alias=alias,
        schema_name=body.schemaName,
        label=body.label,
        description=body.description,
        is_primary=body.isPrimary,
        sql_expression=body.sqlExpression,
        sort_order=body.sortOrder,
        fields=fields,
    )
    return table.to_dict()


@router.delete("/tables/{table_id}")
async def remove_table(table_id: str, store: ModelStore = Depends(get_model_store)):
    """Remove a table with its fields and relationships."""
    store.remove_table(table_id)
    return {"deleted": True}


# =============================================================================
# FIELDS
# =============================================================================

@router.post("/tables/{table_id}/fields")
async def add_field(table_id: str, body: FieldCreate, store: ModelStore = Depends(get_model_store)):
    new_field = store.add_field(
        table_id,
        label=body.label,
        column_name=body.columnName,
        role=body.fieldRole,
        description=body.description,
        data_type=body.dataType,
        aggregation=body.aggregation,
        expression=body.expression,
        format=body.format,
        hidden=body.hidden,
        sort_order=body.sortOrder,
    )
    return new_field.to_dict()


@router.put("/fields/{field_id}")
async def update_field(field_id: str, body: FieldUpdate, store: ModelStore = Depends(get_model_store)):
    """Update a field. Omitted attributes are left unchanged."""
    changes = {
        FIELD_ATTRIBUTES[key]: value
        for key, value in body.model_dump(exclude_unset=True).items()
        if value is not None
    }
    return store.update_field(field_id, **changes).to_dict()


@router.delete("/fields/{field_id}")
async def remove_field(field_id: str, store: ModelStore = Depends(get_model_store)):
    store.remove_field(field_id)
    return {"deleted": True}


# =============================================================================
# RELATIONSHIPS
# =============================================================================

@router.post("/models/{model_id}/relationships")
async def add_relationship(
    model_id: str,
    body: RelationshipCreate,
    store: ModelStore = Depends(get_model_store),
):
    """Add a join edge between two tables of the model."""
    rel = store.add_relationship(
        model_id,
        left_table_id=body.leftTableId,
        left_column=body.leftColumn,
        right_table_id=body.rightTableId,
        right_column=body.rightColumn,
        join_type=body.joinType,
        label=body.label,
    )
    return rel.to_dict()


@router.put("/relationships/{relationship_id}")
async def update_relationship(
    relationship_id: str,
    body: RelationshipUpdate,
    store: ModelStore = Depends(get_model_store),
):
    """Activate or deactivate a relationship."""
    return store.set_relationship_active(relationship_id, body.isActive).to_dict()


@router.delete("/relationships/{relationship_id}")
async def remove_relationship(relationship_id: str, store: ModelStore = Depends(get_model_store)):
    store.remove_relationship(relationship_id)
    return {"deleted": True}


# =============================================================================
# AUTO-IMPORT
# =============================================================================

@router.post("/models/{model_id}/auto-import")
async def auto_import_tables(
    model_id: str,
    body: AutoImportRequest,
    store: ModelStore = Depends(get_model_store),
    gateway: DatabaseGateway = Depends(get_gateway),
):
    """
    Import physical tables with one field per column.

    Tables already in the model are left untouched; relationships are
    inferred from "<table>_id" columns.
    """
    model = store.require_model(model_id)
    try:
        model = auto_import(
            store,
            gateway,
            model_id,
            body.tableNames,
            schema_name=body.schemaName,
            detect=body.detectRelationships,
        )
    except AdapterError as e:
        raise _gateway_error(model.datasource_id, e)
    return model.to_dict()


# =============================================================================
# EXPLORE
# =============================================================================

@router.post("/explore")
async def explore(body: ExploreBody, service: ExploreService = Depends(get_explore_service)):
    """Compile and execute an explore query."""
    return service.explore(body.to_request()).to_dict()


@router.post("/explore/sql")
async def explore_sql(body: ExploreBody, service: ExploreService = Depends(get_explore_service)):
    """Compile an explore query without executing it."""
    return service.compile(body.to_request()).to_dict()


# =============================================================================
# DATASOURCES
# =============================================================================

def _gateway_error(datasource_id: str, error: AdapterError):
    if isinstance(error, ConnectionError):
        return connection_failed(datasource_id, str(error))
    return query_failed(datasource_id, str(error))


@router.get("/datasources")
async def list_datasources(gateway: DatabaseGateway = Depends(get_gateway)):
    """List configured datasources."""
    return {"datasources": [ds.to_dict() for ds in gateway.list_datasources()]}


@router.get("/datasources/{datasource_id}/tables")
async def list_datasource_tables(
    datasource_id: str,
    schemaName: Optional[str] = Query(None),
    gateway: DatabaseGateway = Depends(get_gateway),
):
    """List physical tables and their columns."""
    gateway.get_datasource(datasource_id)
    try:
        tables = gateway.introspect(datasource_id, schemaName)
    except AdapterError as e:
        raise _gateway_error(datasource_id, e)
    return {"datasourceId": datasource_id, "tables": [t.to_dict() for t in tables]}
