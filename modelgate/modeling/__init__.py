"""
ModelGate Modeling Module

Provides the semantic layer:
- Semantic models (tables, fields, relationships) and their store
- Auto-import of physical tables with relationship inference
- Join-path resolution and explore query compilation
- Calculated fields evaluated over query results
"""

from .semantic_model import Model, ModelTable, ModelField, Relationship, FieldRole, Aggregation
from .model_store import ModelStore
from .query_compiler import compile_explore, transpile, ExploreFilter, ExploreSort
from .explore import ExploreService, ExploreRequest, ExploreResult
from .calculated_fields import CalculatedField, CalculatedFieldStore, apply_fields

__all__ = [
    "Model",
    "ModelTable",
    "ModelField",
    "Relationship",
    "FieldRole",
    "Aggregation",
    "ModelStore",
    "compile_explore",
    "transpile",
    "ExploreFilter",
    "ExploreSort",
    "ExploreService",
    "ExploreRequest",
    "ExploreResult",
    "CalculatedField",
    "CalculatedFieldStore",
    "apply_fields",
]
