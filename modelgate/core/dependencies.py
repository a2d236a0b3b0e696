"""
FastAPI Dependencies

Reusable dependencies for dependency injection. Services are built once
by the application lifespan and live on app.state.
"""

from fastapi import Request

from modelgate.adapters.factory import DatabaseGateway
from modelgate.cache import ResultCache
from modelgate.modeling.calculated_fields import CalculatedFieldStore
from modelgate.modeling.explore import ExploreService
from modelgate.modeling.model_store import ModelStore


def get_model_store(request: Request) -> ModelStore:
    return request.app.state.model_store


def get_gateway(request: Request) -> DatabaseGateway:
    return request.app.state.gateway


def get_result_cache(request: Request) -> ResultCache:
    return request.app.state.result_cache


def get_explore_service(request: Request) -> ExploreService:
    return request.app.state.explore_service


def get_calculated_field_store(request: Request) -> CalculatedFieldStore:
    return request.app.state.calculated_field_store
