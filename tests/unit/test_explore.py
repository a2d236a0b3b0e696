"""
Tests for the explore service.
"""

import pytest

from modelgate.adapters.base import ConnectionError
from modelgate.errors import ErrorCode, ModelGateError
from modelgate.modeling.explore import ExploreRequest, ExploreService


class DownGateway:
    """Gateway whose datasource cannot be reached."""

    def __init__(self, gateway):
        self.inner = gateway
        self.calls = 0

    def get_datasource(self, datasource_id):
        return self.inner.get_datasource(datasource_id)

    def execute(self, datasource_id, sql, limit=None):
        self.calls += 1
        raise ConnectionError("connection refused", engine="duckdb")


@pytest.fixture
def service(store, gateway, cache, settings):
    return ExploreService(store, gateway, cache, settings)


class TestExploreRequest:
    """Tests for ExploreRequest.from_dict."""

    def test_camel_case(self):
        request = ExploreRequest.from_dict({
            "modelId": "m1",
            "fieldIds": ["a", "b"],
            "filters": [{"fieldId": "a", "operator": "IN", "values": [1, 2]}],
            "sorts": [{"fieldId": "b", "direction": "desc"}],
            "limit": 5,
        })
        assert request.model_id == "m1"
        assert request.field_ids == ["a", "b"]
        assert request.filters[0].values == [1, 2]
        assert request.sorts[0].direction == "desc"
        assert request.limit == 5

    def test_defaults(self):
        request = ExploreRequest.from_dict({"model_id": "m1", "field_ids": ["a"], "filters": None})
        assert request.filters == []
        assert request.sorts == []
        assert request.limit is None


class TestExploreService:
    """Tests for compiling and executing through the cache."""

    def test_rows_keyed_by_label(self, service, star_model):
        """Test revenue per region."""
        result = service.explore(ExploreRequest.from_dict({
            "modelId": star_model["model"],
            "fieldIds": [star_model["region"], star_model["amount"]],
            "sorts": [{"fieldId": star_model["region"]}],
        }))
        assert result.columns == ["Region", "Amount"]
        assert [(r["Region"], float(r["Amount"])) for r in result.rows] == [
            ("EU", 150.0), ("US", 225.5),
        ]
        assert result.row_count == 2
        assert result.cached is False

    def test_default_limit(self, service, star_model):
        compiled = service.compile(ExploreRequest(star_model["model"], [star_model["status"]]))
        assert compiled.limit == 1000
        assert compiled.sql.rstrip().endswith("LIMIT 1000")

    def test_limit_clamped(self, service, star_model, settings):
        settings.explore_max_limit = 2
        compiled = service.compile(ExploreRequest(star_model["model"], [star_model["status"]], limit=50))
        assert compiled.limit == 2

    def test_cache_hit(self, service, star_model):
        request = ExploreRequest(star_model["model"], [star_model["name"]])
        first = service.explore(request)
        second = service.explore(request)
        assert (first.cached, second.cached) == (False, True)
        assert second.rows == first.rows

    def test_unknown_model(self, service):
        with pytest.raises(ModelGateError) as exc:
            service.explore(ExploreRequest("missing", ["x"]))
        assert exc.value.code == ErrorCode.ERR_MODEL_NOT_FOUND

    def test_connection_failure(self, store, gateway, cache, settings, star_model):
        """Test that an unreachable datasource maps to CONNECTION_FAILED."""
        down = DownGateway(gateway)
        service = ExploreService(store, down, cache, settings)
        request = ExploreRequest(star_model["model"], [star_model["status"]])

        for _ in range(2):
            with pytest.raises(ModelGateError) as exc:
                service.explore(request)
            assert exc.value.code == ErrorCode.ERR_CONNECTION_FAILED
            assert exc.value.status_code == 502

        assert down.calls == 2
        assert cache.stats()["entryCount"] == 0
