"""
Integration tests for the cache admin endpoints.
"""


def run_explore(client, star_model, field_key="status"):
    response = client.post("/v1/modeling/explore", json={
        "modelId": star_model["model"],
        "fieldIds": [star_model[field_key]],
    })
    assert response.status_code == 200
    return response.json()


class TestCacheStats:
    """Tests for GET /v1/cache/stats."""

    def test_initial_stats(self, client):
        data = client.get("/v1/cache/stats").json()
        assert data["enabled"] is True
        assert data["entryCount"] == 0
        assert data["hits"] == 0
        assert data["maxEntries"] == 100
        assert data["ttlSeconds"] == 300

    def test_stats_after_queries(self, client, star_model):
        """Test counters after a miss and a hit."""
        run_explore(client, star_model)
        run_explore(client, star_model)
        data = client.get("/v1/cache/stats").json()
        assert data["misses"] == 1
        assert data["hits"] == 1
        assert data["hitRate"] == 0.5
        assert data["estimatedBytes"] > 0


class TestCacheInvalidation:
    """Tests for the invalidation endpoints."""

    def test_invalidate_all(self, client, star_model):
        """Test that an empty request drops everything."""
        run_explore(client, star_model, "status")
        run_explore(client, star_model, "region")

        response = client.post("/v1/cache/invalidate")
        assert response.status_code == 200
        assert response.json() == {"invalidatedCount": 2}
        assert run_explore(client, star_model)["cached"] is False

    def test_invalidate_datasource(self, client, star_model):
        run_explore(client, star_model)
        response = client.post("/v1/cache/invalidate/datasource/warehouse")
        assert response.json() == {"invalidatedCount": 1}

        response = client.post("/v1/cache/invalidate/datasource/other")
        assert response.json() == {"invalidatedCount": 0}

    def test_invalidate_by_sql(self, client, star_model):
        """Test dropping one compiled query."""
        sql = run_explore(client, star_model, "status")["sql"]
        run_explore(client, star_model, "region")

        response = client.post("/v1/cache/invalidate", json={"datasourceId": "warehouse", "sql": sql})
        assert response.json() == {"invalidatedCount": 1}
        assert client.get("/v1/cache/stats").json()["entryCount"] == 1

    def test_sql_requires_datasource(self, client):
        """Test that sql alone is rejected."""
        response = client.post("/v1/cache/invalidate", json={"sql": "SELECT 1"})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "ERR_HTTP_400"


class TestCacheToggle:
    """Tests for enabling and disabling the cache."""

    def test_disable_bypasses_cache(self, client, star_model):
        """Test that a disabled cache never reports hits."""
        run_explore(client, star_model)
        assert client.post("/v1/cache/toggle", params={"enabled": False}).json() == {"enabled": False}
        assert client.get("/v1/cache/stats").json()["entryCount"] == 0

        assert run_explore(client, star_model)["cached"] is False
        assert run_explore(client, star_model)["cached"] is False

    def test_reenable(self, client, star_model):
        client.post("/v1/cache/toggle", params={"enabled": False})
        assert client.post("/v1/cache/toggle", params={"enabled": True}).json() == {"enabled": True}
        run_explore(client, star_model)
        assert run_explore(client, star_model)["cached"] is True
