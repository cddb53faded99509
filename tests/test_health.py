"""
Health check, response shaping and middleware tests.
"""
from fastapi import status
from redis.exceptions import ConnectionError as RedisConnectionError

from medportal.api.middleware import rate_limit as rate_limit_module
from medportal.api.middleware.rate_limit import SlidingWindow
from medportal.api.responses import envelope, error_envelope


class TestHealth:
    async def test_health_check(self, client):
        response = await client.get("/api/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["services"] == {"database": "connected", "api": "running"}
        assert "timestamp" in data

    async def test_security_headers(self, client):
        response = await client.get("/api/health")

        assert response.headers["x-content-type-options"] == "nosniff"
        assert response.headers["x-frame-options"] == "DENY"
        assert response.headers["x-xss-protection"] == "1; mode=block"


class TestResponseShape:
    async def test_unknown_route_is_enveloped(self, client):
        response = await client.get("/api/does-not-exist")
        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Not Found"}

    async def test_bad_path_parameter(self, client, admin):
        response = await client.put("/api/blogs/not-a-uuid", headers=admin.headers, json={"title": "x"})
        assert response.status_code == 400
        assert response.json()["details"][0]["field"] == "blog_id"

    def test_envelope_omits_empty_message(self):
        response = envelope({"a": 1})
        assert response.status_code == status.HTTP_200_OK
        assert response.body == b'{"success":true,"data":{"a":1}}'

    def test_error_envelope_details(self):
        response = error_envelope("Validation failed", 400, details=[{"field": "x", "message": "bad"}])
        assert response.status_code == 400
        assert b'"details":[{"field":"x","message":"bad"}]' in response.body


class TestSlidingWindow:
    def test_limit_per_key(self):
        window = SlidingWindow()
        assert [window.hit("a", 2, 60) for _ in range(3)] == [False, False, True]
        assert window.hit("b", 2, 60) is False

    def test_reset(self):
        window = SlidingWindow()
        window.hit("a", 1, 60)
        assert window.hit("a", 1, 60) is True
        window.reset()
        assert window.hit("a", 1, 60) is False

    def test_idle_clients_are_forgotten(self):
        clock = [0.0]
        window = SlidingWindow(clock=lambda: clock[0])
        window.hit("idle", 5, 60)
        window.hit("busy", 5, 600)

        clock[0] = 120.0
        window.hit("new", 5, 60)

        assert len(window) == 2
        # The long-window client kept its history
        assert [window.hit("busy", 2, 600) for _ in range(2)] == [False, True]


class _FakePipeline:
    def __init__(self, count=None):
        self.count = count

    def __getattr__(self, name):
        return lambda *args, **kwargs: self

    async def execute(self):
        if self.count is None:
            raise RedisConnectionError("connection refused")
        return [0, 1, self.count, True]


class _FakeRedis:
    def __init__(self, count=None):
        self.count = count

    def pipeline(self):
        return _FakePipeline(self.count)


class TestSharedWindow:
    async def test_redis_count_decides(self, monkeypatch):
        monkeypatch.setattr(rate_limit_module, "_get_redis", lambda: _FakeRedis(count=3))
        assert await rate_limit_module._exceeded("k", 2, 60) is True
        assert await rate_limit_module._exceeded("k", 3, 60) is False

    async def test_falls_back_when_redis_down(self, monkeypatch):
        monkeypatch.setattr(rate_limit_module, "_get_redis", lambda: _FakeRedis())
        assert await rate_limit_module._exceeded("k", 1, 60) is False
        assert await rate_limit_module._exceeded("k", 1, 60) is True
