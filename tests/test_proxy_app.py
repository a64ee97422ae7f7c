from __future__ import annotations

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import ACCESS_TOKEN, FakeClock
from rawgate.common.settings import ProxySettings
from rawgate.proxy import app as app_module
from rawgate.proxy.app import create_app

KEY = "owner/repo/main/readme.md"


class Origin:
    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.status_code = 200
        self.content_type = "text/markdown; charset=utf-8"
        self.body = b"# readme\n"

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, content=self.body, headers={"Content-Type": self.content_type})


@pytest.fixture
def origin() -> Origin:
    return Origin()


@pytest.fixture
def client(proxy_settings: ProxySettings, origin: Origin, clock: FakeClock):
    app = create_app(proxy_settings, transport=httpx.MockTransport(origin), clock=clock)
    with TestClient(app, follow_redirects=False) as test_client:
        yield test_client


def _assert_deflected(response) -> None:
    assert response.status_code == 302
    assert response.headers["location"] == "https://deflect.test/"
    assert response.content == b""


def test_miss_then_hit_via_routed_path(client: TestClient, origin: Origin) -> None:
    first = client.get(f"/{KEY}", params={"nine-token": ACCESS_TOKEN})
    assert first.status_code == 200
    assert first.content == b"# readme\n"
    assert first.headers["x-cache"] == "MISS"
    assert first.headers["content-type"] == "text/markdown; charset=utf-8"
    assert first.headers["cache-control"] == "public, max-age=300"
    assert first.headers["access-control-allow-origin"] == "*"
    assert first.headers["access-control-allow-methods"] == "GET"
    assert len(origin.requests) == 1
    assert str(origin.requests[0].url) == f"https://origin.test/{KEY}"
    assert origin.requests[0].headers["authorization"] == "Bearer origin-secret"

    second = client.get(f"/{KEY}", params={"nine-token": ACCESS_TOKEN})
    assert second.status_code == 200
    assert second.headers["x-cache"] == "HIT"
    assert second.content == first.content
    assert len(origin.requests) == 1


def test_query_path_parameter(client: TestClient, origin: Origin) -> None:
    response = client.get("/", params={"path": KEY, "nine-token": ACCESS_TOKEN})
    assert response.status_code == 200
    assert response.headers["x-cache"] == "MISS"


def test_binary_payload_is_served_unchanged(client: TestClient, origin: Origin) -> None:
    origin.body = b"\x89PNG\r\n\x1a\n"
    origin.content_type = "image/png"
    response = client.get("/owner/repo/main/logo.png", params={"nine-token": ACCESS_TOKEN})
    assert response.status_code == 200
    assert response.content == b"\x89PNG\r\n\x1a\n"
    assert response.headers["content-type"] == "image/png"


@pytest.mark.parametrize(
    ("url", "params"),
    [
        (f"/{KEY}", {}),
        (f"/{KEY}", {"nine-token": "wrong"}),
        (f"/{KEY}", {"nine-token": ACCESS_TOKEN + " "}),
        ("/owner/repo/main", {"nine-token": ACCESS_TOKEN}),
        ("/", {"nine-token": ACCESS_TOKEN, "path": "a/../b/c/d"}),
        ("/", {"nine-token": ACCESS_TOKEN}),
    ],
)
def test_every_rejection_looks_the_same(client: TestClient, origin: Origin, url: str, params: dict) -> None:
    _assert_deflected(client.get(url, params=params))
    assert origin.requests == []


def test_origin_error_is_deflected(client: TestClient, origin: Origin) -> None:
    origin.status_code = 404
    _assert_deflected(client.get(f"/{KEY}", params={"nine-token": ACCESS_TOKEN}))


def test_unsupported_type_is_deflected(client: TestClient, origin: Origin) -> None:
    origin.content_type = "font/woff2"
    _assert_deflected(client.get("/owner/repo/main/font.woff2", params={"nine-token": ACCESS_TOKEN}))


def test_eleventh_request_within_window_is_deflected(client: TestClient, origin: Origin) -> None:
    for index in range(10):
        response = client.get(f"/owner/repo/main/file-{index}.md", params={"nine-token": ACCESS_TOKEN})
        assert response.status_code == 200

    _assert_deflected(client.get(f"/{KEY}", params={"nine-token": ACCESS_TOKEN}))


def test_window_recovers_after_clock_moves(client: TestClient, clock: FakeClock) -> None:
    for index in range(10):
        client.get(f"/owner/repo/main/file-{index}.md", params={"nine-token": ACCESS_TOKEN})
    _assert_deflected(client.get(f"/{KEY}", params={"nine-token": ACCESS_TOKEN}))

    clock.advance(1.001)
    assert client.get(f"/{KEY}", params={"nine-token": ACCESS_TOKEN}).status_code == 200


def test_handler_exception_is_deflected(client: TestClient, monkeypatch) -> None:
    async def explode(*_args, **_kwargs):  # noqa: ANN001
        raise RuntimeError("unexpected")

    state = client.app.state.proxy_state
    monkeypatch.setattr(state.pipeline, "handle", explode)
    _assert_deflected(client.get(f"/{KEY}", params={"nine-token": ACCESS_TOKEN}))


def test_custom_token_parameter(proxy_settings: ProxySettings, origin: Origin, clock: FakeClock) -> None:
    settings = proxy_settings.model_copy(update={"token_param": "key"})
    app = create_app(settings, transport=httpx.MockTransport(origin), clock=clock)
    with TestClient(app, follow_redirects=False) as test_client:
        assert test_client.get(f"/{KEY}", params={"key": ACCESS_TOKEN}).status_code == 200
        _assert_deflected(test_client.get(f"/{KEY}", params={"nine-token": ACCESS_TOKEN}))


def test_healthz(client: TestClient) -> None:
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_status_reports_cache_and_limiter(client: TestClient) -> None:
    client.get(f"/{KEY}", params={"nine-token": ACCESS_TOKEN})
    payload = client.get("/status").json()
    assert payload["cache"]["entries"] == 1
    assert payload["cache"]["max_entries"] == 100
    assert payload["rate_limit"]["in_window"] == 1
    assert payload["rate_limit"]["max_requests"] == 10


def test_metrics_require_token(client: TestClient) -> None:
    assert client.get("/metrics").status_code == 401
    response = client.get("/metrics", headers={"Authorization": "Bearer metrics-secret"})
    assert response.status_code == 200
    assert "rawgate_requests_total" in response.text
    assert "rawgate_rejections_total" in response.text


def test_deflections_are_counted(client: TestClient) -> None:
    before = app_module.DEFLECTION_COUNTER.value
    client.get(f"/{KEY}")
    assert app_module.DEFLECTION_COUNTER.value == before + 1
