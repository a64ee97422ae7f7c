from __future__ import annotations

from typing import Optional

import pytest

from rawgate.common.settings import ProxySettings
from rawgate.proxy.origin import OriginErrorKind, OriginFailure, OriginResponse, OriginResult

ACCESS_TOKEN = "abc"


class FakeClock:
    """Manually advanced clock; pass an instance wherever a ``clock`` callable is accepted."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeFetcher:
    def __init__(self, result: Optional[OriginResult] = None) -> None:
        self.result = result or OriginResponse(payload=b"# readme\n", content_type="text/plain; charset=utf-8")
        self.calls: list[tuple[str, Optional[str]]] = []

    async def fetch(self, object_key: str, credential: Optional[str] = None) -> OriginResult:
        self.calls.append((object_key, credential))
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def failing_fetcher() -> FakeFetcher:
    return FakeFetcher(OriginFailure(kind=OriginErrorKind.HTTP_ERROR, detail="origin returned 404 Not Found"))


@pytest.fixture
def proxy_settings() -> ProxySettings:
    return ProxySettings(
        access_token=ACCESS_TOKEN,
        origin_token="origin-secret",
        origin_base_url="https://origin.test",
        redirect_url="https://deflect.test/",
        cache_sweep_interval_seconds=0,
        metrics_token="metrics-secret",
        otel_sampler_ratio=0.0,
    )
