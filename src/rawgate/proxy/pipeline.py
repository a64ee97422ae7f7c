"""Request admission and caching pipeline.

``Pipeline.handle`` runs the gates in a fixed order and stops at the first one
that fails:

1. token and object key present
2. token equals the configured access token
3. global rate limiter admits the request
4. object key sanitizes and validates
5. cache lookup (hit ends the pipeline)
6. origin fetch
7. content-type allowlist
8. cache insert

Failures come back as ``Rejected`` values carrying a reason for logs and
metrics. The HTTP layer turns every ``Rejected`` into the same deflection.
"""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass
from typing import Optional, Protocol, Union

import structlog
from opentelemetry import trace

from ..common.http_security import tokens_match
from ..common.metrics import GLOBAL_REGISTRY, Counter, Histogram, LabeledCounter
from ..common.ratelimit import RequestLimiter
from .cache import ObjectCache
from .content import accepts_content_type
from .origin import OriginErrorKind, OriginFailure, OriginResult
from .paths import DEFAULT_MAX_PATH_LENGTH, normalize_object_key

LOGGER = structlog.get_logger("rawgate.pipeline")
TRACER = trace.get_tracer("rawgate.pipeline")

REQUEST_COUNTER = GLOBAL_REGISTRY.register(Counter("rawgate_requests_total", "Total proxy requests"))
HIT_COUNTER = GLOBAL_REGISTRY.register(Counter("rawgate_cache_hits_total", "Cache hits"))
MISS_COUNTER = GLOBAL_REGISTRY.register(Counter("rawgate_cache_misses_total", "Cache misses served from origin"))
BYTES_SERVED_COUNTER = GLOBAL_REGISTRY.register(Counter("rawgate_bytes_served_total", "Payload bytes served"))
REJECTION_COUNTER = GLOBAL_REGISTRY.register(
    LabeledCounter("rawgate_rejections_total", "reason", "Requests deflected, by internal reason")
)
ORIGIN_LATENCY_HISTOGRAM = GLOBAL_REGISTRY.register(
    Histogram(
        "rawgate_origin_fetch_seconds",
        buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
        description="Origin fetch latency",
    )
)


class RejectReason(str, enum.Enum):
    MISSING_PARAM = "missing_param"
    INVALID_TOKEN = "invalid_token"
    RATE_LIMITED = "rate_limited"
    INVALID_PATH = "invalid_path"
    ORIGIN_ERROR = "origin_error"
    UNSUPPORTED_TYPE = "unsupported_type"


class CacheStatus(str, enum.Enum):
    HIT = "HIT"
    MISS = "MISS"


@dataclass(frozen=True, slots=True)
class Success:
    object_key: str
    payload: bytes
    content_type: str
    cache_status: CacheStatus


@dataclass(frozen=True, slots=True)
class Rejected:
    reason: RejectReason
    detail: str = ""
    origin_error: Optional[OriginErrorKind] = None


PipelineResult = Union[Success, Rejected]


class Fetcher(Protocol):
    async def fetch(self, object_key: str, credential: Optional[str] = None) -> OriginResult:
        ...


class Pipeline:
    def __init__(
        self,
        *,
        access_token: Optional[str],
        limiter: RequestLimiter,
        cache: ObjectCache,
        fetcher: Fetcher,
        origin_credential: Optional[str] = None,
        max_path_length: int = DEFAULT_MAX_PATH_LENGTH,
    ) -> None:
        self._access_token = access_token
        self._limiter = limiter
        self._cache = cache
        self._fetcher = fetcher
        self._origin_credential = origin_credential
        self._max_path_length = max_path_length

    async def handle(self, auth_token: Optional[str], object_key: Optional[str]) -> PipelineResult:
        """Run one request through every gate; never raises for a bad request."""
        REQUEST_COUNTER.inc()
        with TRACER.start_as_current_span("rawgate.pipeline.handle") as span:
            try:
                result = await self._run(auth_token, object_key)
            except Exception as exc:  # noqa: BLE001 - a single request must not take the handler down
                LOGGER.exception("pipeline_unexpected_error", error=str(exc))
                result = Rejected(RejectReason.ORIGIN_ERROR, detail=f"unexpected error: {exc!r}")

            if isinstance(result, Rejected):
                REJECTION_COUNTER.inc(result.reason.value)
                span.set_attribute("rawgate.rejected", result.reason.value)
                LOGGER.warning(
                    "request_rejected",
                    reason=result.reason.value,
                    origin_error=result.origin_error.value if result.origin_error else None,
                    detail=result.detail,
                )
            else:
                BYTES_SERVED_COUNTER.inc(len(result.payload))
                span.set_attribute("rawgate.cache_status", result.cache_status.value)
            return result

    async def _run(self, auth_token: Optional[str], object_key: Optional[str]) -> PipelineResult:
        if not auth_token:
            return Rejected(RejectReason.MISSING_PARAM, detail="token missing")
        if not object_key:
            return Rejected(RejectReason.MISSING_PARAM, detail="object key missing")

        if not tokens_match(auth_token, self._access_token):
            return Rejected(RejectReason.INVALID_TOKEN)

        if not self._limiter.admit():
            return Rejected(RejectReason.RATE_LIMITED)

        key = normalize_object_key(object_key, max_length=self._max_path_length)
        if key is None:
            return Rejected(RejectReason.INVALID_PATH, detail=object_key[:200])

        cache_key = self._cache.key_for(key)
        cached = self._cache.get(cache_key)
        if cached is not None:
            HIT_COUNTER.inc()
            LOGGER.info("cache_hit", object_key=key, bytes=len(cached.payload))
            return Success(key, cached.payload, cached.content_type, CacheStatus.HIT)

        LOGGER.info("origin_fetch", object_key=key)
        started = time.perf_counter()
        fetched = await self._fetcher.fetch(key, self._origin_credential)
        ORIGIN_LATENCY_HISTOGRAM.observe(time.perf_counter() - started)
        if isinstance(fetched, OriginFailure):
            LOGGER.error("origin_fetch_failed", object_key=key, kind=fetched.kind.value, detail=fetched.detail)
            return Rejected(RejectReason.ORIGIN_ERROR, detail=fetched.detail, origin_error=fetched.kind)

        if not accepts_content_type(fetched.content_type):
            return Rejected(RejectReason.UNSUPPORTED_TYPE, detail=fetched.content_type)

        self._store(cache_key, fetched.payload, fetched.content_type)
        MISS_COUNTER.inc()
        return Success(key, fetched.payload, fetched.content_type, CacheStatus.MISS)

    def _store(self, cache_key: str, payload: bytes, content_type: str) -> None:
        try:
            self._cache.put(cache_key, payload, content_type)
        except Exception as exc:  # noqa: BLE001 - caching is best effort
            LOGGER.error("cache_store_failed", cache_key=cache_key, error=str(exc))
