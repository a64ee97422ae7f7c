"""HTTP front end for the raw file proxy."""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from typing import Callable, Optional

import httpx
import structlog
from fastapi import Depends, FastAPI, Request, Response, status
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse

from ..common.http_security import require_metrics_access
from ..common.metrics import GLOBAL_REGISTRY, Counter, Gauge, Histogram
from ..common.observability import configure_logging, configure_tracing, instrument_fastapi_app
from ..common.ratelimit import RequestLimiter
from ..common.settings import ProxySettings
from .cache import ObjectCache
from .origin import OriginFetcher
from .pipeline import Pipeline, Rejected, Success

LOGGER = structlog.get_logger("rawgate.proxy")

DEFLECTION_COUNTER = GLOBAL_REGISTRY.register(Counter("rawgate_deflections_total", "Requests answered with the deflection redirect"))
TOTAL_ENTRIES_GAUGE = GLOBAL_REGISTRY.register(Gauge("rawgate_cache_entries", "Number of cache entries"))
EVICTIONS_GAUGE = GLOBAL_REGISTRY.register(Gauge("rawgate_cache_evictions", "Capacity evictions since start"))
REQUEST_LATENCY_HISTOGRAM = GLOBAL_REGISTRY.register(
    Histogram(
        "rawgate_request_latency_seconds",
        buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 10.0],
        description="Proxy request latency",
    )
)


class ProxyState:
    def __init__(
        self,
        settings: ProxySettings,
        cache: ObjectCache,
        limiter: RequestLimiter,
        http_client: httpx.AsyncClient,
    ) -> None:
        self.settings = settings
        self.cache = cache
        self.limiter = limiter
        self.http_client = http_client
        self.fetcher = OriginFetcher(
            http_client,
            base_url=settings.origin_base_url,
            timeout_seconds=settings.origin_timeout_seconds,
        )
        self.pipeline = Pipeline(
            access_token=_secret_value(settings.access_token),
            limiter=limiter,
            cache=cache,
            fetcher=self.fetcher,
            origin_credential=_secret_value(settings.origin_token),
            max_path_length=settings.max_path_length,
        )
        self.sweeper: Optional[asyncio.Task] = None

    def refresh_gauges(self) -> None:
        stats = self.cache.stats()
        TOTAL_ENTRIES_GAUGE.set(float(stats["entries"]))
        EVICTIONS_GAUGE.set(float(stats["evictions"]))


def _secret_value(secret) -> Optional[str]:
    if secret is None:
        return None
    return secret.get_secret_value() or None


def get_state(request: Request) -> ProxyState:
    return request.app.state.proxy_state  # type: ignore[attr-defined]


def deflect(settings: ProxySettings) -> RedirectResponse:
    """The one response every rejected request receives, whatever the reason."""
    DEFLECTION_COUNTER.inc()
    return RedirectResponse(settings.redirect_url, status_code=status.HTTP_302_FOUND)


def success_response(result: Success, settings: ProxySettings) -> Response:
    headers = {
        "Content-Type": result.content_type,
        "X-Cache": result.cache_status.value,
        "Cache-Control": f"public, max-age={settings.cache_ttl_seconds}",
        "Access-Control-Allow-Origin": "*",
        "Access-Control-Allow-Methods": "GET",
        "Access-Control-Allow-Headers": "Content-Type",
    }
    return Response(content=result.payload, status_code=status.HTTP_200_OK, headers=headers)


async def _sweep_expired(state: ProxyState, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        state.cache.purge_expired()
        state.refresh_gauges()


def create_app(
    settings: Optional[ProxySettings] = None,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    clock: Optional[Callable[[], float]] = None,
) -> FastAPI:
    settings = settings or ProxySettings()
    configure_logging("rawgate.proxy", settings.log_level)
    configure_tracing(
        service_name="rawgate.proxy",
        endpoint=settings.otel_exporter_endpoint,
        headers=settings.otel_exporter_headers,
        sampler_ratio=settings.otel_sampler_ratio,
    )

    clock_kwargs = {"clock": clock} if clock is not None else {}
    cache = ObjectCache(
        ttl_seconds=settings.cache_ttl_seconds,
        max_entries=settings.cache_max_entries,
        **clock_kwargs,
    )
    limiter = RequestLimiter(
        max_requests=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
        **clock_kwargs,
    )
    http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(settings.origin_timeout_seconds),
        transport=transport,
        follow_redirects=True,
    )
    state = ProxyState(settings, cache, limiter, http_client)
    if _secret_value(settings.access_token) is None:
        LOGGER.warning("access_token_not_configured", detail="every request will be deflected")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        interval = settings.cache_sweep_interval_seconds
        if interval > 0:
            state.sweeper = asyncio.create_task(_sweep_expired(state, interval))
        try:
            yield
        finally:
            if state.sweeper is not None:
                state.sweeper.cancel()
                try:
                    await state.sweeper
                except asyncio.CancelledError:
                    pass
                state.sweeper = None
            await http_client.aclose()

    app = FastAPI(lifespan=lifespan)
    instrument_fastapi_app(app)
    app.state.proxy_state = state

    @app.middleware("http")
    async def record_latency(request: Request, call_next):  # noqa: ANN001 - FastAPI middleware signature
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            duration = time.perf_counter() - start
            REQUEST_LATENCY_HISTOGRAM.observe(duration)
            LOGGER.exception(
                "http_request_error",
                method=request.method,
                duration_ms=round(duration * 1000, 2),
            )
            raise

        duration = time.perf_counter() - start
        REQUEST_LATENCY_HISTOGRAM.observe(duration)
        # Only the status and timing are logged; query strings carry the access token.
        log_kwargs = {
            "method": request.method,
            "status": response.status_code,
            "cache": response.headers.get("x-cache"),
            "duration_ms": round(duration * 1000, 2),
        }
        if response.status_code >= 500:
            LOGGER.error("http_request", **log_kwargs)
        elif duration >= 1.0:
            LOGGER.warning("http_request", **log_kwargs)
        else:
            LOGGER.info("http_request", **log_kwargs)
        return response

    @app.get("/healthz", status_code=status.HTTP_200_OK)
    async def health_check(state: ProxyState = Depends(get_state)) -> dict:
        """Health check for readiness/liveness probes."""
        return {
            "status": "healthy",
            "checks": {
                "cache_entries": len(state.cache),
                "sweeper": state.sweeper is not None and not state.sweeper.done(),
            },
        }

    @app.get("/status")
    async def status_snapshot(state: ProxyState = Depends(get_state)) -> JSONResponse:
        state.refresh_gauges()
        return JSONResponse(
            {
                "cache": state.cache.stats(),
                "rate_limit": {
                    "in_window": state.limiter.current(),
                    "max_requests": state.limiter.max_requests,
                    "window_seconds": state.limiter.window_seconds,
                },
            }
        )

    @app.get("/metrics", response_class=PlainTextResponse)
    async def metrics_endpoint(
        request: Request,
        state: ProxyState = Depends(get_state),
    ) -> PlainTextResponse:
        token = _secret_value(state.settings.metrics_token)
        require_metrics_access(request, token)
        state.refresh_gauges()
        return PlainTextResponse(GLOBAL_REGISTRY.render())

    async def serve_object(request: Request, routed_key: Optional[str], state: ProxyState) -> Response:
        params = request.query_params
        auth_token = params.get(state.settings.token_param)
        object_key = params.get("path") or routed_key
        try:
            result = await state.pipeline.handle(auth_token, object_key)
        except Exception:  # noqa: BLE001 - last-resort boundary, deflect like an origin error
            LOGGER.exception("request_handler_error")
            return deflect(state.settings)
        if isinstance(result, Rejected):
            return deflect(state.settings)
        return success_response(result, state.settings)

    @app.get("/")
    async def get_object_by_query(request: Request, state: ProxyState = Depends(get_state)) -> Response:
        return await serve_object(request, None, state)

    @app.get("/{object_key:path}")
    async def get_object(object_key: str, request: Request, state: ProxyState = Depends(get_state)) -> Response:
        return await serve_object(request, object_key, state)

    return app
