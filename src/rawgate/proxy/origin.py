"""Single-attempt HTTP client for the raw file origin."""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass
from typing import Optional, Union
from urllib.parse import quote

import httpx
import structlog
from opentelemetry import trace

LOGGER = structlog.get_logger("rawgate.origin")
TRACER = trace.get_tracer("rawgate.origin")

USER_AGENT = "GitHub-Raw-Proxy/1.0"
DEFAULT_CONTENT_TYPE = "text/plain"


class OriginErrorKind(str, enum.Enum):
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    HTTP_ERROR = "http_error"


@dataclass(frozen=True, slots=True)
class OriginResponse:
    payload: bytes
    content_type: str
    ok: bool = True


@dataclass(frozen=True, slots=True)
class OriginFailure:
    kind: OriginErrorKind
    detail: str
    ok: bool = False


OriginResult = Union[OriginResponse, OriginFailure]


class OriginFetcher:
    """Fetch objects from the origin without retrying.

    The caller owns the ``httpx.AsyncClient`` lifecycle; the timeout given here
    is applied to every request regardless of the client's own default.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str = "https://raw.githubusercontent.com",
        timeout_seconds: float = 10.0,
    ) -> None:
        self._client = http_client
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._timeout = httpx.Timeout(timeout_seconds)

    def url_for(self, object_key: str) -> str:
        # "%" is escaped too, so "%2e%2e" reaches the origin as data, not as "..".
        return f"{self._base_url}/{quote(object_key, safe='/')}"

    async def fetch(self, object_key: str, credential: Optional[str] = None) -> OriginResult:
        headers = {"User-Agent": USER_AGENT}
        if credential:
            headers["Authorization"] = f"Bearer {credential}"
        url = self.url_for(object_key)

        with TRACER.start_as_current_span("rawgate.origin.fetch", attributes={"rawgate.object_key": object_key}) as span:
            try:
                # httpx timeouts apply per phase and per chunk; wait_for bounds the whole
                # exchange, body included, by a single deadline.
                response = await asyncio.wait_for(
                    self._client.get(url, headers=headers, timeout=self._timeout),
                    timeout=self._timeout_seconds,
                )
            except asyncio.TimeoutError:
                return self._failure(
                    span,
                    OriginErrorKind.TIMEOUT,
                    f"no complete response within {self._timeout_seconds}s",
                )
            except httpx.TimeoutException as exc:
                return self._failure(span, OriginErrorKind.TIMEOUT, f"request timed out: {exc!r}")
            except httpx.HTTPError as exc:
                return self._failure(span, OriginErrorKind.NETWORK_ERROR, f"network error: {exc!r}")

            span.set_attribute("http.status_code", response.status_code)
            if not response.is_success:
                return self._failure(
                    span,
                    OriginErrorKind.HTTP_ERROR,
                    f"origin returned {response.status_code} {response.reason_phrase}",
                )

            content_type = response.headers.get("content-type") or DEFAULT_CONTENT_TYPE
            payload = response.content
            span.set_attribute("rawgate.bytes", len(payload))
            LOGGER.debug("origin_fetch_succeeded", object_key=object_key, bytes=len(payload))
            return OriginResponse(payload=payload, content_type=content_type)

    @staticmethod
    def _failure(span, kind: OriginErrorKind, detail: str) -> OriginFailure:
        span.set_attribute("rawgate.origin_error", kind.value)
        return OriginFailure(kind=kind, detail=detail)
