"""Shared HTTP security helpers."""

from __future__ import annotations

import hmac
from ipaddress import ip_address
from typing import Optional

from fastapi import HTTPException, Request, status


def tokens_match(presented: Optional[str], expected: Optional[str]) -> bool:
    """Exact, constant-time token comparison.

    Both sides must be non-empty; no trimming or case folding is applied, so
    ``"abc "`` never matches ``"abc"``.
    """
    if not presented or not expected:
        return False
    return hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))


def require_metrics_access(request: Request, token: Optional[str]) -> None:
    """Enforce metrics endpoint authentication via token or localhost constraint."""
    if token:
        auth_header = request.headers.get("authorization")
        if not tokens_match(auth_header, f"Bearer {token}"):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid metrics token")
        return

    client = request.client
    client_host = client.host if client else None
    if not client_host:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Metrics access denied")

    try:
        loopback = ip_address(client_host).is_loopback
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Metrics access denied") from exc
    if not loopback:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Metrics access restricted to localhost",
        )
