"""Coarse content-type allowlist applied to origin responses."""

from __future__ import annotations

from typing import Optional

ALLOWED_CONTENT_CATEGORIES = ("text", "image", "application", "audio", "video")


def accepts_content_type(content_type: Optional[str]) -> bool:
    # Substring match, not a MIME parse: "application/octet-stream" passes.
    if not content_type:
        return True
    lowered = content_type.lower()
    return any(category in lowered for category in ALLOWED_CONTENT_CATEGORIES)
