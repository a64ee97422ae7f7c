"""Object key normalisation and validation.

An object key addresses a file on the origin as ``owner/repo/branch/path``,
where ``path`` may itself contain further segments. Both helpers are pure and
never raise; ``validate_path`` signals rejection by returning ``None``.
"""

from __future__ import annotations

import re
from typing import Optional

DEFAULT_MAX_PATH_LENGTH = 1000

_KEY_SHAPE = re.compile(r"[^/]+/[^/]+/[^/]+/.+")
_SLASH_RUN = re.compile(r"/+")
_DANGEROUS_PATTERNS = (
    re.compile(r"\.\."),  # parent directory
    re.compile(r"//"),
    re.compile(r"^/"),
    re.compile(r"/\Z"),
)


def _sanitize_once(value: str) -> str:
    cleaned = _SLASH_RUN.sub("/", value.strip())
    if cleaned.startswith("/"):
        cleaned = cleaned[1:]
    if cleaned.endswith("/"):
        cleaned = cleaned[:-1]
    return cleaned


def sanitize_path(raw: object) -> str:
    """Trim whitespace, collapse slash runs and drop the leading/trailing slash.

    Passes repeat until the value is stable so that inputs such as ``"/ /a"``
    normalise fully in one call.
    """
    if not raw or not isinstance(raw, str):
        return ""
    current = raw
    while True:
        cleaned = _sanitize_once(current)
        if cleaned == current:
            return cleaned
        current = cleaned


def validate_path(raw: object, max_length: int = DEFAULT_MAX_PATH_LENGTH) -> Optional[str]:
    if not raw or not isinstance(raw, str):
        return None
    if len(raw) > max_length:
        return None
    if not _KEY_SHAPE.fullmatch(raw):
        return None
    if any(pattern.search(raw) for pattern in _DANGEROUS_PATTERNS):
        return None
    return raw


def normalize_object_key(raw: object, max_length: int = DEFAULT_MAX_PATH_LENGTH) -> Optional[str]:
    """Sanitize then validate, the order the request pipeline applies them in."""
    return validate_path(sanitize_path(raw), max_length=max_length)
