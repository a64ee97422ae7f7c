from __future__ import annotations

import pytest

from rawgate.proxy.content import accepts_content_type


@pytest.mark.parametrize(
    "content_type",
    [
        "text/plain; charset=utf-8",
        "TEXT/HTML",
        "image/png",
        "application/octet-stream",
        "application/json",
        "audio/mpeg",
        "video/mp4",
        "",
        None,
    ],
)
def test_accepts_allowed_categories(content_type) -> None:
    assert accepts_content_type(content_type) is True


@pytest.mark.parametrize("content_type", ["font/woff2", "model/gltf+json", "multipart/form-data"])
def test_rejects_unlisted_categories(content_type: str) -> None:
    assert accepts_content_type(content_type) is False
