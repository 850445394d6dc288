"""
conftest.py — shared fixtures for the renderer tests.

Environment variables are set before any project module is imported so that
settings.load_settings() (called at import time by app_server) sees them.
"""

import io
import os
from datetime import datetime

import pytest
from PIL import Image

TEST_JWT_SECRET = "docgen-test-secret-0123456789abcdef"

os.environ.setdefault("SUPABASE_JWT_SECRET", TEST_JWT_SECRET)
os.environ.setdefault("DOCGEN_OVERFLOW", "paginate")


def make_png(width: int, height: int, color: str = "black") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def png_bytes():
    return make_png


@pytest.fixture
def generated_at():
    return datetime(2026, 3, 14, 9, 30, 15)


@pytest.fixture
def make_asset():
    from page_layout import ImageAsset

    def _make(role: str, width: int = 200, height: int = 100) -> ImageAsset:
        return ImageAsset(role=role, width=width, height=height, data=make_png(width, height))

    return _make
