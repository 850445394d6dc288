"""
test_settings.py — environment configuration.
"""

from pathlib import Path

import pytest

from page_layout import OverflowPolicy
from settings import load_settings


def test_defaults():
    settings = load_settings({})
    assert settings.overflow is OverflowPolicy.PAGINATE
    assert settings.image_timeout == 10.0
    assert settings.fonts_dir is None
    assert settings.footer_address is None
    assert "http://localhost:5173" in settings.cors_origins


def test_reads_environment():
    settings = load_settings({
        "SUPABASE_URL": "https://abc.supabase.co/",
        "DOCGEN_OVERFLOW": "Truncate",
        "DOCGEN_IMAGE_TIMEOUT": "2.5",
        "DOCGEN_FONTS_DIR": "/srv/fonts",
        "DOCGEN_CORS_ORIGINS": "https://rh.example.com, https://admin.example.com",
        "DOCGEN_FOOTER_ADDRESS": "Rua A, 10",
    })
    assert settings.supabase_url == "https://abc.supabase.co"
    assert settings.overflow is OverflowPolicy.TRUNCATE
    assert settings.image_timeout == 2.5
    assert settings.fonts_dir == Path("/srv/fonts")
    assert settings.cors_origins == ("https://rh.example.com", "https://admin.example.com")
    assert settings.footer_address == "Rua A, 10"


@pytest.mark.parametrize("key, value", [("DOCGEN_OVERFLOW", "shrink"), ("DOCGEN_IMAGE_TIMEOUT", "soon")])
def test_invalid_values(key, value):
    with pytest.raises(ValueError):
        load_settings({key: value})


def test_layout_policy_override():
    settings = load_settings({"DOCGEN_OVERFLOW": "truncate", "DOCGEN_BODY_FONT": "Times-Roman"})
    assert settings.layout_policy().overflow is OverflowPolicy.TRUNCATE
    assert settings.layout_policy("paginate").overflow is OverflowPolicy.PAGINATE
    assert settings.layout_policy().body_font == "Times-Roman"
