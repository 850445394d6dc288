"""Runtime configuration read from the environment (and an optional .env file).

    SUPABASE_URL           project URL, used to fetch JWKS for RS256 tokens
    SUPABASE_JWT_SECRET    secret for HS256 tokens
    DOCGEN_FONTS_DIR       directory of extra .ttf/.otf fonts to register
    DOCGEN_BODY_FONT       font for body text (default Helvetica)
    DOCGEN_OVERFLOW        "paginate" (default) or "truncate"
    DOCGEN_FOOTER_ADDRESS  default footer address line
    DOCGEN_IMAGE_TIMEOUT   seconds to wait for each image download
    DOCGEN_CORS_ORIGINS    comma-separated origins allowed by the API
    DOCGEN_LOG_LEVEL       logging level name (read by log_utils)
"""
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from page_layout import DEFAULT_POLICY, LayoutPolicy, OverflowPolicy

_DEFAULT_CORS_ORIGINS = ("http://localhost:5173", "http://127.0.0.1:5173")


@dataclass(frozen=True)
class Settings:
    supabase_url: str = ""
    supabase_jwt_secret: str = ""
    fonts_dir: Optional[Path] = None
    body_font: str = "Helvetica"
    overflow: OverflowPolicy = OverflowPolicy.PAGINATE
    footer_address: Optional[str] = None
    image_timeout: float = 10.0
    cors_origins: tuple[str, ...] = _DEFAULT_CORS_ORIGINS

    def layout_policy(self, overflow: Optional[str] = None) -> LayoutPolicy:
        return replace(
            DEFAULT_POLICY,
            body_font=self.body_font,
            overflow=OverflowPolicy(overflow) if overflow else self.overflow,
        )


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from *environ*, or from os.environ after loading .env."""
    if environ is None:
        load_dotenv()
        environ = os.environ

    overflow = environ.get("DOCGEN_OVERFLOW", "").strip().lower() or OverflowPolicy.PAGINATE.value
    try:
        overflow_policy = OverflowPolicy(overflow)
    except ValueError as exc:
        raise ValueError(f"DOCGEN_OVERFLOW must be 'paginate' or 'truncate', got '{overflow}'.") from exc

    timeout_text = environ.get("DOCGEN_IMAGE_TIMEOUT", "").strip()
    try:
        image_timeout = float(timeout_text) if timeout_text else 10.0
    except ValueError as exc:
        raise ValueError(f"DOCGEN_IMAGE_TIMEOUT must be a number, got '{timeout_text}'.") from exc

    origins = tuple(
        origin.strip() for origin in environ.get("DOCGEN_CORS_ORIGINS", "").split(",") if origin.strip()
    )
    fonts_dir = environ.get("DOCGEN_FONTS_DIR", "").strip()

    return Settings(
        supabase_url=environ.get("SUPABASE_URL", "").rstrip("/"),
        supabase_jwt_secret=environ.get("SUPABASE_JWT_SECRET", ""),
        fonts_dir=Path(fonts_dir) if fonts_dir else None,
        body_font=environ.get("DOCGEN_BODY_FONT", "").strip() or "Helvetica",
        overflow=overflow_policy,
        footer_address=environ.get("DOCGEN_FOOTER_ADDRESS", "").strip() or None,
        image_timeout=image_timeout,
        cors_origins=origins or _DEFAULT_CORS_ORIGINS,
    )
