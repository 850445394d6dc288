"""Fetch and decode logo, signature and stamp images for the renderer.

Image problems never stop a document: every failure is logged and the image
is reported as missing.
"""
from __future__ import annotations

import io
from pathlib import Path
from typing import Optional

import requests
from reportlab.lib.utils import ImageReader

from log_utils import get_logger
from page_layout import IMAGE_ROLES, ImageAsset

LOGGER = get_logger(__name__)

MAX_IMAGE_BYTES = 2 * 1024 * 1024
DEFAULT_TIMEOUT = 10.0


def decode_image(role: str, data: bytes) -> Optional[ImageAsset]:
    if role not in IMAGE_ROLES:
        raise ValueError(f"Unknown image role '{role}'. Expected one of {', '.join(IMAGE_ROLES)}.")
    if not data:
        LOGGER.warning("Empty %s image.", role)
        return None
    if len(data) > MAX_IMAGE_BYTES:
        LOGGER.warning("%s image is %d bytes; the limit is %d.", role.capitalize(), len(data), MAX_IMAGE_BYTES)
        return None
    try:
        width, height = ImageReader(io.BytesIO(data)).getSize()
    except Exception as exc:  # PIL raises UnidentifiedImageError, OSError, SyntaxError...
        LOGGER.warning("Could not decode %s image: %s", role, exc)
        return None
    return ImageAsset(role=role, width=int(width), height=int(height), data=bytes(data))


def _is_url(source: str) -> bool:
    return source.lower().startswith(("http://", "https://"))


def _read_limited(response: requests.Response) -> Optional[bytes]:
    """Body of a streamed response, or None once it grows past MAX_IMAGE_BYTES."""
    declared = response.headers.get("Content-Length")
    if declared and declared.isdigit() and int(declared) > MAX_IMAGE_BYTES:
        return None
    buffer = bytearray()
    for chunk in response.iter_content(chunk_size=64 * 1024):
        buffer.extend(chunk)
        if len(buffer) > MAX_IMAGE_BYTES:
            return None
    return bytes(buffer)


def fetch_image(
    role: str,
    source: Optional[str],
    session: Optional[requests.Session] = None,
    timeout: float = DEFAULT_TIMEOUT,
    allow_paths: bool = True,
) -> Optional[ImageAsset]:
    """Load an image from an http(s) URL or, when *allow_paths* is set, a local path."""
    if source is None or not str(source).strip():
        return None
    source = str(source).strip()

    if _is_url(source):
        http = session or requests
        try:
            response = http.get(source, timeout=timeout, stream=True)
        except requests.RequestException as exc:
            LOGGER.warning("Could not fetch %s image from %s: %s", role, source, exc)
            return None
        try:
            response.raise_for_status()
            data = _read_limited(response)
        except requests.RequestException as exc:
            LOGGER.warning("Could not fetch %s image from %s: %s", role, source, exc)
            return None
        finally:
            response.close()
        if data is None:
            LOGGER.warning("%s image at %s exceeds %d bytes.", role.capitalize(), source, MAX_IMAGE_BYTES)
            return None
    elif not allow_paths:
        LOGGER.warning("Refusing to read %s image from non-URL source %s.", role, source)
        return None
    else:
        try:
            data = Path(source).read_bytes()
        except OSError as exc:
            LOGGER.warning("Could not read %s image %s: %s", role, source, exc)
            return None

    return decode_image(role, data)


def load_assets(
    logo: Optional[str] = None,
    signature: Optional[str] = None,
    stamp: Optional[str] = None,
    session: Optional[requests.Session] = None,
    timeout: float = DEFAULT_TIMEOUT,
    allow_paths: bool = True,
) -> dict[str, Optional[ImageAsset]]:
    """Fetch logo, signature and stamp one after another.

    Returns a mapping with one entry per role; roles without a source or
    whose image failed map to ``None``.
    """
    sources = {"logo": logo, "signature": signature, "stamp": stamp}
    assets: dict[str, Optional[ImageAsset]] = {}
    requested = 0
    for role in IMAGE_ROLES:
        source = sources[role]
        if source:
            requested += 1
        assets[role] = fetch_image(role, source, session=session, timeout=timeout, allow_paths=allow_paths)

    loaded = sum(1 for asset in assets.values() if asset is not None)
    if requested and not loaded:
        LOGGER.error("All %d requested image(s) failed to load.", requested)
    return assets
