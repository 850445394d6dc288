"""Backends that turn laid-out pages into a serialized document."""
from __future__ import annotations

import hashlib
import io
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol, Sequence, Union

from pypdf import PdfReader, PdfWriter
from reportlab.lib.colors import Color
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from log_utils import get_logger
from page_layout import ImageOp, Page, TextOp

LOGGER = get_logger(__name__)


class RenderError(Exception):
    """The document could not be produced; no partial output exists."""


class DocumentBackend(Protocol):
    def new_document(self, width: float, height: float) -> Any:
        ...

    def add_text(
        self,
        handle: Any,
        text: str,
        x: float,
        y: float,
        *,
        font: str,
        size: float,
        align: str = "left",
        color: tuple[float, float, float] = (0.0, 0.0, 0.0),
    ) -> None:
        ...

    def add_image(self, handle: Any, data: bytes, x: float, y: float, width: float, height: float) -> None:
        ...

    def add_page(self, handle: Any) -> None:
        ...

    def serialize(self, handle: Any) -> bytes:
        ...


@dataclass
class _CanvasHandle:
    canvas: canvas.Canvas
    buffer: io.BytesIO
    page_height: float


class ReportLabBackend:
    """Draws onto a ReportLab canvas.

    Page coordinates arrive in millimetres from the top-left corner and are
    converted to PDF points from the bottom-left corner. The canvas is
    created in invariant mode so identical pages produce identical bytes.
    """

    def __init__(self, title: str | None = None, author: str | None = None) -> None:
        self.title = title
        self.author = author

    def new_document(self, width: float, height: float) -> _CanvasHandle:
        buffer = io.BytesIO()
        page_w, page_h = width * mm, height * mm
        c = canvas.Canvas(buffer, pagesize=(page_w, page_h), invariant=1)
        if self.title:
            c.setTitle(self.title)
        if self.author:
            c.setAuthor(self.author)
        return _CanvasHandle(canvas=c, buffer=buffer, page_height=page_h)

    def add_text(
        self,
        handle: _CanvasHandle,
        text: str,
        x: float,
        y: float,
        *,
        font: str,
        size: float,
        align: str = "left",
        color: tuple[float, float, float] = (0.0, 0.0, 0.0),
    ) -> None:
        c = handle.canvas
        c.setFont(font, size)
        c.setFillColor(Color(*color))
        x_pt = x * mm
        y_pt = handle.page_height - y * mm
        if align == "center":
            c.drawCentredString(x_pt, y_pt, text)
        elif align == "right":
            c.drawRightString(x_pt, y_pt, text)
        else:
            c.drawString(x_pt, y_pt, text)

    def add_image(
        self,
        handle: _CanvasHandle,
        data: bytes,
        x: float,
        y: float,
        width: float,
        height: float,
    ) -> None:
        bottom = handle.page_height - (y + height) * mm
        handle.canvas.drawImage(
            ImageReader(io.BytesIO(data)),
            x * mm,
            bottom,
            width=width * mm,
            height=height * mm,
            mask="auto",
        )

    def add_page(self, handle: _CanvasHandle) -> None:
        handle.canvas.showPage()

    def serialize(self, handle: _CanvasHandle) -> bytes:
        handle.canvas.showPage()
        handle.canvas.save()
        return handle.buffer.getvalue()


@dataclass
class MemoryDocument:
    width: float
    height: float
    pages: list[list[dict]] = field(default_factory=lambda: [[]])


class MemoryBackend:
    """Records draw calls instead of producing a PDF.

    ``serialize`` returns the recorded document as sorted JSON, with image
    bytes replaced by their SHA-256 digest.
    """

    def __init__(self) -> None:
        self.documents: list[MemoryDocument] = []

    def new_document(self, width: float, height: float) -> MemoryDocument:
        document = MemoryDocument(width=width, height=height)
        self.documents.append(document)
        return document

    def add_text(
        self,
        handle: MemoryDocument,
        text: str,
        x: float,
        y: float,
        *,
        font: str,
        size: float,
        align: str = "left",
        color: tuple[float, float, float] = (0.0, 0.0, 0.0),
    ) -> None:
        handle.pages[-1].append(
            {"type": "text", "text": text, "x": x, "y": y, "font": font, "size": size, "align": align, "color": list(color)}
        )

    def add_image(self, handle: MemoryDocument, data: bytes, x: float, y: float, width: float, height: float) -> None:
        handle.pages[-1].append(
            {
                "type": "image",
                "sha256": hashlib.sha256(data).hexdigest(),
                "x": x,
                "y": y,
                "width": width,
                "height": height,
            }
        )

    def add_page(self, handle: MemoryDocument) -> None:
        handle.pages.append([])

    def serialize(self, handle: MemoryDocument) -> bytes:
        payload = {"width": handle.width, "height": handle.height, "pages": handle.pages}
        return json.dumps(payload, sort_keys=True).encode("utf-8")


def _draw_image(backend: DocumentBackend, handle: Any, op: ImageOp, page_index: int) -> bool:
    try:
        backend.add_image(handle, op.data, op.x, op.y, op.width, op.height)
    except Exception as exc:  # corrupt image bytes surface as PIL/ReportLab errors of many types
        LOGGER.warning("Skipping %s image on page %d: %s", op.role, page_index + 1, exc)
        return False
    return True


def write_document(pages: Sequence[Page], backend: DocumentBackend) -> bytes:
    """Replay *pages* on *backend* and return the serialized document.

    An image that cannot be drawn is left out and logged. Any other failure
    raises RenderError.
    """
    if not pages:
        raise RenderError("Layout produced no pages.")

    drawn_images = 0
    failed_images = 0
    try:
        handle = backend.new_document(pages[0].width, pages[0].height)
        for page in pages:
            if page.index > 0:
                backend.add_page(handle)
            for op in page.ops:
                if isinstance(op, ImageOp):
                    if _draw_image(backend, handle, op, page.index):
                        drawn_images += 1
                    else:
                        failed_images += 1
                elif isinstance(op, TextOp):
                    backend.add_text(
                        handle,
                        op.text,
                        op.x,
                        op.y,
                        font=op.font,
                        size=op.size,
                        align=op.align,
                        color=op.color,
                    )
        document = backend.serialize(handle)
    except Exception as exc:
        raise RenderError(f"Could not serialize document: {exc}") from exc

    if failed_images and not drawn_images:
        LOGGER.error("All %d image(s) failed to draw; document has no images.", failed_images)
    return document


def apply_letterhead(pdf_bytes: bytes, letterhead: Union[Path, bytes]) -> bytes:
    """Merge every page of *pdf_bytes* onto the first page of a letterhead PDF."""
    try:
        stationery = letterhead if isinstance(letterhead, bytes) else Path(letterhead).read_bytes()
        if not PdfReader(io.BytesIO(stationery)).pages:
            raise RenderError("Letterhead PDF has no pages.")

        writer = PdfWriter()
        for page in PdfReader(io.BytesIO(pdf_bytes)).pages:
            # a fresh reader per page keeps the merged backgrounds independent
            background = PdfReader(io.BytesIO(stationery)).pages[0]
            background.merge_page(page)
            writer.add_page(background)

        output = io.BytesIO()
        writer.write(output)
        return output.getvalue()
    except RenderError:
        raise
    except Exception as exc:
        raise RenderError(f"Could not apply letterhead: {exc}") from exc
