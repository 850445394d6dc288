"""Turn resolved document text into fixed-size pages of draw operations.

Coordinates are millimetres measured from the top-left corner of the page;
text ``y`` values are baselines. Every page carries the header (logo and
issue date) and the footer (generation stamp, page number, optional
address). The first page also carries the document title.

Layout is a pure function of the request and the policy: nothing here reads
the clock or touches the network, so equal inputs give equal pages.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Union

from reportlab.lib.units import mm
from reportlab.pdfbase import pdfmetrics

from font_registry import resolve_font_name
from log_utils import get_logger
from template_resolver import image_role_of

LOGGER = get_logger(__name__)

IMAGE_ROLES = ("logo", "signature", "stamp")
POINT_IN_MM = 1.0 / mm


class OverflowPolicy(str, enum.Enum):
    PAGINATE = "paginate"
    TRUNCATE = "truncate"


@dataclass(frozen=True)
class ImageAsset:
    role: str
    width: int
    height: int
    data: bytes = b""


@dataclass(frozen=True)
class RenderRequest:
    resolved_text: str
    document_title: str
    generated_at: datetime
    logo: Optional[ImageAsset] = None
    signature: Optional[ImageAsset] = None
    stamp: Optional[ImageAsset] = None
    footer_address: Optional[str] = None
    issue_date: Optional[date] = None


@dataclass(frozen=True)
class TextOp:
    text: str
    x: float
    y: float
    font: str
    size: float
    align: str = "left"
    color: tuple[float, float, float] = (0.0, 0.0, 0.0)
    region: str = "body"


@dataclass(frozen=True)
class ImageOp:
    role: str
    x: float
    y: float
    width: float
    height: float
    data: bytes = b""


DrawOp = Union[TextOp, ImageOp]


@dataclass(frozen=True)
class Page:
    index: int
    width: float
    height: float
    ops: tuple[DrawOp, ...]

    def texts(self, region: Optional[str] = None) -> list[TextOp]:
        return [op for op in self.ops if isinstance(op, TextOp) and (region is None or op.region == region)]

    def images(self, role: Optional[str] = None) -> list[ImageOp]:
        return [op for op in self.ops if isinstance(op, ImageOp) and (role is None or op.role == role)]


@dataclass(frozen=True)
class LayoutPolicy:
    """Every measurement the engine uses, in millimetres (font sizes in points)."""

    page_width: float = 210.0
    page_height: float = 297.0
    margin: float = 20.0
    line_height: float = 7.0
    body_font: str = "Helvetica"
    body_size: float = 11.0
    title_font: str = "Helvetica-Bold"
    title_size: float = 16.0
    title_gap: float = 10.0
    header_font: str = "Helvetica"
    header_size: float = 10.0
    header_gap: float = 10.0
    logo_width: float = 40.0
    logo_max_height: float = 30.0
    image_box: float = 45.0
    image_gap: float = 5.0
    bottom_reserve: float = 30.0
    footer_font: str = "Helvetica"
    footer_size: float = 9.0
    footer_offset: float = 10.0
    footer_color: tuple[float, float, float] = (0.5, 0.5, 0.5)
    address_gap: float = 4.5
    date_format: str = "%d/%m/%Y"
    time_format: str = "%H:%M:%S"
    issue_date_label: str = "Data de emissão: {date}"
    footer_label: str = "Documento gerado em {date} às {time}"
    page_label: str = " - Página {page} de {total}"
    overflow: OverflowPolicy = OverflowPolicy.PAGINATE

    def __post_init__(self) -> None:
        object.__setattr__(self, "overflow", OverflowPolicy(self.overflow))
        if self.usable_width <= 0:
            raise ValueError("Margins leave no usable page width.")
        if self.line_height <= 0 or self.image_box <= 0:
            raise ValueError("line_height and image_box must be positive.")
        header_height = max(self.logo_max_height, self.header_size * POINT_IN_MM)
        worst_body_top = self.margin + header_height + self.header_gap + self.title_gap
        if worst_body_top + max(self.image_box, self.line_height) > self.bottom_threshold:
            raise ValueError(
                f"Header and title leave no room for body content above y={self.bottom_threshold:.1f}mm."
            )
        if self.bottom_threshold >= self.page_height - self.footer_offset - self.address_gap:
            raise ValueError("bottom_reserve must leave room for the footer.")

    @property
    def usable_width(self) -> float:
        return self.page_width - 2 * self.margin

    @property
    def bottom_threshold(self) -> float:
        return self.page_height - self.bottom_reserve


DEFAULT_POLICY = LayoutPolicy()


def text_width(text: str, font_name: str, size: float) -> float:
    """Width of *text* in millimetres at *size* points."""
    return pdfmetrics.stringWidth(text, font_name, size) * POINT_IN_MM


def wrap_text_to_lines(text: str, font_name: str, size: float, max_width: float) -> list[str]:
    """Greedy word wrap of one paragraph to *max_width* millimetres.

    Runs of whitespace collapse to single spaces. A word that is wider than
    max_width on its own (a long URL, an unbroken code) is broken between
    characters so nothing runs past the right margin.
    """
    lines: list[str] = []
    current = ""
    for word in text.split():
        if text_width(word, font_name, size) > max_width:
            if current:
                lines.append(current)
            *full, current = _break_word(word, font_name, size, max_width)
            lines.extend(full)
            continue
        candidate = f"{current} {word}" if current else word
        if not current or text_width(candidate, font_name, size) <= max_width:
            current = candidate
        else:
            lines.append(current)
            current = word
    if current:
        lines.append(current)
    return lines


def _break_word(word: str, font_name: str, size: float, max_width: float) -> list[str]:
    pieces: list[str] = []
    piece = ""
    for char in word:
        # a single glyph wider than the line still gets a line of its own
        if piece and text_width(piece + char, font_name, size) > max_width:
            pieces.append(piece)
            piece = char
        else:
            piece += char
    pieces.append(piece)
    return pieces


def scale_to_width(width: float, height: float, target_width: float) -> tuple[float, float]:
    """Scale a width x height box to *target_width*, preserving aspect ratio."""
    return target_width, height * target_width / width


def fit_within(width: float, height: float, max_width: float, max_height: float) -> tuple[float, float]:
    """Scale by width first, then by height if the result is still too tall."""
    fitted_w, fitted_h = scale_to_width(width, height, max_width)
    if fitted_h > max_height:
        fitted_w, fitted_h = width * max_height / height, max_height
    return fitted_w, fitted_h


def _usable_asset(asset: Optional[ImageAsset], role: str) -> Optional[ImageAsset]:
    if asset is None:
        return None
    if asset.role != role:
        LOGGER.warning("Ignoring image with role '%s' supplied as %s.", asset.role, role)
        return None
    if asset.width <= 0 or asset.height <= 0:
        LOGGER.warning("Ignoring %s image with invalid size %sx%s.", role, asset.width, asset.height)
        return None
    return asset


def _split_paragraphs(text: str) -> list[str]:
    return (text or "").replace("\r\n", "\n").replace("\r", "\n").split("\n")


class _PageSequence:
    """Accumulates draw operations page by page around a single cursor."""

    def __init__(self, policy: LayoutPolicy, header_ops: list[DrawOp], body_top: float) -> None:
        self.policy = policy
        self.header_ops = header_ops
        self.body_top = body_top
        self.pages: list[list[DrawOp]] = []
        self.cursor = 0.0

    @property
    def ops(self) -> list[DrawOp]:
        return self.pages[-1]

    def new_page(self) -> None:
        self.pages.append(list(self.header_ops))
        self.cursor = self.body_top

    def overflows(self, bottom: float) -> bool:
        return bottom > self.policy.bottom_threshold


def _header_ops(
    request: RenderRequest,
    policy: LayoutPolicy,
    logo: Optional[ImageAsset],
    header_font: str,
) -> tuple[list[DrawOp], float]:
    ops: list[DrawOp] = []
    header_height = policy.header_size * POINT_IN_MM

    if logo is not None:
        logo_w, logo_h = fit_within(logo.width, logo.height, policy.logo_width, policy.logo_max_height)
        ops.append(ImageOp("logo", policy.margin, policy.margin, logo_w, logo_h, logo.data))
        header_height = max(header_height, logo_h)

    issue_date = request.issue_date or request.generated_at.date()
    label = policy.issue_date_label.format(date=issue_date.strftime(policy.date_format))
    ops.append(
        TextOp(
            text=label,
            x=policy.page_width - policy.margin,
            y=policy.margin + policy.header_size * POINT_IN_MM,
            font=header_font,
            size=policy.header_size,
            align="right",
            region="header",
        )
    )
    return ops, policy.margin + header_height + policy.header_gap


def _footer_ops(
    request: RenderRequest,
    policy: LayoutPolicy,
    page_number: int,
    total_pages: int,
    footer_font: str,
) -> list[DrawOp]:
    stamp = policy.footer_label.format(
        date=request.generated_at.strftime(policy.date_format),
        time=request.generated_at.strftime(policy.time_format),
    )
    stamp += policy.page_label.format(page=page_number, total=total_pages)
    baseline = policy.page_height - policy.footer_offset
    ops: list[DrawOp] = [
        TextOp(
            text=stamp,
            x=policy.margin,
            y=baseline,
            font=footer_font,
            size=policy.footer_size,
            color=policy.footer_color,
            region="footer",
        )
    ]
    address = (request.footer_address or "").strip()
    if address:
        ops.append(
            TextOp(
                text=address,
                x=policy.page_width / 2.0,
                y=baseline - policy.address_gap,
                font=footer_font,
                size=policy.footer_size,
                align="center",
                color=policy.footer_color,
                region="footer",
            )
        )
    return ops


def layout(request: RenderRequest, policy: LayoutPolicy = DEFAULT_POLICY) -> list[Page]:
    """Lay out *request* into pages according to *policy*.

    A paragraph consisting only of ``{{assinatura}}`` or ``{{carimbo}}``
    reserves an ``image_box`` square whether or not the image was supplied;
    the image is drawn into it when it was. Body content that would cross
    the bottom threshold either continues on a new page or is cut off,
    depending on ``policy.overflow``.
    """
    body_font = resolve_font_name(policy.body_font)
    title_font = resolve_font_name(policy.title_font, fallback_font=body_font)
    header_font = resolve_font_name(policy.header_font, fallback_font=body_font)
    footer_font = resolve_font_name(policy.footer_font, fallback_font=body_font)

    logo = _usable_asset(request.logo, "logo")
    slot_images = {
        "signature": _usable_asset(request.signature, "signature"),
        "stamp": _usable_asset(request.stamp, "stamp"),
    }

    header_ops, body_top = _header_ops(request, policy, logo, header_font)
    pages = _PageSequence(policy, header_ops, body_top)
    pages.new_page()

    title = (request.document_title or "").strip()
    if title:
        pages.ops.append(
            TextOp(title, policy.margin, pages.cursor, title_font, policy.title_size, region="title")
        )
    pages.cursor += policy.title_gap

    truncated = False
    for paragraph in _split_paragraphs(request.resolved_text):
        role = image_role_of(paragraph)
        if role is not None:
            if pages.overflows(pages.cursor + policy.image_box):
                if policy.overflow is OverflowPolicy.TRUNCATE:
                    truncated = True
                    break
                pages.new_page()
            image = slot_images.get(role)
            if image is not None:
                img_w, img_h = fit_within(image.width, image.height, policy.image_box, policy.image_box)
                pages.ops.append(ImageOp(role, policy.margin, pages.cursor, img_w, img_h, image.data))
            pages.cursor += policy.image_box + policy.image_gap
            continue

        lines = wrap_text_to_lines(paragraph, body_font, policy.body_size, policy.usable_width)
        if not lines:
            # blank lines never open a page of their own
            if not pages.overflows(pages.cursor):
                pages.cursor += policy.line_height
            continue

        for line in lines:
            if pages.overflows(pages.cursor):
                if policy.overflow is OverflowPolicy.TRUNCATE:
                    truncated = True
                    break
                pages.new_page()
            pages.ops.append(TextOp(line, policy.margin, pages.cursor, body_font, policy.body_size))
            pages.cursor += policy.line_height
        if truncated:
            break

    if truncated:
        LOGGER.warning("Document '%s' truncated: body does not fit on one page.", title)

    total = len(pages.pages)
    result: list[Page] = []
    for index, ops in enumerate(pages.pages):
        ops.extend(_footer_ops(request, policy, index + 1, total, footer_font))
        result.append(Page(index=index, width=policy.page_width, height=policy.page_height, ops=tuple(ops)))
    return result
