import argparse
import json
import re
import sys
import unicodedata
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Mapping, Optional, Union

from employee_records import (
    build_field_map,
    load_affiliate,
    load_csv_row,
    merge_csv_and_fixed_values,
)
from font_registry import register_fonts_from_directory
from image_assets import load_assets
from log_utils import get_logger
from page_layout import DEFAULT_POLICY, ImageAsset, LayoutPolicy, OverflowPolicy, RenderRequest, layout
from pdf_backend import DocumentBackend, RenderError, ReportLabBackend, apply_letterhead, write_document
from settings import Settings, load_settings
from template_resolver import Template, normalize_fields, preview_text, resolve

LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class GeneratedDocument:
    filename: str
    pdf: bytes
    resolved_text: str
    page_count: int


def _sanitize_filename_part(value: str, limit: int, fallback: str) -> str:
    decomposed = unicodedata.normalize("NFD", value or "")
    ascii_only = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    cleaned = re.sub(r"[^a-zA-Z0-9\s]", "", ascii_only)
    cleaned = re.sub(r"\s+", "_", cleaned)
    cleaned = re.sub(r"_+", "_", cleaned).strip("_")
    return cleaned[:limit] or fallback


def make_document_filename(employee_name: str, template_name: str, timestamp: datetime) -> str:
    """e.g. ``Joao_Silva_Carta_de_Referencia_1760800000000.pdf``"""
    employee_part = _sanitize_filename_part(employee_name, 50, "funcionario")
    template_part = _sanitize_filename_part(template_name, 30, "documento")
    millis = int(timestamp.timestamp() * 1000)
    return f"{employee_part}_{template_part}_{millis}.pdf"


def generate_document(
    template: Template,
    fields: Mapping[str, Any],
    generated_at: datetime,
    assets: Optional[Mapping[str, Optional[ImageAsset]]] = None,
    footer_address: Optional[str] = None,
    policy: Optional[LayoutPolicy] = None,
    backend: Optional[DocumentBackend] = None,
    letterhead: Union[Path, bytes, None] = None,
) -> GeneratedDocument:
    """Resolve, lay out and serialize one document.

    Raises RenderError when the document cannot be produced.
    """
    assets = assets or {}
    resolved_text = resolve(template, fields)
    request = RenderRequest(
        resolved_text=resolved_text,
        document_title=template.name,
        generated_at=generated_at,
        logo=assets.get("logo"),
        signature=assets.get("signature"),
        stamp=assets.get("stamp"),
        footer_address=footer_address,
    )
    pages = layout(request, policy or DEFAULT_POLICY)
    pdf = write_document(pages, backend or ReportLabBackend(title=template.name))
    if letterhead is not None:
        pdf = apply_letterhead(pdf, letterhead)

    employee_name = normalize_fields(fields).get("nome", "")
    LOGGER.info("Rendered '%s' for '%s' (%d page(s))", template.name, employee_name, len(pages))
    return GeneratedDocument(
        filename=make_document_filename(employee_name, template.name, generated_at),
        pdf=pdf,
        resolved_text=resolved_text,
        page_count=len(pages),
    )


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Fill an HR letter template with employee data and render it as PDF."
    )
    parser.add_argument("--template", required=True, help="Path to the template text file ({{campo}} placeholders).")
    parser.add_argument("--template-name", help="Document title. Defaults to the template file name.")
    parser.add_argument("--fields-json", help="Path to a JSON object with the employee record.")
    parser.add_argument("--csv", dest="csv_path", help="Path to a CSV file of employee records.")
    parser.add_argument("--row", type=int, default=0, help="CSV row index to use.")
    parser.add_argument(
        "--field-mappings",
        help="Path to JSON file mapping record attributes to CSV columns.",
    )
    parser.add_argument(
        "--fixed-values",
        help="Path to JSON file with values for attributes the CSV leaves empty.",
    )
    parser.add_argument(
        "--affiliate",
        help="Path to an affiliate JSON (name, endereco, logo/signature/stamp URLs).",
    )
    parser.add_argument("--logo", help="Logo image path or URL (overrides the affiliate).")
    parser.add_argument("--signature", help="Signature image path or URL (overrides the affiliate).")
    parser.add_argument("--stamp", help="Stamp image path or URL (overrides the affiliate).")
    parser.add_argument("--footer-address", help="Address line printed in the footer.")
    parser.add_argument("--letterhead", help="Optional PDF whose first page is used as stationery.")
    parser.add_argument(
        "--overflow",
        choices=[policy.value for policy in OverflowPolicy],
        help="What to do with text that does not fit on a page (default from DOCGEN_OVERFLOW).",
    )
    parser.add_argument(
        "--generated-at",
        help="ISO timestamp printed in the footer. Defaults to now; fix it for reproducible output.",
    )
    parser.add_argument(
        "--output",
        help="Output PDF path, or a directory to write a generated file name into. Defaults to out/.",
    )
    parser.add_argument(
        "--preview",
        action="store_true",
        help="Print the resolved text with image markers instead of writing a PDF.",
    )
    return parser.parse_args(argv)


def load_employee(args: argparse.Namespace) -> dict:
    if args.csv_path and args.fields_json:
        raise ValueError("Use either --csv or --fields-json, not both.")
    if args.fields_json:
        return json.loads(Path(args.fields_json).read_text(encoding="utf-8"))
    if args.csv_path:
        field_mappings = None
        if args.field_mappings:
            field_mappings = json.loads(Path(args.field_mappings).read_text(encoding="utf-8"))
        fixed_values = None
        if args.fixed_values:
            fixed_values = json.loads(Path(args.fixed_values).read_text(encoding="utf-8"))
        csv_row = load_csv_row(Path(args.csv_path), args.row)
        return merge_csv_and_fixed_values(csv_row, field_mappings, fixed_values)
    raise ValueError("Provide --fields-json or --csv.")


def resolve_output_path(output: Optional[str], filename: str) -> Path:
    if not output:
        return Path("out") / filename
    output_path = Path(output)
    if output_path.is_dir() or output.endswith(("/", "\\")):
        return output_path / filename
    return output_path


def main(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    settings: Settings = load_settings()

    template_path = Path(args.template)
    template = Template(
        id=template_path.stem,
        name=args.template_name or template_path.stem.replace("_", " "),
        body=template_path.read_text(encoding="utf-8"),
    )
    employee = load_employee(args)
    fields = build_field_map(employee)

    affiliate = load_affiliate(Path(args.affiliate)) if args.affiliate else None
    logo_source = args.logo or (affiliate.logo_url if affiliate else None)
    signature_source = args.signature or employee.get("signature_url") or (affiliate.signature_url if affiliate else None)
    stamp_source = args.stamp or employee.get("stamp_url") or (affiliate.stamp_url if affiliate else None)

    if args.preview:
        available = [role for role, source in (("signature", signature_source), ("stamp", stamp_source)) if source]
        print(preview_text(template, fields, available))
        return

    # Fonts next to the template and next to this script are both picked up.
    fonts_dirs = [template_path.parent / "fonts", Path(__file__).parent / "fonts"]
    if settings.fonts_dir:
        fonts_dirs.append(settings.fonts_dir)
    for fonts_dir in fonts_dirs:
        register_fonts_from_directory(fonts_dir)

    assets = load_assets(
        logo=logo_source,
        signature=signature_source,
        stamp=stamp_source,
        timeout=settings.image_timeout,
    )
    generated_at = datetime.fromisoformat(args.generated_at) if args.generated_at else datetime.now()
    footer_address = args.footer_address or (affiliate.address if affiliate else None) or settings.footer_address

    try:
        document = generate_document(
            template=template,
            fields=fields,
            generated_at=generated_at,
            assets=assets,
            footer_address=footer_address,
            policy=settings.layout_policy(args.overflow),
            letterhead=Path(args.letterhead) if args.letterhead else None,
        )
    except RenderError as exc:
        print(f"[ERROR] Document generation failed: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc

    output_path = resolve_output_path(args.output, document.filename)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(document.pdf)
    print(f"Wrote: {output_path} ({document.page_count} page(s))")


if __name__ == "__main__":
    main()
