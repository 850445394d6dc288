"""Employee and affiliate records: field maps, CSV import/export, cleanup."""
from __future__ import annotations

import csv
import io
import json
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Sequence

# Record attribute -> template keys filled from it.
EMPLOYEE_FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "name": ("nome", "nome_colaborador"),
    "store_name": ("loja", "nome_loja"),
    "rg": ("rg",),
    "cpf": ("cpf",),
    "letter_issue_date": ("data_emissao", "data_carta"),
    "position": ("funcao", "cargo"),
    "company": ("empresa",),
    "email": ("email",),
    "phone": ("telefone",),
    "department": ("departamento",),
    "hire_date": ("data_admissao",),
    "salary": ("salario",),
    "numero_carteira_trabalho": ("numero_carteira_trabalho",),
    "serie": ("serie",),
    "address": ("endereco",),
    "city": ("cidade",),
    "state": ("estado",),
    "zip_code": ("cep",),
    "emergency_contact": ("contato_emergencia",),
    "emergency_phone": ("telefone_emergencia",),
}

DATE_FIELDS = frozenset({"letter_issue_date", "hire_date"})
CURRENCY_FIELDS = frozenset({"salary"})

DEFAULT_EXPORT_COLUMNS: tuple[tuple[str, str], ...] = (
    ("name", "Nome"),
    ("cpf", "CPF"),
    ("rg", "RG"),
    ("position", "Cargo"),
    ("department", "Departamento"),
    ("store_name", "Loja"),
    ("company", "Empresa"),
    ("email", "E-mail"),
    ("phone", "Telefone"),
    ("hire_date", "Data de Admissão"),
)


def format_date_br(value: Any) -> str:
    """Format a date as dd/mm/yyyy; strings that are not ISO dates pass through."""
    if value is None or value == "":
        return ""
    if isinstance(value, datetime):
        value = value.date()
    if isinstance(value, date):
        return value.strftime("%d/%m/%Y")
    text = str(value).strip()
    try:
        return date.fromisoformat(text[:10]).strftime("%d/%m/%Y")
    except ValueError:
        return text


def format_currency_br(value: Any) -> str:
    """Format an amount as Brazilian reais, e.g. ``R$ 1.234,56``."""
    if value is None or value == "":
        return ""
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        return str(value)
    formatted = f"{amount:,.2f}"
    return "R$ " + formatted.translate(str.maketrans(",.", ".,"))


def _display(attribute: str, value: Any) -> str:
    if attribute in DATE_FIELDS:
        return format_date_br(value)
    if attribute in CURRENCY_FIELDS:
        return format_currency_br(value)
    return "" if value is None else str(value)


def build_field_map(employee: Mapping[str, Any]) -> dict[str, str]:
    """Build the template field map for one employee record.

    Every record attribute is available under its own lowercased name; the
    known attributes are also exposed under their Portuguese template keys
    with dates and salary formatted for display.
    """
    record = {str(key).strip().lower(): value for key, value in employee.items()}
    fields = {attribute: _display(attribute, value) for attribute, value in record.items()}
    for attribute, aliases in EMPLOYEE_FIELD_ALIASES.items():
        if attribute not in record:
            continue
        value = _display(attribute, record[attribute])
        for alias in aliases:
            fields[alias] = value
    return fields


def normalize_column(name: str) -> str:
    return "_".join(name.strip().lower().split())


def load_employees_csv(path: Path) -> list[dict]:
    with path.open("r", newline="", encoding="utf-8-sig") as f:
        rows = list(csv.DictReader(f))
    if not rows:
        raise ValueError("CSV has no data rows.")
    return rows


def load_csv_row(path: Path, index: int) -> dict:
    rows = load_employees_csv(path)
    if index < 0 or index >= len(rows):
        raise IndexError(f"Row index {index} out of range. CSV has {len(rows)} row(s).")
    return rows[index]


def merge_csv_and_fixed_values(
    csv_row: Mapping[str, Any],
    field_mappings: Optional[Mapping[str, str]],
    fixed_values: Optional[Mapping[str, Any]],
) -> dict:
    """Turn a CSV row into an employee record.

    With *field_mappings* (record attribute -> CSV column) only mapped
    columns are taken; without it every column is taken under its
    normalized header. Fixed values fill attributes the row leaves empty.
    """
    result: dict = {}
    if fixed_values:
        result.update(fixed_values)

    if field_mappings:
        for attribute, csv_column in field_mappings.items():
            if csv_column and csv_column in csv_row and csv_row[csv_column] not in (None, ""):
                result[attribute] = csv_row[csv_column]
    else:
        for column, value in csv_row.items():
            if column is None or value in (None, ""):
                continue
            result[normalize_column(column)] = value

    return result


def _parse_timestamp(value: Any) -> Optional[datetime]:
    """Aware datetime for an ISO timestamp or datetime; naive values are taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        text = str(value or "").strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _created_at_key(employee: Mapping[str, Any]) -> tuple[int, float]:
    # unparseable or missing timestamps sort after every real one
    parsed = _parse_timestamp(employee.get("created_at"))
    if parsed is None:
        return 1, 0.0
    return 0, parsed.timestamp()


def remove_duplicates(employees: Sequence[Mapping[str, Any]]) -> tuple[list[dict], list[dict]]:
    """Drop repeated CPFs, keeping the oldest record of each.

    Records without a CPF are always kept. Returns ``(kept, removed)`` with
    kept records in their original order.
    """
    groups: dict[str, list[int]] = {}
    for index, employee in enumerate(employees):
        cpf = str(employee.get("cpf") or "").strip()
        if cpf:
            groups.setdefault(cpf, []).append(index)

    removed_indexes: set[int] = set()
    for indexes in groups.values():
        if len(indexes) < 2:
            continue
        oldest_first = sorted(indexes, key=lambda i: (_created_at_key(employees[i]), i))
        removed_indexes.update(oldest_first[1:])

    kept = [dict(e) for i, e in enumerate(employees) if i not in removed_indexes]
    removed = [dict(e) for i, e in enumerate(employees) if i in removed_indexes]
    return kept, removed


def drop_nameless(employees: Iterable[Mapping[str, Any]]) -> list[dict]:
    return [dict(e) for e in employees if str(e.get("name") or "").strip()]


def export_employees_csv(
    employees: Iterable[Mapping[str, Any]],
    columns: Sequence[tuple[str, str]] = DEFAULT_EXPORT_COLUMNS,
) -> str:
    """Render employees as CSV text with a UTF-8 BOM so spreadsheets pick the encoding."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow([label for _, label in columns])
    for employee in employees:
        writer.writerow(["" if employee.get(key) is None else str(employee.get(key)) for key, _ in columns])
    return "\ufeff" + buffer.getvalue()


@dataclass(frozen=True)
class Affiliate:
    """A company of the group; supplies letterhead images and the footer address."""

    name: str
    address: Optional[str] = None
    logo_url: Optional[str] = None
    signature_url: Optional[str] = None
    stamp_url: Optional[str] = None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Affiliate":
        return cls(
            name=str(record.get("nome") or record.get("name") or ""),
            address=record.get("endereco") or record.get("address") or None,
            logo_url=record.get("company_logo_url") or record.get("logo_url") or None,
            signature_url=record.get("signature_url") or None,
            stamp_url=record.get("stamp_url") or None,
        )


def load_affiliate(path: Path) -> Affiliate:
    return Affiliate.from_record(json.loads(path.read_text(encoding="utf-8")))
