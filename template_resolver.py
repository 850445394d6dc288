"""Placeholder resolution for HR document templates.

Templates are plain text with ``{{key}}`` markers. A body is scanned once
into a token stream (text runs, field references and image references) and
the compiled form is cached per body, so resolving the same template for many
employees only replays the tokens against each field map.

Two keys are reserved for images and never receive text: ``{{assinatura}}``
(signature) and ``{{carimbo}}`` (stamp). They pass through resolution
verbatim so the layout engine can turn them into image slots.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Iterable, Mapping, Optional, Union

_PLACEHOLDER_RE = re.compile(r"\{\{([^{}]+)\}\}")

RESERVED_IMAGE_KEYS: dict[str, str] = {
    "assinatura": "signature",
    "carimbo": "stamp",
}

PREVIEW_IMAGE_MARKERS: dict[str, str] = {
    "signature": "[ASSINATURA SERÁ INSERIDA AQUI]",
    "stamp": "[CARIMBO SERÁ INSERIDO AQUI]",
}


@dataclass(frozen=True)
class Template:
    id: str
    name: str
    body: str


@dataclass(frozen=True)
class TextRun:
    text: str


@dataclass(frozen=True)
class FieldRef:
    key: str
    raw: str


@dataclass(frozen=True)
class ImageRef:
    role: str
    raw: str


Token = Union[TextRun, FieldRef, ImageRef]


def normalize_key(raw_key: str) -> str:
    return raw_key.strip().lower()


def normalize_fields(fields: Optional[Mapping[str, Any]]) -> dict[str, str]:
    """Lowercase keys and turn values into display strings (``None`` -> ``""``)."""
    if not fields:
        return {}
    return {
        normalize_key(str(key)): "" if value is None else str(value)
        for key, value in fields.items()
    }


@dataclass(frozen=True)
class CompiledTemplate:
    tokens: tuple[Token, ...]

    @property
    def field_keys(self) -> list[str]:
        keys: list[str] = []
        for token in self.tokens:
            if isinstance(token, FieldRef) and token.key not in keys:
                keys.append(token.key)
        return keys

    @property
    def image_roles(self) -> list[str]:
        roles: list[str] = []
        for token in self.tokens:
            if isinstance(token, ImageRef) and token.role not in roles:
                roles.append(token.role)
        return roles

    def render(
        self,
        fields: Optional[Mapping[str, Any]],
        image_text: Optional[Mapping[str, str]] = None,
    ) -> str:
        """Replay the tokens against *fields*.

        Image references keep their original text unless *image_text* maps
        their role to a replacement.
        """
        values = normalize_fields(fields)
        parts: list[str] = []
        for token in self.tokens:
            if isinstance(token, TextRun):
                parts.append(token.text)
            elif isinstance(token, FieldRef):
                parts.append(values.get(token.key, ""))
            elif image_text and token.role in image_text:
                parts.append(image_text[token.role])
            else:
                parts.append(token.raw)
        return "".join(parts)


@lru_cache(maxsize=256)
def compile_template(body: str) -> CompiledTemplate:
    tokens: list[Token] = []
    cursor = 0
    for match in _PLACEHOLDER_RE.finditer(body):
        if match.start() > cursor:
            tokens.append(TextRun(body[cursor:match.start()]))
        key = normalize_key(match.group(1))
        role = RESERVED_IMAGE_KEYS.get(key)
        if role is not None:
            tokens.append(ImageRef(role=role, raw=match.group(0)))
        else:
            tokens.append(FieldRef(key=key, raw=match.group(0)))
        cursor = match.end()
    if cursor < len(body):
        tokens.append(TextRun(body[cursor:]))
    return CompiledTemplate(tokens=tuple(tokens))


def _body_of(template: Union[Template, str]) -> str:
    if isinstance(template, Template):
        return template.body
    return template or ""


def resolve(template: Union[Template, str], fields: Optional[Mapping[str, Any]]) -> str:
    """Substitute every ``{{key}}`` in *template* from *fields*.

    Keys match case-insensitively. Unknown keys resolve to an empty string,
    reserved image tokens are left untouched, and substituted values are not
    scanned again.
    """
    return compile_template(_body_of(template)).render(fields)


def preview_text(
    template: Union[Template, str],
    fields: Optional[Mapping[str, Any]],
    available_roles: Iterable[str] = (),
) -> str:
    """Resolve *template* and swap image tokens for readable markers.

    Only roles listed in *available_roles* get a marker; the others keep the
    raw token, which shows the user that the image is missing.
    """
    markers = {role: PREVIEW_IMAGE_MARKERS[role] for role in available_roles if role in PREVIEW_IMAGE_MARKERS}
    return compile_template(_body_of(template)).render(fields, image_text=markers)


def placeholder_keys(template: Union[Template, str]) -> list[str]:
    """Distinct text field keys referenced by *template*, in order of appearance."""
    return compile_template(_body_of(template)).field_keys


def image_role_of(paragraph: str) -> Optional[str]:
    """Return the image role when *paragraph* is nothing but a reserved token."""
    match = _PLACEHOLDER_RE.fullmatch(paragraph.strip())
    if match is None:
        return None
    return RESERVED_IMAGE_KEYS.get(normalize_key(match.group(1)))
