from datetime import datetime
from pathlib import Path
from typing import Any, Literal

# load_dotenv() runs inside load_settings(); settings must be loaded before
# auth validates the first token.
from settings import load_settings

SETTINGS = load_settings()

import jwt as pyjwt
from auth import decode_supabase_token, get_current_user
from employee_records import build_field_map
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from font_registry import register_fonts_from_directory
from document_generator import generate_document
from image_assets import load_assets
from log_utils import get_logger
from pdf_backend import RenderError
from pydantic import BaseModel
from template_resolver import Template, normalize_fields, placeholder_keys, preview_text, resolve

LOGGER = get_logger(__name__)

ROOT_DIR = Path(__file__).resolve().parent

app = FastAPI(title="HR Document Renderer API")

# ── CORS ──────────────────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(SETTINGS.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── FONTS ─────────────────────────────────────────────────────────────────────
register_fonts_from_directory(ROOT_DIR / "fonts")
if SETTINGS.fonts_dir:
    register_fonts_from_directory(SETTINGS.fonts_dir)

# ── AUTH MIDDLEWARE ────────────────────────────────────────────────────────────
_PUBLIC_API_PATHS: frozenset[str] = frozenset({"/api/health"})


@app.middleware("http")
async def _auth_middleware(request: Request, call_next):
    """Reject unauthenticated calls to /api/* (except public endpoints)."""
    path = request.url.path
    if not path.startswith("/api/") or path in _PUBLIC_API_PATHS or request.method == "OPTIONS":
        return await call_next(request)

    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return JSONResponse(
            status_code=401,
            content={"detail": "Missing or invalid Authorization header."},
        )

    token = auth_header.split(" ", 1)[1]
    try:
        decode_supabase_token(token)
    except pyjwt.ExpiredSignatureError:
        return JSONResponse(
            status_code=401,
            content={"detail": "Token has expired."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    except pyjwt.InvalidTokenError as exc:
        return JSONResponse(
            status_code=401,
            content={"detail": f"Invalid token: {exc}"},
            headers={"WWW-Authenticate": "Bearer"},
        )

    return await call_next(request)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "message": "Request validation failed.",
            "detail": exc.errors(),
        },
    )


class TemplatePayload(BaseModel):
    id: str = ""
    name: str
    body: str


class DocumentPayload(BaseModel):
    template: TemplatePayload
    employee: dict[str, Any] | None = None
    field_values: dict[str, Any] | None = None
    logo_url: str | None = None
    signature_url: str | None = None
    stamp_url: str | None = None
    footer_address: str | None = None
    generated_at: datetime | None = None
    overflow: Literal["paginate", "truncate"] | None = None


def build_fields(payload: DocumentPayload) -> dict[str, str]:
    """Employee record first, explicit fields on top."""
    fields = build_field_map(payload.employee) if payload.employee else {}
    fields.update(normalize_fields(payload.field_values))
    return fields


def image_sources(payload: DocumentPayload) -> dict[str, str | None]:
    employee = payload.employee or {}
    return {
        "logo": payload.logo_url or employee.get("company_logo_url"),
        "signature": payload.signature_url or employee.get("signature_url"),
        "stamp": payload.stamp_url or employee.get("stamp_url"),
    }


def to_template(payload: TemplatePayload) -> Template:
    return Template(id=payload.id, name=payload.name, body=payload.body)


@app.get("/api/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/api/preview")
def preview_document(payload: DocumentPayload) -> dict[str, Any]:
    template = to_template(payload.template)
    fields = build_fields(payload)
    sources = image_sources(payload)
    available = [role for role in ("signature", "stamp") if sources[role]]
    keys = placeholder_keys(template)
    return {
        "resolved_text": resolve(template, fields),
        "preview_text": preview_text(template, fields, available),
        "placeholders": keys,
        "missing_fields": [key for key in keys if not fields.get(key)],
    }


@app.post("/api/render")
def render_document(payload: DocumentPayload, current_user: dict = Depends(get_current_user)) -> Response:
    template = to_template(payload.template)
    sources = image_sources(payload)
    assets = load_assets(
        logo=sources["logo"],
        signature=sources["signature"],
        stamp=sources["stamp"],
        timeout=SETTINGS.image_timeout,
        allow_paths=False,
    )
    try:
        document = generate_document(
            template=template,
            fields=build_fields(payload),
            generated_at=payload.generated_at or datetime.now(),
            assets=assets,
            footer_address=payload.footer_address or SETTINGS.footer_address,
            policy=SETTINGS.layout_policy(payload.overflow),
        )
    except RenderError as exc:
        LOGGER.error("Render failed for user %s: %s", current_user.get("sub"), exc)
        raise HTTPException(
            status_code=422,
            detail={"message": "Document generation failed.", "detail": str(exc)},
        ) from exc

    return Response(
        content=document.pdf,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="{document.filename}"',
            "X-Page-Count": str(document.page_count),
        },
    )


def serve(host: str = "127.0.0.1", port: int = 8000) -> None:
    import uvicorn

    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    serve()
