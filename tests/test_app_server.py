"""
test_app_server.py — HTTP API: auth, preview and PDF rendering.
"""

import io
import logging
import os
import time

import jwt
import pytest
import uvicorn
from fastapi.testclient import TestClient
from pypdf import PdfReader

import app_server
from app_server import app

TEST_JWT_SECRET = os.environ["SUPABASE_JWT_SECRET"]


def make_token(expires_in=3600, secret=TEST_JWT_SECRET):
    claims = {"sub": "user-123", "email": "rh@example.com", "role": "authenticated", "exp": int(time.time()) + expires_in}
    return jwt.encode(claims, secret, algorithm="HS256")


def auth_headers(token=None):
    return {"Authorization": f"Bearer {token or make_token()}"}


PAYLOAD = {
    "template": {"id": "carta", "name": "Carta de Referência", "body": "Caro {{nome}}, sua função é {{cargo}}.\n{{assinatura}}"},
    "employee": {"name": "João Silva", "position": "Vendedor"},
    "generated_at": "2026-03-14T09:30:15",
}


@pytest.fixture
def client():
    return TestClient(app)


class TestAuth:
    def test_health_is_public(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_missing_token(self, client):
        response = client.post("/api/render", json=PAYLOAD)
        assert response.status_code == 401

    def test_expired_token(self, client):
        response = client.post("/api/render", json=PAYLOAD, headers=auth_headers(make_token(expires_in=-60)))
        assert response.status_code == 401
        assert response.json()["detail"] == "Token has expired."

    def test_wrong_secret(self, client):
        token = make_token(secret="another-secret-0123456789abcdefgh")
        response = client.post("/api/preview", json=PAYLOAD, headers=auth_headers(token))
        assert response.status_code == 401


class TestPreview:
    def test_resolves_and_reports_missing_fields(self, client):
        payload = dict(PAYLOAD, template={"name": "Carta", "body": "{{nome}} - {{cpf}}\n{{carimbo}}"})
        response = client.post("/api/preview", json=payload, headers=auth_headers())
        assert response.status_code == 200
        body = response.json()
        assert body["resolved_text"] == "João Silva - \n{{carimbo}}"
        assert body["placeholders"] == ["nome", "cpf"]
        assert body["missing_fields"] == ["cpf"]

    def test_marks_images_with_a_source(self, client):
        payload = dict(PAYLOAD, signature_url="https://cdn.example.com/assinatura.png")
        body = client.post("/api/preview", json=payload, headers=auth_headers()).json()
        assert body["preview_text"].endswith("[ASSINATURA SERÁ INSERIDA AQUI]")

    def test_explicit_fields_override_the_record(self, client):
        payload = dict(PAYLOAD, field_values={"Cargo": "Gerente"})
        body = client.post("/api/preview", json=payload, headers=auth_headers()).json()
        assert body["resolved_text"].startswith("Caro João Silva, sua função é Gerente.")


class TestRender:
    def test_returns_pdf(self, client):
        response = client.post("/api/render", json=PAYLOAD, headers=auth_headers())
        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert response.headers["x-page-count"] == "1"
        assert 'filename="Joao_Silva_Carta_de_Referencia_' in response.headers["content-disposition"]
        assert response.content.startswith(b"%PDF")
        reader = PdfReader(io.BytesIO(response.content))
        assert "Vendedor" in reader.pages[0].extract_text()

    def test_truncate_override(self, client):
        payload = dict(PAYLOAD, template={"name": "Longo", "body": "palavra " * 3000}, overflow="truncate")
        response = client.post("/api/render", json=payload, headers=auth_headers())
        assert response.headers["x-page-count"] == "1"

    def test_invalid_overflow(self, client):
        payload = dict(PAYLOAD, overflow="shrink")
        response = client.post("/api/render", json=payload, headers=auth_headers())
        assert response.status_code == 422
        assert response.json()["message"] == "Request validation failed."

    def test_local_paths_are_not_read(self, client, tmp_path, png_bytes, caplog):
        path = tmp_path / "assinatura.png"
        path.write_bytes(png_bytes(50, 20))
        payload = dict(PAYLOAD, signature_url=str(path))
        with caplog.at_level(logging.WARNING):
            response = client.post("/api/render", json=payload, headers=auth_headers())
        assert response.status_code == 200
        assert "Refusing to read signature image" in caplog.text
        assert len(PdfReader(io.BytesIO(response.content)).pages[0].images) == 0


class TestServe:
    def test_runs_the_app_with_uvicorn(self, monkeypatch):
        calls = []
        monkeypatch.setattr(uvicorn, "run", lambda app, **kwargs: calls.append((app, kwargs)))
        app_server.serve(host="0.0.0.0", port=9000)
        assert calls == [(app, {"host": "0.0.0.0", "port": 9000})]
