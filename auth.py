"""
Supabase JWT validation for the document API.

The middleware in app_server.py rejects unauthenticated /api/* calls before
they reach a route; routes that need the caller's claims declare
`current_user: dict = Depends(get_current_user)`.

Secrets come from settings.py (SUPABASE_JWT_SECRET for HS256 tokens,
SUPABASE_URL for the JWKS endpoint used by RS256/ES256 tokens).
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from settings import Settings, load_settings

_bearer = HTTPBearer(auto_error=True)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()


@lru_cache(maxsize=4)
def _jwks_client(supabase_url: str) -> jwt.PyJWKClient:
    return jwt.PyJWKClient(f"{supabase_url}/auth/v1/.well-known/jwks.json", cache_keys=True)


def decode_supabase_token(token: str, settings: Optional[Settings] = None) -> dict:
    """
    Validate a Supabase access token and return its claims.

    Raises jwt.InvalidTokenError (or a subclass such as ExpiredSignatureError).
    """
    settings = settings or get_settings()
    alg = jwt.get_unverified_header(token).get("alg", "HS256")

    if alg == "HS256":
        if not settings.supabase_jwt_secret:
            raise jwt.InvalidTokenError("SUPABASE_JWT_SECRET is not set; cannot validate HS256 token.")
        return jwt.decode(
            token,
            settings.supabase_jwt_secret,
            algorithms=["HS256"],
            options={"verify_aud": False},
        )

    if not settings.supabase_url:
        raise jwt.InvalidTokenError(f"Token uses {alg} but SUPABASE_URL is not set; cannot fetch JWKS.")
    signing_key = _jwks_client(settings.supabase_url).get_signing_key_from_jwt(token)
    return jwt.decode(
        token,
        signing_key.key,
        algorithms=[alg],
        options={"verify_aud": False},
    )


def unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(_bearer),
) -> dict:
    """Claims of the Bearer token (`sub`, `email`, `role`, ...); HTTP 401 otherwise."""
    try:
        return decode_supabase_token(credentials.credentials)
    except jwt.ExpiredSignatureError as exc:
        raise unauthorized("Token has expired.") from exc
    except jwt.InvalidTokenError as exc:
        raise unauthorized(f"Invalid token: {exc}") from exc
