"""Authentication dependency for FastAPI routes.

``require_api_key`` reads the configured key from ``app.state.settings``.
"""
from __future__ import annotations

from typing import Optional

from fastapi import HTTPException, Request, Security
from fastapi.security import APIKeyHeader

from api.auth import verify_api_key

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def require_api_key(
    request: Request, api_key: Optional[str] = Security(api_key_header)
) -> bool:
    settings = getattr(request.app.state, "settings", None)
    expected = getattr(settings, "api_key", None)
    if not verify_api_key(api_key, expected):
        raise HTTPException(status_code=403, detail="Invalid API Key")
    return True
