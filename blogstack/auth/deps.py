from __future__ import annotations

from typing import Dict, Optional

from fastapi import HTTPException, Request

from blogstack.services.auth import decode_token


def extract_bearer_token(auth_header: Optional[str]) -> str:
    if not auth_header:
        raise HTTPException(401, "Missing Authorization header")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(401, "Invalid Authorization header")
    return token.strip()


async def get_current_user(request: Request) -> Dict[str, str]:
    """Resolve the caller from ``Authorization: Bearer <jwt>``."""
    token = extract_bearer_token(request.headers.get("authorization"))
    payload = decode_token(token)
    return {"user_id": str(payload["sub"]), "username": str(payload.get("username") or "")}
