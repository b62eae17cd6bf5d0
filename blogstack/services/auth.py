from __future__ import annotations

import logging
from typing import Any, Dict

import jwt
from fastapi import HTTPException

from blogstack.core.settings import S
from blogstack.core.time import now_ts
from blogstack.metrics import record_login
from blogstack.services import users

logger = logging.getLogger(__name__)


def _secret() -> str:
    if not S.jwt_secret:
        raise HTTPException(500, "JWT_SECRET is not configured")
    return S.jwt_secret


def issue_token(user: Dict[str, Any]) -> str:
    now = now_ts()
    payload = {
        "sub": str(user["userId"]),
        "username": user.get("username"),
        "iat": now,
        "exp": now + S.jwt_ttl_seconds,
    }
    return jwt.encode(payload, _secret(), algorithm=S.jwt_algorithm)


def decode_token(token: str) -> Dict[str, Any]:
    try:
        payload = jwt.decode(token, _secret(), algorithms=[S.jwt_algorithm])
    except jwt.ExpiredSignatureError as exc:
        raise HTTPException(401, "Token expired") from exc
    except jwt.PyJWTError as exc:
        raise HTTPException(401, "Invalid token") from exc
    if not payload.get("sub"):
        raise HTTPException(401, "Token missing subject")
    return payload


def login_response(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "access_token": issue_token(user),
        "user": {
            "username": user.get("username"),
            "userId": user.get("userId"),
            "profilePictureKey": user.get("avatarUrl") or None,
            "email": user.get("email") or None,
        },
    }


def login(username: str, password: str) -> Dict[str, Any]:
    user = users.find_by_username(username)
    if not user or not users.validate_password(user, password):
        record_login(False)
        logger.info("Failed login for %s", username)
        raise HTTPException(401, "Invalid username or password")
    record_login(True)
    return login_response(user)
