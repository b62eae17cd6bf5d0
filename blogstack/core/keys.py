from __future__ import annotations

import random
from typing import Any, Dict, Union

from .time import now_ms

ENTITY_USER = "User"
ENTITY_POST = "Post"
ENTITY_CASCADE = "Cascade"
ENTITY_CASCADE_STEP = "CascadeStep"

ALL_POSTS = "ALL_POSTS"


def new_numeric_id() -> str:
    # Millisecond timestamp plus a small random offset; collisions are caught
    # by the attribute_not_exists guard on put.
    return str(now_ms() + random.randint(0, 999))


def normalize_id(value: Union[str, int]) -> str:
    """Accept numeric or string ids ("123", 123, " 123 ") and return the canonical string."""
    raw = str(value).strip()
    try:
        return str(int(raw))
    except ValueError:
        return raw


def pk_user(user_id: Union[str, int]) -> str:
    return f"USER#{normalize_id(user_id)}"


def pk_post(post_id: Union[str, int]) -> str:
    return f"POST#{normalize_id(post_id)}"


def pk_cascade(user_id: Union[str, int]) -> str:
    return f"CASCADE#{normalize_id(user_id)}"


def user_key(user_id: Union[str, int]) -> Dict[str, Any]:
    return {"PK": pk_user(user_id)}


def post_key(post_id: Union[str, int]) -> Dict[str, Any]:
    return {"PK": pk_post(post_id)}


def cascade_key(user_id: Union[str, int]) -> Dict[str, Any]:
    return {"PK": pk_cascade(user_id)}


def cascade_step_key(user_id: Union[str, int], index: int) -> Dict[str, Any]:
    # One item per step; the CASCADE#<id> header only holds counts and status.
    return {"PK": f"{pk_cascade(user_id)}#STEP#{index:06d}"}


def gsi_username(username: str) -> str:
    return f"USERNAME#{username}"


def gsi_email(email: str) -> str:
    return f"EMAIL#{email}"


def gsi_author(author_id: Union[str, int]) -> str:
    return f"AUTHOR#{normalize_id(author_id)}"
