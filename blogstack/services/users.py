from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

import bcrypt
from botocore.exceptions import ClientError
from fastapi import HTTPException

from blogstack.core.keys import normalize_id
from blogstack.core.normalize import clean_str, normalize_email, normalize_username
from blogstack.core.settings import S
from blogstack.metrics import NEW_USERS, record_event
from blogstack.services import cascade, store

logger = logging.getLogger(__name__)

PRIVATE_FIELDS = ("passwordHash", "PK", "GSI1PK", "GSI1SK", "GSI2PK", "GSI2SK", "entity", "version")


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=S.bcrypt_rounds)).decode("utf-8")


def strip_private(user: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in user.items() if k not in PRIVATE_FIELDS}


def public_summary(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "userId": user.get("userId"),
        "username": user.get("username"),
        "fullName": user.get("fullName"),
        "avatarUrl": user.get("avatarUrl"),
        "postCount": int(user.get("postCount", 0) or 0),
        "dateJoined": user.get("dateJoined"),
    }


def create_user(data: Dict[str, Any]) -> Dict[str, Any]:
    username = normalize_username(data.get("username", ""))
    email = normalize_email(data.get("email", ""))
    password = data.get("password") or ""

    # Check-then-write; two simultaneous signups can still both pass.
    if store.get_user_by_username(username):
        raise HTTPException(409, "Username already exists")
    if store.get_user_by_email(email):
        raise HTTPException(409, "Email already exists")

    user = store.create_user(
        {
            "username": username,
            "email": email,
            "fullName": clean_str(data.get("fullName"), max_len=120) or "",
            "passwordHash": hash_password(password) if password else "",
            "avatarUrl": clean_str(data.get("avatarUrl"), max_len=1024) or "",
            "githubId": data.get("githubId") or "",
            "googleId": data.get("googleId") or "",
        }
    )
    NEW_USERS.inc()
    record_event("user_signup")
    return strip_private(user)


def find_by_username(username: str) -> Optional[Dict[str, Any]]:
    return store.get_user_by_username((username or "").strip())


def find_by_id(user_id: str) -> Optional[Dict[str, Any]]:
    return store.get_user_by_id(user_id)


def validate_password(user: Dict[str, Any], password: str) -> bool:
    stored = user.get("passwordHash") or ""
    if not stored or not password:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), stored.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash for user %s is malformed", user.get("userId"))
        return False


def list_users(exclude_user_id: Optional[str] = None) -> List[Dict[str, Any]]:
    exclude = normalize_id(exclude_user_id) if exclude_user_id else None
    users = [public_summary(u) for u in store.list_users()]
    if exclude:
        users = [u for u in users if normalize_id(u["userId"] or "") != exclude]
    return users


def get_profile(username: str) -> Dict[str, Any]:
    user = find_by_username(username)
    if not user:
        raise HTTPException(404, "User not found")
    return {
        "userId": user["userId"],
        "username": user.get("username"),
        "fullName": user.get("fullName"),
        "avatarUrl": user.get("avatarUrl"),
        "postCount": int(user.get("postCount", 0) or 0),
        "likesCount": int(user.get("likesCount", 0) or 0),
        "commentsCount": int(user.get("commentsCount", 0) or 0),
        "friendsCount": int(user.get("friendsCount", 0) or 0),
        "dateJoined": user.get("dateJoined"),
        "email": user.get("email"),
    }


def update_avatar(user_id: str, avatar_url: str) -> Dict[str, Any]:
    avatar = clean_str(avatar_url, max_len=1024)
    if not avatar:
        raise HTTPException(400, "avatarUrl is required")
    updated = store.update_user_avatar(user_id, avatar)
    if not updated:
        raise HTTPException(404, "User not found")
    record_event("avatar_updated")
    return {
        "userId": updated["userId"],
        "username": updated.get("username"),
        "fullName": updated.get("fullName"),
        "avatarUrl": updated.get("avatarUrl"),
    }


def delete_user(user_id: str) -> Dict[str, Any]:
    if not store.get_user_by_id(user_id) and not cascade.load_cascade(user_id):
        raise HTTPException(404, "User not found")
    report = cascade.delete_user(user_id)
    record_event("user_deleted" if report["status"] == cascade.STATUS_COMPLETED else "user_delete_partial")
    return report


def resume_delete_user(user_id: str) -> Dict[str, Any]:
    return cascade.resume_user_deletion(user_id)


# -----------------------------
# Friends
# -----------------------------
def add_friend(user_id: str, friend_id: str) -> bool:
    if not store.get_user_by_id(friend_id):
        return False
    added = store.add_friend(user_id, friend_id)
    if added:
        record_event("friend_added")
    return added


def remove_friend(user_id: str, friend_id: str) -> bool:
    removed = store.remove_friend(user_id, friend_id)
    if removed:
        record_event("friend_removed")
    return removed


def get_friends(user_id: str) -> List[Dict[str, Any]]:
    return store.list_friends(user_id)


def is_friend(user_id: str, friend_id: str) -> bool:
    return store.is_friend(user_id, friend_id)


# -----------------------------
# Counters (fire and forget)
# -----------------------------
def _bump(fn, user_id: str) -> None:
    try:
        fn(user_id)
    except ClientError as exc:
        logger.error("Counter update for user %s failed: %s", user_id, exc)


def increment_post_count(user_id: str) -> None:
    _bump(store.increment_user_post_count, user_id)


def decrement_post_count(user_id: str) -> None:
    _bump(store.decrement_user_post_count, user_id)


def increment_likes_count(user_id: str) -> None:
    _bump(store.increment_user_likes_count, user_id)


def decrement_likes_count(user_id: str) -> None:
    _bump(store.decrement_user_likes_count, user_id)


def increment_comments_count(user_id: str) -> None:
    _bump(store.increment_user_comments_count, user_id)


def decrement_comments_count(user_id: str) -> None:
    _bump(store.decrement_user_comments_count, user_id)


# -----------------------------
# External identities
# -----------------------------
def link_oauth_identity(provider: str, profile: Dict[str, Any]) -> Dict[str, Any]:
    """
    Resolve a third-party login to a local user: match by email, otherwise
    create a passwordless account, then record the provider's id on it.
    The OAuth handshake itself is done by the caller.
    """
    if provider not in store.OAUTH_FIELDS:
        raise HTTPException(400, f"Unsupported identity provider: {provider}")
    external_id = str(profile.get("id") or "").strip()
    if not external_id:
        raise HTTPException(400, "Identity profile has no id")
    email = normalize_email(profile.get("email") or "")

    user = store.get_user_by_email(email)
    if not user:
        raw = profile.get("username") or email.split("@", 1)[0]
        base = re.sub(r"[^A-Za-z0-9_.-]", "", raw)[:28]
        if len(base) < 3:
            base = f"user{base}"
        username = base
        suffix = 1
        while store.get_user_by_username(username):
            suffix += 1
            username = f"{base}{suffix}"
        created = create_user(
            {
                "username": username,
                "email": email,
                "fullName": profile.get("name") or base,
                "avatarUrl": profile.get("avatarUrl") or "",
                "password": "",
            }
        )
        user = store.get_user_by_id(created["userId"]) or created

    field = store.OAUTH_FIELDS[provider]
    if user.get(field) != external_id:
        user = store.update_user_oauth_id(user["userId"], provider, external_id) or user
    return strip_private(user)
