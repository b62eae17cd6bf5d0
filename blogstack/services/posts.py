from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Optional, Tuple

from fastapi import HTTPException

from blogstack.core.keys import new_numeric_id, normalize_id
from blogstack.core.normalize import clean_str
from blogstack.core.time import now_iso
from blogstack.metrics import record_event
from blogstack.services import store, users

logger = logging.getLogger(__name__)

MEDIA_TYPES = ("none", "image", "video")
WORDS_PER_MINUTE = 200
STORAGE_FIELDS = ("PK", "GSI1PK", "GSI1SK", "GSI2PK", "GSI2SK", "entity", "version")


def calculate_read_time(content: str) -> int:
    words = len((content or "").split())
    return max(1, math.ceil(words / WORDS_PER_MINUTE))


def public_post(post: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in post.items() if k not in STORAGE_FIELDS}


def create_post(author: Dict[str, Any], data: Dict[str, Any]) -> Dict[str, Any]:
    title = clean_str(data.get("title"), max_len=300)
    if not title:
        raise HTTPException(400, "title is required")
    content = data.get("contentStructure") or ""
    media_type = data.get("mediaType") or "none"
    if media_type not in MEDIA_TYPES:
        raise HTTPException(400, f"mediaType must be one of {', '.join(MEDIA_TYPES)}")

    ts = now_iso()
    author_id = normalize_id(author["userId"])
    post = {
        "postId": new_numeric_id(),
        "authorId": author_id,
        "authorUsername": author.get("username") or "",
        "authorFullName": author.get("fullName") or "",
        "authorAvatarUrl": author.get("avatarUrl") or "",
        "title": title,
        "subtitle": clean_str(data.get("subtitle"), max_len=500) or "",
        "contentStructure": content,
        "mediaUrl": data.get("mediaUrl") or "",
        "mediaType": media_type,
        "thumbnailUrl": "",
        "likesCount": 0,
        "viewsCount": 0,
        "commentsCount": 0,
        "repostsCount": 0,
        "likedBy": [],
        "comments": [],
        "tags": list(data.get("tags") or []),
        "minReadTime": calculate_read_time(content),
        "createdAt": ts,
        "updatedAt": ts,
        "isPublished": True,
    }
    created = store.create_post(post)
    # The post stands even if the counter update fails.
    users.increment_post_count(author_id)
    record_event("post_created")
    return public_post(created)


def list_posts_by_author(author_id: str) -> List[Dict[str, Any]]:
    return [public_post(p) for p in store.list_posts_by_author(author_id)]


def list_feed(
    exclude_user_id: Optional[str] = None,
    *,
    limit: Optional[int] = None,
    cursor: Optional[str] = None,
) -> Tuple[List[Dict[str, Any]], Optional[str]]:
    posts, next_cursor = store.list_all_posts(limit=limit, cursor=cursor)
    if exclude_user_id:
        exclude = normalize_id(exclude_user_id)
        posts = [p for p in posts if normalize_id(p.get("authorId", "")) != exclude]
    return [public_post(p) for p in posts], next_cursor


def delete_post(post_id: str, user_id: str) -> None:
    post = store.get_post(post_id)
    if not post:
        raise HTTPException(404, "Post not found")
    if normalize_id(post.get("authorId", "")) != normalize_id(user_id):
        raise HTTPException(403, "You are not authorized to delete this post")
    store.delete_post(post_id)
    users.decrement_post_count(user_id)
    record_event("post_deleted")


def like_post(post_id: str, user_id: str) -> Dict[str, Any]:
    result = store.like_post(post_id, user_id)
    if result["changed"]:
        users.increment_likes_count(user_id)
        record_event("post_liked")
    return result


def unlike_post(post_id: str, user_id: str) -> Dict[str, Any]:
    result = store.unlike_post(post_id, user_id)
    if result["changed"]:
        users.decrement_likes_count(user_id)
        record_event("post_unliked")
    return result


def is_post_liked_by(post_id: str, user_id: str) -> bool:
    return store.is_post_liked_by(post_id, user_id)


def create_comment(post_id: str, author: Dict[str, Any], content: str) -> Dict[str, Any]:
    text = clean_str(content, max_len=5000)
    if not text:
        raise HTTPException(400, "content is required")
    result = store.create_comment(post_id, author["userId"], author, text)
    users.increment_comments_count(author["userId"])
    record_event("comment_created")
    return result


def list_comments(post_id: str) -> List[Dict[str, Any]]:
    return store.list_comments(post_id)


def delete_comment(post_id: str, comment_id: str, user_id: str) -> Dict[str, Any]:
    result = store.delete_comment(post_id, comment_id, user_id)
    users.decrement_comments_count(user_id)
    record_event("comment_deleted")
    return result
