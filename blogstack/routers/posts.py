from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from blogstack.auth.deps import get_current_user
from blogstack.models import CommentCreateReq, PostCreateReq
from blogstack.services import posts
from blogstack.services.users import find_by_id

router = APIRouter(prefix="/posts", tags=["posts"])


def _author(ctx) -> dict:
    author = find_by_id(ctx["user_id"])
    if not author:
        raise HTTPException(404, "User not found")
    return author


@router.post("", status_code=201)
async def create_post(body: PostCreateReq, ctx=Depends(get_current_user)):
    post = posts.create_post(_author(ctx), body.model_dump())
    return {"message": "Post created successfully", "post": post}


@router.get("")
async def list_feed(
    limit: Optional[int] = Query(default=None, ge=1, le=100),
    cursor: Optional[str] = None,
    ctx=Depends(get_current_user),
):
    items, next_cursor = posts.list_feed(ctx["user_id"], limit=limit, cursor=cursor)
    return {"posts": items, "nextCursor": next_cursor}


@router.get("/my-posts")
async def my_posts(ctx=Depends(get_current_user)):
    return {"posts": posts.list_posts_by_author(ctx["user_id"])}


@router.get("/{author_id}/posts")
async def posts_by_author(author_id: str, ctx=Depends(get_current_user)):
    return {"posts": posts.list_posts_by_author(author_id)}


@router.get("/{post_id}/comments")
async def list_comments(post_id: str, ctx=Depends(get_current_user)):
    return {"comments": posts.list_comments(post_id)}


@router.post("/{post_id}/comments", status_code=201)
async def create_comment(post_id: str, body: CommentCreateReq, ctx=Depends(get_current_user)):
    result = posts.create_comment(post_id, _author(ctx), body.content)
    return {
        "message": "Comment created successfully",
        "comment": result["comment"],
        "commentsCount": result["commentsCount"],
    }


@router.delete("/{post_id}/comments/{comment_id}")
async def delete_comment(post_id: str, comment_id: str, ctx=Depends(get_current_user)):
    result = posts.delete_comment(post_id, comment_id, ctx["user_id"])
    return {"message": "Comment deleted successfully", "commentsCount": result["commentsCount"]}


@router.get("/{post_id}/like-status")
async def like_status(post_id: str, ctx=Depends(get_current_user)):
    return {"isLiked": posts.is_post_liked_by(post_id, ctx["user_id"])}


@router.post("/{post_id}/like")
async def like_post(post_id: str, ctx=Depends(get_current_user)):
    result = posts.like_post(post_id, ctx["user_id"])
    return {"message": "Post liked successfully", "liked": result["liked"], "likesCount": result["likesCount"]}


@router.delete("/{post_id}/like")
async def unlike_post(post_id: str, ctx=Depends(get_current_user)):
    result = posts.unlike_post(post_id, ctx["user_id"])
    return {"message": "Post unliked successfully", "liked": result["liked"], "likesCount": result["likesCount"]}


@router.delete("/{post_id}")
async def delete_post(post_id: str, ctx=Depends(get_current_user)):
    posts.delete_post(post_id, ctx["user_id"])
    return {"message": "Post deleted successfully"}
