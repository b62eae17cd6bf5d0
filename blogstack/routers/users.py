from __future__ import annotations

from fastapi import APIRouter, Depends

from blogstack.auth.deps import get_current_user
from blogstack.models import AvatarUpdateReq
from blogstack.services import users

router = APIRouter(prefix="/users", tags=["users"])


@router.get("")
async def list_users(ctx=Depends(get_current_user)):
    return {"users": users.list_users(exclude_user_id=ctx["user_id"])}


@router.get("/profile/{username}")
async def get_profile(username: str, ctx=Depends(get_current_user)):
    return {"user": users.get_profile(username)}


@router.get("/profile/{username}/friends")
async def get_user_friends(username: str, ctx=Depends(get_current_user)):
    profile = users.get_profile(username)
    return {"friends": users.get_friends(profile["userId"])}


@router.put("/profile/avatar")
async def update_avatar(body: AvatarUpdateReq, ctx=Depends(get_current_user)):
    user = users.update_avatar(ctx["user_id"], body.avatarUrl)
    return {"message": "Profile picture updated successfully", "user": user}


@router.delete("/delete")
async def delete_account(ctx=Depends(get_current_user)):
    report = users.delete_user(ctx["user_id"])
    message = "Account deleted successfully" if report["status"] == "completed" else "Account deletion incomplete"
    return {"message": message, "deletion": report}


@router.post("/delete/resume")
async def resume_delete_account(ctx=Depends(get_current_user)):
    report = users.resume_delete_user(ctx["user_id"])
    message = "Account deleted successfully" if report["status"] == "completed" else "Account deletion incomplete"
    return {"message": message, "deletion": report}


@router.post("/friends/add/{friend_id}")
async def add_friend(friend_id: str, ctx=Depends(get_current_user)):
    if users.add_friend(ctx["user_id"], friend_id):
        return {"success": True, "message": "Friend added successfully"}
    return {"success": False, "message": "Already friends or user not found"}


@router.delete("/friends/remove/{friend_id}")
async def remove_friend(friend_id: str, ctx=Depends(get_current_user)):
    if users.remove_friend(ctx["user_id"], friend_id):
        return {"success": True, "message": "Friend removed successfully"}
    return {"success": False, "message": "Not friends or user not found"}


@router.get("/friends")
async def list_friends(ctx=Depends(get_current_user)):
    return {"friends": users.get_friends(ctx["user_id"])}


@router.get("/friends/check/{friend_id}")
async def check_friendship(friend_id: str, ctx=Depends(get_current_user)):
    return {"isFriend": users.is_friend(ctx["user_id"], friend_id)}
