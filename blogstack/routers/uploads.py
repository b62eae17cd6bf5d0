from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, UploadFile

from blogstack.auth.deps import get_current_user
from blogstack.models import PresignReq, RefreshUrlReq
from blogstack.services import media

router = APIRouter(tags=["upload"])


@router.post("/upload/presigned-url")
async def presigned_upload_url(body: PresignReq, ctx=Depends(get_current_user)):
    return media.presign_upload(ctx["user_id"], body.fileName, body.contentType)


@router.post("/upload/direct")
async def upload_direct(file: UploadFile = File(...), ctx=Depends(get_current_user)):
    content = await file.read()
    return media.upload_direct(ctx["user_id"], file.filename or "upload.bin", content, file.content_type)


# Signup happens before the user has a token.
@router.post("/upload/signup")
async def upload_for_signup(username: str = Form(...), file: UploadFile = File(...)):
    content = await file.read()
    return media.upload_for_signup(username, file.filename or "upload.bin", content, file.content_type)


@router.post("/upload/refresh-url")
async def refresh_signed_url(body: RefreshUrlReq, ctx=Depends(get_current_user)):
    return {"success": True, "signedUrl": media.signed_url(body.fileKey)}


@router.get("/signed-url/{key:path}")
async def signed_url_for_key(key: str, ctx=Depends(get_current_user)):
    return {"url": media.signed_url(key)}


@router.get("/profile-picture-url")
async def profile_picture_url(ctx=Depends(get_current_user)):
    return {"profilePictureUrl": media.profile_picture_url(ctx["user_id"])}
