from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from botocore.exceptions import ClientError
from fastapi import HTTPException

from blogstack.core.aws import s3
from blogstack.core.normalize import normalize_username, safe_filename
from blogstack.core.settings import S
from blogstack.core.time import now_ms
from blogstack.services import store

logger = logging.getLogger(__name__)


def _s3_error(exc: ClientError) -> HTTPException:
    return HTTPException(500, f"S3 error: {exc.response.get('Error', {}).get('Message', 'unknown')}")


def upload_key(user_id: str, file_name: str) -> str:
    return f"uploads/{user_id}/{now_ms()}-{safe_filename(file_name)}"


def signup_key(username: str, file_name: str) -> str:
    return f"signup/{username}/{now_ms()}-{safe_filename(file_name)}"


def public_url(key: str) -> str:
    return f"https://{S.media_bucket}.s3.amazonaws.com/{key}"


def signed_url(key: str, *, expires_in: Optional[int] = None) -> str:
    if not key:
        raise HTTPException(400, "S3 key is required")
    try:
        return s3.generate_presigned_url(
            ClientMethod="get_object",
            Params={"Bucket": S.media_bucket, "Key": key},
            ExpiresIn=expires_in or S.download_url_ttl_seconds,
        )
    except ClientError as exc:
        raise _s3_error(exc) from exc


def presign_upload(user_id: str, file_name: str, content_type: str) -> Dict[str, Any]:
    key = upload_key(user_id, file_name)
    try:
        upload_url = s3.generate_presigned_url(
            ClientMethod="put_object",
            Params={"Bucket": S.media_bucket, "Key": key, "ContentType": content_type},
            ExpiresIn=S.upload_url_ttl_seconds,
        )
    except ClientError as exc:
        raise _s3_error(exc) from exc
    return {"uploadUrl": upload_url, "fileKey": key, "publicUrl": public_url(key)}


def _put(key: str, content: bytes, content_type: Optional[str]) -> Dict[str, Any]:
    if not content:
        raise HTTPException(400, "No file uploaded")
    if len(content) > S.max_upload_bytes:
        raise HTTPException(413, "File too large")
    try:
        s3.put_object(
            Bucket=S.media_bucket,
            Key=key,
            Body=content,
            ContentType=content_type or "application/octet-stream",
        )
    except ClientError as exc:
        raise _s3_error(exc) from exc
    logger.info("Uploaded %s (%d bytes)", key, len(content))
    # The signed URL doubles as publicUrl so private buckets keep working.
    return {
        "success": True,
        "fileKey": key,
        "publicUrl": signed_url(key),
        "message": "File uploaded successfully",
    }


def upload_direct(user_id: str, file_name: str, content: bytes, content_type: Optional[str]) -> Dict[str, Any]:
    return _put(upload_key(user_id, file_name), content, content_type)


def upload_for_signup(username: str, file_name: str, content: bytes, content_type: Optional[str]) -> Dict[str, Any]:
    return _put(signup_key(normalize_username(username), file_name), content, content_type)


def profile_picture_url(user_id: str) -> Optional[str]:
    user = store.get_user_by_id(user_id)
    if not user or not user.get("avatarUrl"):
        return None
    return signed_url(user["avatarUrl"])
