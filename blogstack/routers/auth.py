from __future__ import annotations

import logging

from fastapi import APIRouter

from blogstack.models import LoginReq, SignupReq
from blogstack.services.auth import login
from blogstack.services.users import create_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/signup", status_code=201)
async def signup(body: SignupReq):
    user = create_user(body.model_dump())
    logger.info("User signed up: %s", user["username"])
    return {"message": "User created successfully", "user": user}


@router.post("/login")
async def auth_login(body: LoginReq):
    return login(body.username, body.password)
