from __future__ import annotations

from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

class SignupReq(BaseModel):
    username: str
    fullName: str = Field(default="", max_length=120)
    email: str
    password: str = Field(..., min_length=6, max_length=128)
    avatarUrl: Optional[str] = None

class LoginReq(BaseModel):
    username: str
    password: str

class PostCreateReq(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    title: str = Field(..., min_length=1, max_length=300)
    subtitle: str = ""
    contentStructure: str = Field(default="", validation_alias=AliasChoices("contentStructure", "content"))
    mediaUrl: Optional[str] = Field(default=None, validation_alias=AliasChoices("mediaUrl", "imageUrl"))
    mediaType: str = "none"  # none|image|video
    tags: List[str] = Field(default_factory=list)

class CommentCreateReq(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)

class AvatarUpdateReq(BaseModel):
    avatarUrl: str

class PresignReq(BaseModel):
    fileName: str
    contentType: str

class RefreshUrlReq(BaseModel):
    fileKey: str
