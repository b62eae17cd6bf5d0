from __future__ import annotations

from fastapi import APIRouter

from blogstack.core.indexes import INDEXES
from blogstack.core.time import now_iso

router = APIRouter(tags=["misc"])


@router.get("/health")
async def health():
    return {
        "status": "ok",
        "timestamp": now_iso(),
        "service": "blogstack",
        "indexes": INDEXES.snapshot(),
    }
