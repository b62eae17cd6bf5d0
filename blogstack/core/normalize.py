from __future__ import annotations

import re
from typing import Optional

from fastapi import HTTPException

USERNAME_RE = re.compile(r"^[A-Za-z0-9_.-]{3,32}$")

def normalize_email(s: str) -> str:
    s = (s or "").strip().lower()
    if "@" not in s or len(s) > 254:
        raise HTTPException(400, "Invalid email")
    return s

def normalize_username(s: str) -> str:
    s = (s or "").strip()
    if not USERNAME_RE.match(s):
        raise HTTPException(400, "Username must be 3-32 characters: letters, digits, '_', '.', '-'")
    return s

def clean_str(value: Optional[str], *, max_len: Optional[int] = None) -> Optional[str]:
    if value is None:
        return None
    trimmed = value.strip()
    if not trimmed:
        return None
    if max_len is not None and len(trimmed) > max_len:
        raise HTTPException(400, f"Value too long (max {max_len})")
    return trimmed

def safe_filename(name: str) -> str:
    name = (name or "").strip() or "upload.bin"
    return re.sub(r"[^A-Za-z0-9._-]", "_", name.replace("/", "_").replace("\\", "_"))
