from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .aws import ddb
from .settings import S

@dataclass(frozen=True)
class Tables:
    blog: Any

T = Tables(
    blog=ddb.Table(S.table_name),
)
