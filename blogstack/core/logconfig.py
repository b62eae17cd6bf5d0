from __future__ import annotations

import logging

from .settings import S

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(level=(level or S.log_level), format=LOG_FORMAT)
