from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from botocore.exceptions import BotoCoreError, ClientError
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from blogstack.core.indexes import INDEXES
from blogstack.core.logconfig import configure_logging
from blogstack.core.settings import S
from blogstack.core.tables import T
from blogstack.metrics import METRICS_ENABLED, metrics_endpoint, metrics_middleware, set_app_info
from blogstack.routers.auth import router as auth_router
from blogstack.routers.misc import router as misc_router
from blogstack.routers.posts import router as posts_router
from blogstack.routers.uploads import router as uploads_router
from blogstack.routers.users import router as users_router

logger = logging.getLogger(__name__)


def poll_indexes() -> None:
    try:
        states = INDEXES.refresh(T.blog)
    except (BotoCoreError, ClientError) as exc:
        logger.warning("Could not read index status for %s: %s", S.table_name, exc)
        return
    logger.info("Index status for %s: %s", S.table_name, {k: v.value for k, v in states.items()})


@asynccontextmanager
async def lifespan(app: FastAPI):
    poll_indexes()
    yield


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="blogstack", version="0.1.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=S.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    if METRICS_ENABLED:
        app.middleware("http")(metrics_middleware)
        set_app_info(app.title, app.version)
        app.get("/metrics")(metrics_endpoint)

    app.include_router(misc_router)
    app.include_router(auth_router)
    app.include_router(posts_router)
    app.include_router(users_router)
    app.include_router(uploads_router)

    return app

app = create_app()
