import logging
import os
import sys
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from pymongo.errors import PyMongoError

from .config import PACKAGE_DIR, ConfigError, Settings, load_settings
from .database import PostStore
from .middleware import MethodOverrideMiddleware, RequestIdMiddleware
from .routes import posts
from .services.posts import PostService
from .utils.uploads import FileTooLarge, UploadError, upload_dir_for

TEMPLATES_DIR = os.path.join(PACKAGE_DIR, "templates")
ASSETS_DIR = os.path.join(PACKAGE_DIR, "static")

logger = structlog.get_logger()


def configure_structlog(level: str = "info"):
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(level.upper())),
        context_class=dict,
    )


def format_datetime(value: Optional[datetime], fmt: str = "%Y-%m-%d %H:%M") -> str:
    if not value:
        return ""
    return value.strftime(fmt)


def create_app(store: PostStore, static_dir: str) -> FastAPI:
    """
    Build the web application around an already connected store.

    The caller owns the store; the app closes it when its lifespan ends.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("app_startup", static_dir=static_dir)
        yield
        store.close()
        logger.info("app_shutdown")

    upload_dir = upload_dir_for(static_dir)
    os.makedirs(upload_dir, exist_ok=True)

    app = FastAPI(title="PostFlow", lifespan=lifespan)

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(MethodOverrideMiddleware)

    templates = Jinja2Templates(directory=TEMPLATES_DIR)
    templates.env.filters["datetime"] = format_datetime
    app.state.templates = templates
    app.state.post_service = PostService(store, static_dir)

    app.mount("/uploads", StaticFiles(directory=upload_dir), name="uploads")
    app.mount("/static", StaticFiles(directory=ASSETS_DIR), name="static")

    app.include_router(posts.router)

    @app.get("/health")
    def health_check():
        return {"status": "ok"}

    @app.exception_handler(FileTooLarge)
    async def file_too_large_handler(request: Request, exc: FileTooLarge):
        path = request.url.path.rstrip("/")
        back_url = posts.NEW_POST_URL if path == posts.POSTS_URL else f"{path}/edit"
        logger.warning("upload_too_large", limit=exc.limit)
        return templates.TemplateResponse(
            request,
            "file_too_large.html",
            {"limit_mb": exc.limit // (1024 * 1024), "back_url": back_url},
            status_code=400,
        )

    @app.exception_handler(UploadError)
    async def upload_error_handler(request: Request, exc: UploadError):
        logger.warning("upload_rejected", error=str(exc))
        return templates.TemplateResponse(
            request, "error.html", {"message": str(exc)}, status_code=500
        )

    @app.exception_handler(Exception)
    async def server_error_handler(request: Request, exc: Exception):
        logger.error("unhandled_error", error=str(exc), exc_info=exc)
        return templates.TemplateResponse(
            request, "error.html", {"message": None}, status_code=500
        )

    return app


def run():
    try:
        settings: Settings = load_settings()
    except ConfigError as exc:
        configure_structlog()
        logger.error("config_invalid", error=str(exc))
        sys.exit(1)

    configure_structlog(settings.log_level)
    try:
        store = PostStore.connect(settings.mongodb_uri, settings.db_name)
    except PyMongoError as exc:
        logger.error("store_connect_failed", error=str(exc))
        sys.exit(1)

    app = create_app(store, settings.static_dir)
    logger.info("server_starting", url=f"http://{settings.host}:{settings.port}/posts")
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
