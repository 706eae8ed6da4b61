import os
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import inspect
from sqlalchemy.orm import sessionmaker

from .config import settings
from .db import Base, SessionLocal
from .logging import setup_logging, RequestIdMiddleware
from .auth.router import router as auth_router
from .routes.board import router as board_router
from .routes.field_work import router as field_work_router
from .routes.files import router as files_router
from .routes.realtime import router as realtime_router
from .routes.users import router as users_router
from .services.change_hub import ChangeHub
from .storage.factory import get_storage
from .storage.provider import StorageProvider
from .models import models as _models  # noqa: F401  registers tables on Base.metadata

logger = structlog.get_logger(__name__)


def create_app(
    session_factory: Optional[sessionmaker] = None,
    storage: Optional[StorageProvider] = None,
    hub: Optional[ChangeHub] = None,
) -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)

    # Shared per process: stores of every request publish and listen here
    app.state.session_factory = session_factory or SessionLocal
    app.state.storage = storage or get_storage()
    app.state.hub = hub or ChangeHub()

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    # Routers
    app.include_router(auth_router)
    app.include_router(board_router)
    app.include_router(field_work_router)
    app.include_router(files_router)
    app.include_router(realtime_router)
    app.include_router(users_router)

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.get("/health")
    def health():
        return {"status": "ok", "storage": app.state.storage.name}

    @app.on_event("startup")
    def _startup():
        logger.info("startup", environment=settings.environment, storage=app.state.storage.name)
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            bind = app.state.session_factory.kw.get("bind")
            existing = set(inspect(bind).get_table_names())
            missing = set(Base.metadata.tables.keys()) - existing
            if missing:
                logger.info("creating_tables", tables=sorted(missing))
                Base.metadata.create_all(bind=bind)

    return app


app = create_app()
