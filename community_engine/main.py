from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from community_engine.core import logger, register_logger
from community_engine.core.config import settings
from community_engine.core.database import AsyncSessionLocal, create_tables
from community_engine.api.errors import register_error_handlers
from community_engine.api.communities import router as communities_router
from community_engine.api.community_management import (
    router as community_management_router,
    leaders_router,
    admin_router,
)
from community_engine.api.memberships import router as memberships_router
from community_engine.services.community_service import CommunityService


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.PROJECT_NAME,
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # -------------------------------------
    # CORS
    # -------------------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -------------------------------------
    # Logging & errors
    # -------------------------------------
    register_logger(app)
    register_error_handlers(app)

    # -------------------------------------
    # Routing
    # -------------------------------------
    app.include_router(communities_router)
    app.include_router(community_management_router)
    app.include_router(memberships_router)
    app.include_router(leaders_router)
    app.include_router(admin_router)

    # -------------------------------------
    # Startup event
    # -------------------------------------
    @app.on_event("startup")
    async def startup_event():
        if settings.DEBUG:
            logger.info("creating_tables", reason="debug_mode")
            await create_tables()

        async with AsyncSessionLocal() as db:
            await CommunityService(db).ensure_public_community()

    return app


app = create_app()
