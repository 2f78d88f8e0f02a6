from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from executor import LocalFileSystem, SubprocessRunner
from generation import build_generator
from orchestration import EngineConfig, WorkbenchEngine

from workbench_api.api.actions import router as actions_router
from workbench_api.api.checkpoints import router as checkpoints_router
from workbench_api.api.orchestration import router as orchestration_router
from workbench_api.api.plans import router as plans_router
from workbench_api.settings import ApiSettings

logger = logging.getLogger(__name__)


def build_engine(settings: ApiSettings) -> WorkbenchEngine:
    """Engine over the local project directory, configured from file and environment."""
    root = settings.project_root
    return WorkbenchEngine(
        LocalFileSystem(root),
        process=SubprocessRunner(root),
        generator=build_generator(),
        config=EngineConfig.load(),
    )


def create_app(engine: Optional[WorkbenchEngine] = None, settings: Optional[ApiSettings] = None) -> FastAPI:
    settings = settings or ApiSettings.from_env()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "engine", None) is None:
            app.state.engine = build_engine(settings)
            logger.info(f"Engine started for {settings.project_root}")
        yield
        await app.state.engine.shutdown()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.engine = engine
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(actions_router)
    app.include_router(checkpoints_router)
    app.include_router(plans_router)
    app.include_router(orchestration_router)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    return app


def serve() -> None:
    """Console entry point: serve the API over the configured project."""
    settings = ApiSettings.from_env()
    uvicorn.run(create_app(settings=settings), host=settings.host, port=settings.port, log_level=settings.log_level.lower())
