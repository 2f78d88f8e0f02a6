from __future__ import annotations

from fastapi import HTTPException, Request

from executor import RollbackFailure, WorkbenchError
from generation import GenerationError
from orchestration import WorkbenchEngine


def get_engine(request: Request) -> WorkbenchEngine:
    """Engine attached to the app at startup (dependency injection)."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")
    return engine


def http_error(exc: WorkbenchError) -> HTTPException:
    """Map engine errors to HTTP errors; ``code`` goes into the detail."""
    if isinstance(exc, RollbackFailure):
        status = 404 if exc.reason == "unknown action" else 409
        return HTTPException(status_code=status, detail={"code": exc.code, "message": str(exc)})
    return HTTPException(status_code=409, detail={"code": exc.code, "message": str(exc)})


def upstream_error(exc: GenerationError) -> HTTPException:
    """The AI collaborator failed or answered garbage: a bad gateway, not a client error."""
    return HTTPException(status_code=502, detail={"code": "GenerationError", "message": str(exc)})
