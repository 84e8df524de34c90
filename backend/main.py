# ---------------------------------------------------------
# backend/main.py
# Taskboard - Project Access Control Backend
#
# Run: uvicorn backend.main:app --reload (from repo root)
#
# - FastAPI + SQLite (dev) / PostgreSQL (staging, prod)
# - /projects              : projects, archive/restore, permission snapshot
# - /projects/{id}/members : membership management
# - /projects/{id}/tasks   : project tasks (visibility filtered)
# - /tasks                 : task by id, personal tasks
# - /invitations           : invitation lookup, accept, revoke, resend
# ---------------------------------------------------------

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Dict

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Import local modules (robust fallback for different run contexts)
try:
    from backend.config import CORS_ORIGINS, IS_DEV, IS_PROD
    from backend.errors import AccessError
    from backend.migrate import run_migrations
    from backend.routes_invitations import router as invitations_router
    from backend.routes_projects import router as projects_router, task_router
except ModuleNotFoundError:
    from config import CORS_ORIGINS, IS_DEV, IS_PROD
    from errors import AccessError
    from migrate import run_migrations
    from routes_invitations import router as invitations_router
    from routes_projects import router as projects_router, task_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    run_migrations()
    yield


# ---------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------
app = FastAPI(title="Taskboard Backend", version="0.1", lifespan=lifespan)

# CORS configuration from config module
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS if IS_PROD else ["*"],  # Restrict origins in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# ERROR MAPPING
# ============================================================================
#
# The core raises AccessError subclasses and never imports FastAPI.
# This handler is the only place they become HTTP responses:
#   Forbidden 403, NotFound 404, Conflict 409, Expired 410, Invalid 400
#
# ============================================================================

@app.exception_handler(AccessError)
async def access_error_handler(request: Request, exc: AccessError) -> JSONResponse:
    if IS_DEV:
        print(f"[HTTP] {request.method} {request.url.path} -> {exc.status_code} ({exc.kind})")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


app.include_router(projects_router)
app.include_router(task_router)
app.include_router(invitations_router)


# ---------------------------------------------------------
# Routes
# ---------------------------------------------------------
@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}
