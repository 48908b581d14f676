# FILE: main.py
"""
Atelier Workspace - FastAPI Application
Version: 1.0.0

Features:
- Intent routing (tutor / builder / canvas)
- Generation orchestration with truncated retry and provider fallback
- Virtual project files and version history per workspace
- Session, message and usage persistence (SQLite by default)

Environment:
- ATELIER_DATABASE_URL       database (default sqlite:///./data/atelier.db)
- ATELIER_GENERATION_URL     generation endpoint the gateway posts to
- ATELIER_PROVIDER           default provider for new workspaces
- ATELIER_DAILY_TOKEN_LIMIT  per-user daily usage cap (0 = unlimited)
"""
import os
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

# Load .env FIRST before any other imports that might need env vars
load_dotenv()

from atelier import __version__
from atelier.db import init_db, SessionLocal
from atelier.llm.gateway import HttpProviderGateway
from atelier.llm.orchestrator import OrchestratorConfig
from atelier.sessions.router import router as sessions_router
from atelier.sessions.store import SqlSessionStore, SqlUsageTracker
from atelier.workspace.router import router as workspace_router, WorkspaceRegistry, configure_registry
from config.providers import DEFAULT_PROVIDER, FALLBACK_PROVIDER, list_providers

logging.basicConfig(
    level=os.getenv("ATELIER_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("atelier")

app = FastAPI(
    title="Atelier Workspace",
    version=__version__,
    description="Natural-language tutor and app builder with multi-provider fallback",
)

# ====== CORS ======

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ====== STARTUP ======

@app.on_event("startup")
def on_startup():
    os.makedirs("data", exist_ok=True)
    init_db()

    configure_registry(WorkspaceRegistry(
        HttpProviderGateway(),
        OrchestratorConfig.from_env(),
        store_factory=lambda: SqlSessionStore(SessionLocal),
        usage_factory=lambda user_id: SqlUsageTracker(SessionLocal, user_id),
        reset_pollers=True,
    ))

    logger.info(f"[startup] providers: {', '.join(list_providers())}")
    logger.info(f"[startup] default provider: {DEFAULT_PROVIDER}, fallback: {FALLBACK_PROVIDER}")
    if os.getenv("ATELIER_GENERATION_URL"):
        logger.info("[startup] ATELIER_GENERATION_URL: [OK] set")
    else:
        logger.warning("[startup] ATELIER_GENERATION_URL: [X] NOT SET - using local default endpoint")


# ====== ROUTERS ======

app.include_router(workspace_router)
app.include_router(sessions_router)


@app.get("/ping")
def ping():
    """Health check (public)."""
    return {"status": "ok", "version": __version__}


@app.get("/providers")
def providers():
    return {"providers": list_providers(), "default": DEFAULT_PROVIDER, "fallback": FALLBACK_PROVIDER}
