# backend/app.py
from __future__ import annotations

import logging
import os
import uuid
from typing import Optional

from fastapi import FastAPI, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel

from . import session_memory as sm
from .completion import DisabledCompletionProvider, OpenAICompletionProvider
from .config import (
    CONFIGS_DIR,
    COOKIE_SECURE,
    CROSS_SITE,
    LLM_ENABLED,
    LLM_TIMEOUT_SECS,
    LOG_LEVEL,
    MAX_SESSIONS,
    OPENAI_API_KEY,
    SESSION_COOKIE,
    SESSION_TTL_SECS,
)
from .lead_sink import GoogleSheetLeadSink, Lead
from .pipeline import resolve_decision
from .session_store import SessionStore
from .tenant_models import TenantConfig
from .tenant_repository import TenantRepository

if not logging.getLogger().handlers:
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
logger = logging.getLogger("uvicorn")

# ============================================================
# Collaborators (module-level so tests can patch them)
# ============================================================
repository = TenantRepository(CONFIGS_DIR)
sessions = SessionStore(ttl_seconds=SESSION_TTL_SECS, max_sessions=MAX_SESSIONS)
if LLM_ENABLED:
    provider = OpenAICompletionProvider(api_key=OPENAI_API_KEY, timeout_secs=LLM_TIMEOUT_SECS)
else:
    provider = DisabledCompletionProvider()
lead_sink = GoogleSheetLeadSink()

# ============================================================
# FastAPI
# ============================================================
app = FastAPI(title="Tenant Chat Engine")
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=".*",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ============================================================
# Models
# ============================================================
class ChatRequest(BaseModel):
    message: Optional[str] = None


class ChatResponse(BaseModel):
    reply: str


class LeadRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    message: Optional[str] = None
    client: Optional[str] = None


def _error(status: int, msg: str) -> JSONResponse:
    return JSONResponse(status_code=status, content={"error": msg})


def _tenant(client_id: Optional[str]) -> Optional[TenantConfig]:
    # in-process stand-in for a file watcher: reload tenants whose file changed
    repository.refresh_stale()
    return repository.get_config((client_id or "").strip())


def _visitor_id(request: Request, response: Response) -> str:
    sid = (request.cookies.get(SESSION_COOKIE) or "").strip()
    if not sid:
        sid = uuid.uuid4().hex
        response.set_cookie(
            SESSION_COOKIE,
            sid,
            max_age=SESSION_TTL_SECS,
            httponly=True,
            secure=COOKIE_SECURE,
            samesite="none" if CROSS_SITE else "lax",
        )
    return sid

# ============================================================
# API routes
# ============================================================
@app.get("/healthz", response_class=PlainTextResponse)
def healthz():
    return "ok"


@app.get("/version")
def version():
    return {"status": "ok", "clients": repository.tenant_ids()}


@app.post("/chat", response_model=ChatResponse)
def chat(req: ChatRequest, request: Request, response: Response, client: str = Query("")):
    cfg = _tenant(client)
    if cfg is None:
        return _error(400, "Invalid client")

    visitor = _visitor_id(request, response)
    with sessions.turn_lock(visitor, cfg.tenant_id):
        state = sm.load(sessions, visitor, cfg.tenant_id, cfg.behavior.history_turns)
        decision = resolve_decision(cfg, state, req.message or "", provider)
    return ChatResponse(reply=decision.reply)


@app.get("/common-questions")
def common_questions(client: str = Query("")):
    cfg = _tenant(client)
    if cfg is None:
        return _error(400, "Invalid client")
    return {"questions": cfg.common_questions}


@app.post("/lead")
def lead(payload: LeadRequest):
    if not (payload.name and payload.email and payload.phone):
        return _error(400, "Missing fields")
    cfg = _tenant(payload.client)
    if cfg is None or not cfg.sheet_id:
        return _error(400, "Invalid client (missing sheetId)")
    try:
        lead_sink.append(
            Lead(name=payload.name, email=payload.email, phone=payload.phone, message=payload.message),
            cfg.sheet_id,
        )
    except Exception:
        logger.exception("Sheet error")
        return _error(500, "Sheet error")
    return {"success": True}

# ============================================================
# Startup: load tenant configs (with logs)
# ============================================================
@app.on_event("startup")
def startup_event():
    ids = repository.tenant_ids()
    logger.info(f"=== App startup: {len(ids)} tenant config(s) in {CONFIGS_DIR} ===")
    for tid in ids:
        if repository.get_config(tid) is None:
            logger.warning(f"Tenant {tid!r} has no valid config")
    logger.info(f"LLM fallback {'enabled' if LLM_ENABLED else 'disabled'}")

# ============================================================
# Local dev entrypoint
# ============================================================
if __name__ == "__main__":
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "3001"))
    import uvicorn
    uvicorn.run("backend.app:app", host=host, port=port, reload=True)
