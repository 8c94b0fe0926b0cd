from __future__ import annotations
from fastapi import APIRouter, Depends, Request
from datetime import datetime, timezone
from quoteboard.auth_deps import get_settings
from quoteboard.config import Settings

router = APIRouter(tags=["system"])

@router.get("/health")
async def health(request: Request, cfg: Settings = Depends(get_settings)):
    return {
        "status": "ok",
        "env": cfg.environment,
        "time": datetime.now(timezone.utc).isoformat(),
        "request_id": request.headers.get("x-request-id") or getattr(request.state, "request_id", None),
    }

@router.get("/version")
async def version(cfg: Settings = Depends(get_settings)):
    return {
        "name": cfg.app_name,
        "version": cfg.app_version,
        "git_sha": cfg.git_sha,
    }
