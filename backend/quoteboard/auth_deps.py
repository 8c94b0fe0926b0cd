from __future__ import annotations
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from quoteboard.config import Settings
from quoteboard.errors import Unauthenticated
from quoteboard.security import resolve_user_id

# auto_error=False so a missing header is reported as our 401, not Starlette's 403
security = HTTPBearer(auto_error=False)

def get_settings(request: Request) -> Settings:
    return request.app.state.settings

def _bearer(credentials: HTTPAuthorizationCredentials | None) -> str:
    if credentials is None or not credentials.credentials:
        raise Unauthenticated("Missing bearer token")
    return credentials.credentials

async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    cfg: Settings = Depends(get_settings),
) -> int:
    return resolve_user_id(_bearer(credentials), cfg, "access")

async def get_refresh_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    cfg: Settings = Depends(get_settings),
) -> int:
    return resolve_user_id(_bearer(credentials), cfg, "refresh")
