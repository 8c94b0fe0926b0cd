from __future__ import annotations
from datetime import datetime, timedelta, timezone
from typing import Any
import jwt
from passlib.context import CryptContext
from quoteboard.config import Settings
from quoteboard.errors import Unauthenticated

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

def hash_password(password: str) -> str:
    return pwd_context.hash(password)

def verify_password(password: str, password_hash: str) -> bool:
    try:
        return pwd_context.verify(password, password_hash)
    except ValueError:
        # unrecognised or malformed hash
        return False

def _make_token(sub: str, ttl_min: int, token_type: str, cfg: Settings) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": sub,
        "type": token_type,
        "iat": now.timestamp(),  # float keeps tokens minted in the same second distinct
        "exp": int((now + timedelta(minutes=ttl_min)).timestamp()),
    }
    return jwt.encode(payload, cfg.jwt_secret, algorithm=cfg.jwt_alg)

def make_access_token(user_id: int, cfg: Settings) -> str:
    return _make_token(str(user_id), cfg.access_ttl_min, "access", cfg)

def make_refresh_token(user_id: int, cfg: Settings) -> str:
    return _make_token(str(user_id), cfg.refresh_ttl_min, "refresh", cfg)

def decode_token(token: str, cfg: Settings) -> dict[str, Any]:
    return jwt.decode(token, cfg.jwt_secret, algorithms=[cfg.jwt_alg])

def resolve_user_id(token: str, cfg: Settings, expected_type: str = "access") -> int:
    """Validate a bearer token without touching the store and return its user id."""
    try:
        data = decode_token(token, cfg)
    except jwt.ExpiredSignatureError:
        raise Unauthenticated("Token expired")
    except jwt.PyJWTError:
        raise Unauthenticated("Invalid token")
    if data.get("type") != expected_type:
        raise Unauthenticated("Wrong token type")
    try:
        return int(data.get("sub"))
    except (TypeError, ValueError):
        raise Unauthenticated("Invalid token subject")
