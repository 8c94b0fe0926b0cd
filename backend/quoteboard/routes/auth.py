from __future__ import annotations
import structlog
from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from quoteboard.auth_deps import get_current_user_id, get_refresh_user_id, get_settings
from quoteboard.config import Settings
from quoteboard.db import Store, get_session, get_store
from quoteboard.errors import Unauthenticated, UsernameTaken
from quoteboard.models.user import User
from quoteboard.schemas.auth import RegisterRequest, LoginRequest, LoginResponse, UserPublic, TokenPair
from quoteboard.security import hash_password, verify_password, make_access_token, make_refresh_token

router = APIRouter(prefix="/auth", tags=["auth"])
log = structlog.get_logger(__name__)

def _public(user: User) -> UserPublic:
    return UserPublic(id=user.id, username=user.username, created_at=user.created_at)

@router.post("/register", status_code=201, response_model=UserPublic)
async def register(payload: RegisterRequest, store: Store = Depends(get_store)):
    password_hash = hash_password(payload.password)
    try:
        async with store.write_transaction() as session:
            exists = await session.scalar(select(User.id).where(User.username == payload.username))
            if exists is not None:
                raise UsernameTaken()
            user = User(username=payload.username, password_hash=password_hash)
            session.add(user)
            await session.flush()
            await session.refresh(user)
    except IntegrityError:
        # lost a race with a concurrent registration of the same name
        raise UsernameTaken()
    log.info("user_registered", user_id=user.id)
    return _public(user)

@router.post("/login", response_model=LoginResponse)
async def login(payload: LoginRequest, session: AsyncSession = Depends(get_session), cfg: Settings = Depends(get_settings)):
    user = await session.scalar(select(User).where(User.username == payload.username.lower()))
    if not user or not verify_password(payload.password, user.password_hash):
        raise Unauthenticated("Invalid credentials")
    return LoginResponse(
        access=make_access_token(user.id, cfg),
        refresh=make_refresh_token(user.id, cfg),
        user=_public(user),
    )

@router.post("/refresh", response_model=TokenPair)
async def refresh(user_id: int = Depends(get_refresh_user_id), cfg: Settings = Depends(get_settings)):
    return TokenPair(access=make_access_token(user_id, cfg), refresh=make_refresh_token(user_id, cfg))

@router.get("/me", response_model=UserPublic)
async def me(user_id: int = Depends(get_current_user_id), session: AsyncSession = Depends(get_session)):
    user = await session.get(User, user_id)
    if not user:
        raise Unauthenticated("User not found")
    return _public(user)

# unprefixed paths used by the existing web client
root_router = APIRouter(tags=["auth"])
root_router.add_api_route("/register", register, methods=["POST"], status_code=201, response_model=UserPublic)
root_router.add_api_route("/login", login, methods=["POST"], response_model=LoginResponse)
