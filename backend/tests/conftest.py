import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient

from quoteboard.config import Settings
from quoteboard.db import Store
from quoteboard.main import create_app
from quoteboard.models.quote import Quote
from quoteboard.models.user import User
from quoteboard.security import make_access_token


@pytest.fixture
def settings(tmp_path):
    return Settings(
        environment="test",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'quotes.db'}",
        jwt_secret="test-secret",
        write_timeout_seconds=5.0,
        max_write_retries=3,
        retry_backoff_seconds=0.0,
    )


@pytest_asyncio.fixture
async def store(settings):
    s = Store(settings)
    await s.create_all()
    try:
        yield s
    finally:
        await s.dispose()


@pytest_asyncio.fixture
async def client(settings, store):
    app = create_app(settings, store=store)
    async with AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def make_user(store):
    """Insert a user directly; the hash is a placeholder since these users never log in."""
    async def _make(username: str) -> User:
        async with store.write_transaction() as session:
            user = User(username=username, password_hash="hashed")
            session.add(user)
            await session.flush()
            await session.refresh(user)
        return user
    return _make


@pytest.fixture
def make_quote(store):
    async def _make(content: str = "Stay hungry, stay foolish.", author: str = "Steve Jobs") -> Quote:
        async with store.write_transaction() as session:
            quote = Quote(content=content, author=author)
            session.add(quote)
            await session.flush()
            await session.refresh(quote)
        return quote
    return _make


@pytest.fixture
def auth_headers(settings):
    def _headers(user: User) -> dict:
        return {"Authorization": f"Bearer {make_access_token(user.id, settings)}"}
    return _headers
