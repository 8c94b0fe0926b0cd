from __future__ import annotations
import os
from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()

DEFAULT_CORS_ORIGINS = ",".join([
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "https://quote-frontend-zeta.vercel.app",
])

class Settings(BaseModel):
    environment: str = os.getenv("ENVIRONMENT", "dev")
    app_name: str = os.getenv("APP_NAME", "quoteboard-api")
    app_version: str = os.getenv("APP_VERSION", "0.1.0")
    git_sha: str = os.getenv("GIT_SHA", "dev")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("PORT") or os.getenv("API_PORT", "8080"))
    cors_origins: list[str] = os.getenv("CORS_ORIGINS", DEFAULT_CORS_ORIGINS).split(",")
    database_url: str = os.getenv("DATABASE_URL") or os.getenv("DATABASE_DSN") or "sqlite+aiosqlite:///./quotes.db"
    auto_create_schema: bool = os.getenv("AUTO_CREATE_SCHEMA", "1") == "1"

    # Write path: one writer at a time, bounded wait, bounded retry on transient conflicts
    write_timeout_seconds: float = float(os.getenv("WRITE_TIMEOUT_SECONDS", "5"))
    max_write_retries: int = int(os.getenv("MAX_WRITE_RETRIES", "3"))
    retry_backoff_seconds: float = float(os.getenv("RETRY_BACKOFF_SECONDS", "0.05"))
    read_pool_size: int = int(os.getenv("READ_POOL_SIZE", "5"))

    # Tokens
    jwt_secret: str = os.getenv("JWT_SECRET", "dev-secret-change-me")
    jwt_alg: str = "HS256"
    access_ttl_min: int = int(os.getenv("ACCESS_TTL_MIN", "60"))
    refresh_ttl_min: int = int(os.getenv("REFRESH_TTL_MIN", "10080"))  # 7d

settings = Settings()
