from __future__ import annotations
from pydantic import BaseModel, Field, field_validator
from datetime import datetime

class RegisterRequest(BaseModel):
    username: str = Field(min_length=3, max_length=32, pattern=r"^[A-Za-z0-9_.-]+$")
    password: str = Field(min_length=8, max_length=128)

    @field_validator("username")
    @classmethod
    def normalize_username(cls, v: str) -> str:
        return v.lower()

class LoginRequest(BaseModel):
    username: str
    password: str

class UserPublic(BaseModel):
    id: int
    username: str
    created_at: datetime

class TokenPair(BaseModel):
    access: str
    refresh: str

class LoginResponse(TokenPair):
    user: UserPublic
