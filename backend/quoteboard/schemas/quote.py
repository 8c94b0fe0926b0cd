from __future__ import annotations
from pydantic import BaseModel, Field
from datetime import datetime

class QuoteCreate(BaseModel):
    content: str = Field(min_length=1, max_length=1000)
    author: str = Field(min_length=1, max_length=255)

class QuoteUpdate(BaseModel):
    content: str | None = Field(default=None, min_length=1, max_length=1000)
    author: str | None = Field(default=None, min_length=1, max_length=255)

class QuotePublic(BaseModel):
    id: int
    content: str
    author: str
    created_at: datetime
    updated_at: datetime
    vote_count: int = 0
