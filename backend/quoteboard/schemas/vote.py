from __future__ import annotations
from pydantic import BaseModel, Field
from datetime import datetime

class VotePublic(BaseModel):
    id: int
    user_id: int
    quote_id: int
    created_at: datetime

class VoteCastResponse(BaseModel):
    message: str
    vote_count: int = Field(serialization_alias="voteCount")
    vote: VotePublic

class VoteRemovedResponse(BaseModel):
    message: str
    vote_count: int = Field(serialization_alias="voteCount")

class VoteCountResponse(BaseModel):
    count: int

class VoteCheckResponse(BaseModel):
    has_voted: bool
