from __future__ import annotations
from fastapi import APIRouter, Depends
from quoteboard.auth_deps import get_current_user_id, get_settings
from quoteboard.config import Settings
from quoteboard.db import Store, get_store
from quoteboard.routes.quotes import QuoteId
from quoteboard.schemas.error import ErrorBody
from quoteboard.schemas.vote import (
    VoteCastResponse,
    VoteCheckResponse,
    VoteCountResponse,
    VotePublic,
    VoteRemovedResponse,
)
from quoteboard.services.votes import VoteLedger

router = APIRouter(prefix="/quotes", tags=["votes"])

def get_vote_ledger(store: Store = Depends(get_store), cfg: Settings = Depends(get_settings)) -> VoteLedger:
    return VoteLedger(store, cfg)

_errors = {code: {"model": ErrorBody} for code in (400, 401, 404, 409, 500)}

# Auth is resolved before the ledger is touched, so anonymous calls never reach the store.
@router.post("/{quote_id}/vote", status_code=201, response_model=VoteCastResponse, responses=_errors)
async def cast_vote(
    quote_id: QuoteId,
    user_id: int = Depends(get_current_user_id),
    ledger: VoteLedger = Depends(get_vote_ledger),
):
    record = await ledger.cast_vote(user_id, quote_id)
    v = record.vote
    return VoteCastResponse(
        message="Vote recorded successfully",
        vote_count=record.vote_count,
        vote=VotePublic(id=v.id, user_id=v.user_id, quote_id=v.quote_id, created_at=v.created_at),
    )

@router.delete("/{quote_id}/vote", response_model=VoteRemovedResponse, responses=_errors)
async def revoke_vote(
    quote_id: QuoteId,
    user_id: int = Depends(get_current_user_id),
    ledger: VoteLedger = Depends(get_vote_ledger),
):
    remaining = await ledger.revoke_vote(user_id, quote_id)
    return VoteRemovedResponse(message="Vote removed successfully", vote_count=remaining)

@router.get("/{quote_id}/vote/count", response_model=VoteCountResponse, responses=_errors)
async def vote_count(quote_id: QuoteId, ledger: VoteLedger = Depends(get_vote_ledger)):
    return VoteCountResponse(count=await ledger.vote_count(quote_id))

@router.get("/{quote_id}/vote/check", response_model=VoteCheckResponse, responses=_errors)
async def check_vote(
    quote_id: QuoteId,
    user_id: int = Depends(get_current_user_id),
    ledger: VoteLedger = Depends(get_vote_ledger),
):
    return VoteCheckResponse(has_voted=await ledger.has_voted(user_id, quote_id))
