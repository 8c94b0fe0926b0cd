from __future__ import annotations
from typing import Annotated
from fastapi import APIRouter, Depends, Path, Query
from quoteboard.auth_deps import get_current_user_id, get_settings
from quoteboard.config import Settings
from quoteboard.db import Store, get_store
from quoteboard.schemas.quote import QuoteCreate, QuotePublic, QuoteUpdate
from quoteboard.services.quotes import QuoteCatalog, QuoteView

router = APIRouter(prefix="/quotes", tags=["quotes"])

MAX_QUOTE_ID = 2**32 - 1
QuoteId = Annotated[int, Path(ge=1, le=MAX_QUOTE_ID, description="Quote id")]

def get_quote_catalog(store: Store = Depends(get_store), cfg: Settings = Depends(get_settings)) -> QuoteCatalog:
    return QuoteCatalog(store, cfg)

def _pub(v: QuoteView) -> QuotePublic:
    return QuotePublic(
        id=v.id,
        content=v.content,
        author=v.author,
        created_at=v.created_at,
        updated_at=v.updated_at,
        vote_count=v.vote_count,
    )

@router.post("", status_code=201, response_model=QuotePublic)
async def create_quote(
    payload: QuoteCreate,
    user_id: int = Depends(get_current_user_id),
    catalog: QuoteCatalog = Depends(get_quote_catalog),
):
    return _pub(await catalog.create(payload.content, payload.author))

@router.get("", response_model=list[QuotePublic])
async def list_quotes(
    user_id: int = Depends(get_current_user_id),
    catalog: QuoteCatalog = Depends(get_quote_catalog),
    author: str | None = Query(default=None, description="Exact author match"),
    search: str | None = Query(default=None, description="Case-insensitive match on content or author"),
    sort_by: str = Query(default="created_at", alias="sortBy"),
    order: str = Query(default="desc"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
):
    rows = await catalog.list_quotes(
        author=author, search=search, sort_by=sort_by, order=order.lower(), limit=limit, offset=offset,
    )
    return [_pub(v) for v in rows]

@router.get("/{quote_id}", response_model=QuotePublic)
async def get_quote(
    quote_id: QuoteId,
    user_id: int = Depends(get_current_user_id),
    catalog: QuoteCatalog = Depends(get_quote_catalog),
):
    return _pub(await catalog.get(quote_id))

@router.put("/{quote_id}", response_model=QuotePublic)
async def update_quote(
    quote_id: QuoteId,
    payload: QuoteUpdate,
    user_id: int = Depends(get_current_user_id),
    catalog: QuoteCatalog = Depends(get_quote_catalog),
):
    return _pub(await catalog.update(quote_id, content=payload.content, author=payload.author))

@router.delete("/{quote_id}")
async def delete_quote(
    quote_id: QuoteId,
    user_id: int = Depends(get_current_user_id),
    catalog: QuoteCatalog = Depends(get_quote_catalog),
):
    await catalog.delete(quote_id)
    return {"message": "Quote deleted successfully"}
