from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
import structlog
from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from quoteboard.config import Settings
from quoteboard.db import Store
from quoteboard.errors import InvalidInput, QuoteNotFound
from quoteboard.models.quote import Quote
from quoteboard.models.vote import Vote
from quoteboard.services.votes import count_votes

log = structlog.get_logger(__name__)


# Only these names ever reach ORDER BY.
SORT_ALIASES = {
    "id": "id",
    "content": "content",
    "author": "author",
    "created_at": "created_at",
    "createdAt": "created_at",
    "updated_at": "updated_at",
    "updatedAt": "updated_at",
    "vote_count": "vote_count",
    "voteCount": "vote_count",
}


@dataclass(frozen=True)
class QuoteView:
    id: int
    content: str
    author: str
    created_at: datetime
    updated_at: datetime
    vote_count: int


def _vote_counts():
    return (
        select(Vote.quote_id.label("quote_id"), func.count(Vote.id).label("votes"))
        .group_by(Vote.quote_id)
        .subquery("vote_counts")
    )

def _with_counts():
    counts = _vote_counts()
    vote_count = func.coalesce(counts.c.votes, 0).label("vote_count")
    q = (
        select(Quote, vote_count)
        .outerjoin(counts, counts.c.quote_id == Quote.id)
        .where(Quote.deleted_at.is_(None))
    )
    return q, vote_count

def _view(q: Quote, vote_count: int) -> QuoteView:
    return QuoteView(
        id=q.id,
        content=q.content,
        author=q.author,
        created_at=q.created_at,
        updated_at=q.updated_at,
        vote_count=int(vote_count or 0),
    )

async def _load_live(session: AsyncSession, quote_id: int) -> Quote:
    q = await session.scalar(select(Quote).where(Quote.id == quote_id, Quote.deleted_at.is_(None)))
    if q is None:
        raise QuoteNotFound(quote_id)
    return q


class QuoteCatalog:
    """CRUD and filtered listing over quotes, each enriched with its live vote count."""

    def __init__(self, store: Store, settings: Settings):
        self.store = store
        self.write_timeout = settings.write_timeout_seconds

    async def create(self, content: str, author: str) -> QuoteView:
        async with self.store.write_transaction(self.write_timeout) as session:
            q = Quote(content=content, author=author)
            session.add(q)
            await session.flush()
            await session.refresh(q)
        log.info("quote_created", quote_id=q.id)
        return _view(q, 0)

    async def get(self, quote_id: int) -> QuoteView:
        async with self.store.read_session() as session:
            q, _ = _with_counts()
            row = (await session.execute(q.where(Quote.id == quote_id))).first()
        if row is None:
            raise QuoteNotFound(quote_id)
        return _view(row[0], row[1])

    async def list_quotes(
        self,
        *,
        author: str | None = None,
        search: str | None = None,
        sort_by: str = "created_at",
        order: str = "desc",
        limit: int = 50,
        offset: int = 0,
    ) -> list[QuoteView]:
        field = SORT_ALIASES.get(sort_by)
        if field is None:
            raise InvalidInput(f"Cannot sort by '{sort_by}'")
        if order not in ("asc", "desc"):
            raise InvalidInput("order must be 'asc' or 'desc'")

        q, vote_count = _with_counts()
        if author:
            q = q.where(Quote.author == author)
        if search:
            term = search.lower()
            q = q.where(or_(
                func.lower(Quote.content).contains(term, autoescape=True),
                func.lower(Quote.author).contains(term, autoescape=True),
            ))

        col = vote_count if field == "vote_count" else getattr(Quote, field)
        q = q.order_by(col.asc() if order == "asc" else col.desc(), Quote.id.asc())
        q = q.limit(limit).offset(offset)

        async with self.store.read_session() as session:
            rows = (await session.execute(q)).all()
        return [_view(r[0], r[1]) for r in rows]

    async def update(self, quote_id: int, *, content: str | None = None, author: str | None = None) -> QuoteView:
        if content is None and author is None:
            raise InvalidInput("Nothing to update")
        async with self.store.write_transaction(self.write_timeout) as session:
            q = await _load_live(session, quote_id)
            if content is not None:
                q.content = content
            if author is not None:
                q.author = author
            q.updated_at = func.now()
            await session.flush()
            await session.refresh(q)
            votes = await count_votes(session, quote_id)
        log.info("quote_updated", quote_id=quote_id)
        return _view(q, votes)

    async def delete(self, quote_id: int) -> None:
        async with self.store.write_transaction(self.write_timeout) as session:
            q = await _load_live(session, quote_id)
            q.deleted_at = func.now()
        log.info("quote_deleted", quote_id=quote_id)
