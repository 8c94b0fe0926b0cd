"""
Vote ledger.

Enforces the voting rule: a user holds at most one vote across the whole
system, and a vote may only land on a quote that currently has none. Every
mutation runs as a single transaction on the store's write path, so two
concurrent casts can never both pass the checks; the unique index on
votes.user_id backs that up at the storage level.

Business rejections (QuoteNotFound, AlreadyVoted, VotingClosedForQuote,
VoteNotFound) are permanent and returned as-is. Only TransientStoreError
triggers a retry of the whole operation.

Together the rules cap every quote at one vote and every user at one vote.
This is stricter than a plain "one vote per quote per user" rule and is kept
as-is.
"""
from __future__ import annotations
import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar
import structlog
from sqlalchemy import select, func, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from quoteboard.config import Settings
from quoteboard.db import Store
from quoteboard.errors import (
    AlreadyVoted,
    QuoteNotFound,
    QuoteboardError,
    StoreTimeout,
    TransientStoreError,
    Unauthenticated,
    VoteNotFound,
    VotingClosedForQuote,
)
from quoteboard.models.quote import Quote
from quoteboard.models.vote import Vote

log = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class VoteRecord:
    vote: Vote
    vote_count: int


# ---------- queries shared by the read and write paths ----------

async def quote_exists(session: AsyncSession, quote_id: int) -> bool:
    found = await session.scalar(
        select(Quote.id).where(Quote.id == quote_id, Quote.deleted_at.is_(None))
    )
    return found is not None

async def count_votes(session: AsyncSession, quote_id: int) -> int:
    total = await session.scalar(
        select(func.count()).select_from(Vote).where(Vote.quote_id == quote_id)
    )
    return int(total or 0)

async def user_holds_vote(session: AsyncSession, user_id: int) -> bool:
    held = await session.scalar(select(Vote.id).where(Vote.user_id == user_id).limit(1))
    return held is not None


def _insert_conflict(exc: IntegrityError, user_id: int, quote_id: int) -> QuoteboardError:
    """Translate a constraint violation on insert into the rule it protects."""
    text = str(exc.orig).lower()
    if "foreign key" in text:
        # the quote was verified inside this transaction, so the user row is gone
        return Unauthenticated("User not found")
    if "user_id" in text or "uq_votes_user_id" in text:
        return AlreadyVoted(user_id)
    return VotingClosedForQuote(quote_id)


class VoteLedger:
    def __init__(self, store: Store, settings: Settings):
        self.store = store
        self.max_attempts = max(1, settings.max_write_retries + 1)
        self.backoff_seconds = settings.retry_backoff_seconds
        self.default_timeout = settings.write_timeout_seconds

    # ---------- mutations ----------

    async def cast_vote(self, user_id: int, quote_id: int, *, timeout: float | None = None) -> VoteRecord:
        """
        Record ``user_id``'s vote on ``quote_id`` and return it with the new count.

        Checks run in a fixed order inside one transaction:
          1. quote exists and is not deleted   -> QuoteNotFound
          2. user holds no vote anywhere       -> AlreadyVoted
          3. quote currently has zero votes    -> VotingClosedForQuote
        """
        async def op(session: AsyncSession) -> VoteRecord:
            if not await quote_exists(session, quote_id):
                raise QuoteNotFound(quote_id)
            if await user_holds_vote(session, user_id):
                raise AlreadyVoted(user_id)
            if await count_votes(session, quote_id) != 0:
                raise VotingClosedForQuote(quote_id)

            vote = Vote(user_id=user_id, quote_id=quote_id)
            session.add(vote)
            try:
                await session.flush()
            except IntegrityError as exc:
                raise _insert_conflict(exc, user_id, quote_id) from exc
            await session.refresh(vote)
            return VoteRecord(vote=vote, vote_count=await count_votes(session, quote_id))

        try:
            record = await self._write("cast_vote", op, timeout)
        except (QuoteNotFound, AlreadyVoted, VotingClosedForQuote, Unauthenticated) as exc:
            log.info("vote_rejected", user_id=user_id, quote_id=quote_id, kind=exc.kind)
            raise
        log.info("vote_cast", user_id=user_id, quote_id=quote_id, vote_id=record.vote.id, vote_count=record.vote_count)
        return record

    async def revoke_vote(self, user_id: int, quote_id: int, *, timeout: float | None = None) -> int:
        """Remove ``user_id``'s vote on ``quote_id``; returns the quote's remaining vote count."""
        async def op(session: AsyncSession) -> int:
            result = await session.execute(
                delete(Vote).where(Vote.user_id == user_id, Vote.quote_id == quote_id)
            )
            if result.rowcount == 0:
                raise VoteNotFound(user_id, quote_id)
            return await count_votes(session, quote_id)

        try:
            remaining = await self._write("revoke_vote", op, timeout)
        except VoteNotFound as exc:
            log.info("vote_revoke_rejected", user_id=user_id, quote_id=quote_id, kind=exc.kind)
            raise
        log.info("vote_revoked", user_id=user_id, quote_id=quote_id, vote_count=remaining)
        return remaining

    # ---------- reads ----------

    async def vote_count(self, quote_id: int) -> int:
        async with self.store.read_session() as session:
            if not await quote_exists(session, quote_id):
                raise QuoteNotFound(quote_id)
            return await count_votes(session, quote_id)

    async def has_voted(self, user_id: int, quote_id: int) -> bool:
        async with self.store.read_session() as session:
            if not await quote_exists(session, quote_id):
                raise QuoteNotFound(quote_id)
            found = await session.scalar(
                select(Vote.id).where(Vote.user_id == user_id, Vote.quote_id == quote_id)
            )
            return found is not None

    # ---------- write path with bounded retry ----------

    async def _write(self, op_name: str, op: Callable[[AsyncSession], Awaitable[T]], timeout: float | None) -> T:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + (self.default_timeout if timeout is None else timeout)
        attempt = 0
        while True:
            attempt += 1
            try:
                async with self.store.write_transaction(timeout=deadline - loop.time()) as session:
                    return await op(session)
            except StoreTimeout:
                log.warning("write_path_timeout", op=op_name, attempt=attempt)
                raise
            except TransientStoreError as exc:
                if attempt >= self.max_attempts:
                    log.error("write_retries_exhausted", op=op_name, attempts=attempt, error=exc.message)
                    raise
                pause = self.backoff_seconds * attempt
                if loop.time() + pause >= deadline:
                    log.warning("write_path_timeout", op=op_name, attempt=attempt, error=exc.message)
                    raise StoreTimeout() from exc
                log.warning("write_retry", op=op_name, attempt=attempt, error=exc.message)
                await asyncio.sleep(pause)
