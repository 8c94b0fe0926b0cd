import asyncio
from contextlib import asynccontextmanager

import pytest
from sqlalchemy import func, select

from quoteboard.db import Store
from quoteboard.errors import (
    AlreadyVoted,
    QuoteNotFound,
    StoreTimeout,
    TransientStoreError,
    Unauthenticated,
    VoteNotFound,
    VotingClosedForQuote,
)
from quoteboard.models.quote import Quote
from quoteboard.models.user import User
from quoteboard.models.vote import Vote
from quoteboard.services import votes as votes_service
from quoteboard.services.votes import VoteLedger


async def _total_votes(store: Store) -> int:
    async with store.read_session() as session:
        return int(await session.scalar(select(func.count()).select_from(Vote)))


@pytest.fixture
def ledger(store, settings):
    return VoteLedger(store, settings)


@pytest.mark.asyncio
async def test_cast_vote_returns_vote_and_count(ledger, make_user, make_quote):
    user = await make_user("alice")
    quote = await make_quote()

    record = await ledger.cast_vote(user.id, quote.id)

    assert record.vote_count == 1
    assert record.vote.user_id == user.id
    assert record.vote.quote_id == quote.id
    assert record.vote.id is not None
    assert record.vote.created_at is not None
    assert await ledger.vote_count(quote.id) == 1
    assert await ledger.has_voted(user.id, quote.id) is True


@pytest.mark.asyncio
async def test_user_cannot_hold_two_votes(ledger, make_user, make_quote):
    user = await make_user("alice")
    q1 = await make_quote("first")
    q2 = await make_quote("second")

    await ledger.cast_vote(user.id, q1.id)
    with pytest.raises(AlreadyVoted):
        await ledger.cast_vote(user.id, q2.id)

    assert await ledger.vote_count(q2.id) == 0
    assert await _total_votes(ledger.store) == 1


@pytest.mark.asyncio
async def test_quote_with_a_vote_is_closed(ledger, make_user, make_quote):
    u1 = await make_user("alice")
    u2 = await make_user("bob")
    quote = await make_quote()

    await ledger.cast_vote(u1.id, quote.id)
    with pytest.raises(VotingClosedForQuote):
        await ledger.cast_vote(u2.id, quote.id)

    assert await ledger.vote_count(quote.id) == 1
    assert await ledger.has_voted(u2.id, quote.id) is False


@pytest.mark.asyncio
async def test_missing_quote_creates_nothing(ledger, make_user):
    user = await make_user("alice")

    with pytest.raises(QuoteNotFound):
        await ledger.cast_vote(user.id, 9999)

    assert await _total_votes(ledger.store) == 0


@pytest.mark.asyncio
async def test_deleted_quote_is_not_votable(ledger, store, make_user, make_quote):
    user = await make_user("alice")
    quote = await make_quote()
    async with store.write_transaction() as session:
        q = await session.get(Quote, quote.id)
        q.deleted_at = func.now()

    with pytest.raises(QuoteNotFound):
        await ledger.cast_vote(user.id, quote.id)
    with pytest.raises(QuoteNotFound):
        await ledger.vote_count(quote.id)
    with pytest.raises(QuoteNotFound):
        await ledger.has_voted(user.id, quote.id)


@pytest.mark.asyncio
async def test_missing_quote_reported_before_existing_vote(ledger, make_user, make_quote):
    user = await make_user("alice")
    quote = await make_quote()
    await ledger.cast_vote(user.id, quote.id)

    with pytest.raises(QuoteNotFound):
        await ledger.cast_vote(user.id, 4242)


@pytest.mark.asyncio
async def test_existing_vote_reported_before_closed_quote(ledger, make_user, make_quote):
    u1 = await make_user("alice")
    u2 = await make_user("bob")
    q1 = await make_quote("first")
    q2 = await make_quote("second")
    await ledger.cast_vote(u1.id, q1.id)
    await ledger.cast_vote(u2.id, q2.id)

    # u1 already holds a vote and q2 is closed; the user's own vote wins
    with pytest.raises(AlreadyVoted):
        await ledger.cast_vote(u1.id, q2.id)


@pytest.mark.asyncio
async def test_revoke_then_revoke_again(ledger, make_user, make_quote):
    user = await make_user("alice")
    quote = await make_quote()
    await ledger.cast_vote(user.id, quote.id)

    assert await ledger.revoke_vote(user.id, quote.id) == 0
    with pytest.raises(VoteNotFound):
        await ledger.revoke_vote(user.id, quote.id)

    assert await ledger.vote_count(quote.id) == 0
    assert await ledger.has_voted(user.id, quote.id) is False
    assert await _total_votes(ledger.store) == 0


@pytest.mark.asyncio
async def test_revoke_wrong_quote_leaves_vote(ledger, make_user, make_quote):
    user = await make_user("alice")
    q1 = await make_quote("first")
    q2 = await make_quote("second")
    await ledger.cast_vote(user.id, q1.id)

    with pytest.raises(VoteNotFound):
        await ledger.revoke_vote(user.id, q2.id)

    assert await ledger.vote_count(q1.id) == 1


@pytest.mark.asyncio
async def test_revoked_quote_reopens_for_another_user(ledger, make_user, make_quote):
    u1 = await make_user("alice")
    u2 = await make_user("bob")
    quote = await make_quote()

    await ledger.cast_vote(u1.id, quote.id)
    await ledger.revoke_vote(u1.id, quote.id)
    record = await ledger.cast_vote(u2.id, quote.id)

    assert record.vote_count == 1
    assert await ledger.has_voted(u2.id, quote.id) is True


@pytest.mark.asyncio
async def test_concurrent_votes_from_one_user(ledger, make_user, make_quote):
    user = await make_user("alice")
    quotes = [await make_quote(f"quote {i}") for i in range(8)]

    results = await asyncio.gather(
        *(ledger.cast_vote(user.id, q.id) for q in quotes), return_exceptions=True
    )

    wins = [r for r in results if not isinstance(r, Exception)]
    losses = [r for r in results if isinstance(r, Exception)]
    assert len(wins) == 1
    assert all(isinstance(e, AlreadyVoted) for e in losses)
    assert await _total_votes(ledger.store) == 1


@pytest.mark.asyncio
async def test_concurrent_votes_on_one_quote(ledger, make_user, make_quote):
    users = [await make_user(f"user{i}") for i in range(8)]
    quote = await make_quote()

    results = await asyncio.gather(
        *(ledger.cast_vote(u.id, quote.id) for u in users), return_exceptions=True
    )

    wins = [r for r in results if not isinstance(r, Exception)]
    losses = [r for r in results if isinstance(r, Exception)]
    assert len(wins) == 1
    assert wins[0].vote_count == 1
    assert all(isinstance(e, VotingClosedForQuote) for e in losses)
    assert await ledger.vote_count(quote.id) == 1


@pytest.mark.asyncio
async def test_two_store_handles_still_admit_one_vote(settings, store, make_user, make_quote):
    users = [await make_user(f"user{i}") for i in range(6)]
    quote = await make_quote()
    other = Store(settings)
    try:
        ledgers = [VoteLedger(store, settings), VoteLedger(other, settings)]
        results = await asyncio.gather(
            *(ledgers[i % 2].cast_vote(u.id, quote.id) for i, u in enumerate(users)),
            return_exceptions=True,
        )
    finally:
        await other.dispose()

    wins = [r for r in results if not isinstance(r, Exception)]
    assert len(wins) == 1
    assert all(isinstance(r, VotingClosedForQuote) for r in results if isinstance(r, Exception))
    assert await _total_votes(store) == 1


@pytest.mark.asyncio
async def test_counts_stay_zero_or_one(ledger, make_user, make_quote):
    users = [await make_user(f"user{i}") for i in range(4)]
    quotes = [await make_quote(f"quote {i}") for i in range(3)]

    await asyncio.gather(
        *(ledger.cast_vote(u.id, q.id) for u in users for q in quotes), return_exceptions=True
    )

    counts = [await ledger.vote_count(q.id) for q in quotes]
    assert all(c in (0, 1) for c in counts)
    assert sum(counts) == await _total_votes(ledger.store)
    async with ledger.store.read_session() as session:
        holders = (await session.execute(select(Vote.user_id))).scalars().all()
    assert len(holders) == len(set(holders))


@pytest.mark.asyncio
async def test_transient_failure_is_retried(ledger, store, monkeypatch, make_user, make_quote):
    user = await make_user("alice")
    quote = await make_quote()
    real = store.write_transaction
    attempts = {"n": 0}

    @asynccontextmanager
    async def flaky(timeout=None):
        attempts["n"] += 1
        if attempts["n"] == 1:
            raise TransientStoreError("database is locked")
        async with real(timeout=timeout) as session:
            yield session

    monkeypatch.setattr(store, "write_transaction", flaky)
    record = await ledger.cast_vote(user.id, quote.id)

    assert record.vote_count == 1
    assert attempts["n"] == 2


@pytest.mark.asyncio
async def test_transient_failure_surfaces_after_retries(ledger, store, monkeypatch, make_user, make_quote):
    user = await make_user("alice")
    quote = await make_quote()
    attempts = {"n": 0}

    @asynccontextmanager
    async def always_locked(timeout=None):
        attempts["n"] += 1
        raise TransientStoreError("database is locked")
        yield  # pragma: no cover

    monkeypatch.setattr(store, "write_transaction", always_locked)
    with pytest.raises(TransientStoreError):
        await ledger.cast_vote(user.id, quote.id)

    assert attempts["n"] == ledger.max_attempts
    monkeypatch.undo()
    assert await ledger.vote_count(quote.id) == 0


@pytest.mark.asyncio
async def test_business_rejections_are_not_retried(ledger, store, monkeypatch, make_user, make_quote):
    user = await make_user("alice")
    q1 = await make_quote("first")
    q2 = await make_quote("second")
    await ledger.cast_vote(user.id, q1.id)
    real = store.write_transaction
    attempts = {"n": 0}

    @asynccontextmanager
    async def counting(timeout=None):
        attempts["n"] += 1
        async with real(timeout=timeout) as session:
            yield session

    monkeypatch.setattr(store, "write_transaction", counting)
    with pytest.raises(AlreadyVoted):
        await ledger.cast_vote(user.id, q2.id)
    assert attempts["n"] == 1


@pytest.mark.asyncio
async def test_write_path_timeout_persists_nothing(ledger, store, make_user, make_quote):
    user = await make_user("alice")
    quote = await make_quote()

    async with store.write_transaction():
        with pytest.raises(StoreTimeout):
            await ledger.cast_vote(user.id, quote.id, timeout=0.05)

    assert await ledger.vote_count(quote.id) == 0
    assert await ledger.has_voted(user.id, quote.id) is False


@pytest.mark.asyncio
async def test_unique_index_backs_up_user_check(ledger, monkeypatch, make_user, make_quote):
    user = await make_user("alice")
    q1 = await make_quote("first")
    q2 = await make_quote("second")
    await ledger.cast_vote(user.id, q1.id)

    async def never_holds(session, user_id):
        return False

    monkeypatch.setattr(votes_service, "user_holds_vote", never_holds)
    with pytest.raises(AlreadyVoted):
        await ledger.cast_vote(user.id, q2.id)

    assert await ledger.vote_count(q2.id) == 0
    assert await _total_votes(ledger.store) == 1


@pytest.mark.asyncio
async def test_vote_for_unknown_user_is_unauthenticated(ledger, make_quote):
    quote = await make_quote()

    with pytest.raises(Unauthenticated):
        await ledger.cast_vote(4242, quote.id)

    assert await _total_votes(ledger.store) == 0


@pytest.mark.asyncio
async def test_caller_timeout_bounds_wait_on_other_writer(settings, store, make_user, make_quote):
    user = await make_user("alice")
    quote = await make_quote()
    ledger = VoteLedger(store, settings)
    other = Store(settings)
    loop = asyncio.get_running_loop()
    try:
        async with other.write_transaction() as session:
            # opening the connection takes the database write lock
            await session.connection()
            started = loop.time()
            with pytest.raises(TransientStoreError):
                await ledger.cast_vote(user.id, quote.id, timeout=0.2)
            elapsed = loop.time() - started
    finally:
        await other.dispose()

    assert settings.write_timeout_seconds >= 5
    assert elapsed < 1.5
    assert await ledger.vote_count(quote.id) == 0


@pytest.mark.asyncio
async def test_in_memory_read_waits_for_open_write(settings):
    mem = Store(settings.model_copy(update={"database_url": "sqlite+aiosqlite://"}))
    await mem.create_all()
    ledger = VoteLedger(mem, settings)
    try:
        async with mem.write_transaction() as session:
            user = User(username="alice", password_hash="hashed")
            quote = Quote(content="Know thyself.", author="Socrates")
            session.add_all([user, quote])
            await session.flush()
            session.add(Vote(user_id=user.id, quote_id=quote.id))
            await session.flush()

            pending = asyncio.create_task(ledger.vote_count(quote.id))
            await asyncio.sleep(0.05)
            assert not pending.done()

        assert await pending == 1
        assert await ledger.has_voted(user.id, quote.id) is True
    finally:
        await mem.dispose()
