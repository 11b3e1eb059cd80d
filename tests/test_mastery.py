"""Tests for the mastery score policy and the Review upsert."""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from app.models.database_models import Document, DocumentStatus, DocumentType, Node, Review
from app.services.mastery import (
    MasteryScheduler,
    compute_mastery_update,
    review_interval_days,
)

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def node_id(session_factory) -> int:
    async with session_factory() as session:
        document = Document(
            owner_id="u1",
            title="t",
            filename="t.txt",
            file_type=DocumentType.TXT,
            content_text="text",
            status=DocumentStatus.COMPLETED,
        )
        node = Node(document=document, title="Topic", level=0)
        session.add_all([document, node])
        await session.commit()
        return node.id


# ---------------------------------------------------------------------------
# Pure policy
# ---------------------------------------------------------------------------

def test_first_correct_attempt_scores_15():
    update = compute_mastery_update(0, True, NOW)
    assert update.mastery_score == 15
    assert update.review_interval == 1
    assert update.last_reviewed == NOW
    assert update.next_review_date == NOW + timedelta(days=1)


def test_incorrect_attempt_floors_at_zero():
    update = compute_mastery_update(5, False, NOW)
    assert update.mastery_score == 0
    assert update.review_interval == 1


def test_score_caps_at_100():
    score = 0
    for _ in range(20):
        score = compute_mastery_update(score, True, NOW).mastery_score
        assert 0 <= score <= 100
    assert score == 100


def test_score_never_negative():
    score = 30
    for _ in range(10):
        score = compute_mastery_update(score, False, NOW).mastery_score
    assert score == 0


@pytest.mark.parametrize(
    "score,interval",
    [(0, 1), (19, 1), (20, 2), (39, 2), (40, 4), (60, 8), (80, 16), (99, 16), (100, 32)],
)
def test_interval_doubles_every_20_points(score, interval):
    assert review_interval_days(score) == interval


def test_interval_is_monotonic_in_score():
    intervals = [review_interval_days(s) for s in range(101)]
    assert intervals == sorted(intervals)


def test_default_now_is_timezone_aware():
    update = compute_mastery_update(0, True)
    assert update.last_reviewed.tzinfo is not None


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_first_attempt_creates_review(session_factory, node_id):
    review = await MasteryScheduler(session_factory).record_attempt(node_id, "u1", True)

    assert review.id is not None
    assert review.mastery_score == 15
    assert review.review_interval == 1


@pytest.mark.asyncio
async def test_later_attempts_update_same_review(session_factory, node_id):
    scheduler = MasteryScheduler(session_factory)
    await scheduler.record_attempt(node_id, "u1", True)
    await scheduler.record_attempt(node_id, "u1", True)
    review = await scheduler.record_attempt(node_id, "u1", False)

    assert review.mastery_score == 20
    assert review.review_interval == 2

    async with session_factory() as session:
        count = await session.scalar(select(func.count(Review.id)))
    assert count == 1


@pytest.mark.asyncio
async def test_reviews_are_per_user(session_factory, node_id):
    scheduler = MasteryScheduler(session_factory)
    await scheduler.record_attempt(node_id, "u1", True)
    await scheduler.record_attempt(node_id, "u2", False)

    async with session_factory() as session:
        first = await scheduler.get_review(session, node_id, "u1")
        second = await scheduler.get_review(session, node_id, "u2")
        missing = await scheduler.get_review(session, node_id, "u3")

    assert first.mastery_score == 15
    assert second.mastery_score == 0
    assert missing is None


@pytest.mark.asyncio
async def test_upsert_retried_once(session_factory, node_id, monkeypatch):
    scheduler = MasteryScheduler(session_factory)
    original = scheduler._upsert
    calls = []

    async def flaky(*args):
        calls.append(args)
        if len(calls) == 1:
            raise OperationalError("UPDATE reviews", {}, Exception("database is locked"))
        return await original(*args)

    monkeypatch.setattr(scheduler, "_upsert", flaky)
    review = await scheduler.record_attempt(node_id, "u1", True)

    assert len(calls) == 2
    assert review.mastery_score == 15


@pytest.mark.asyncio
async def test_upsert_failure_surfaces_after_retries(session_factory, node_id, monkeypatch):
    scheduler = MasteryScheduler(session_factory)

    async def always_fails(*args):
        raise OperationalError("UPDATE reviews", {}, Exception("database is locked"))

    monkeypatch.setattr(scheduler, "_upsert", always_fails)
    with pytest.raises(OperationalError):
        await scheduler.record_attempt(node_id, "u1", True)


@pytest.mark.asyncio
async def test_concurrent_correct_attempts_are_not_lost(session_factory, node_id):
    scheduler = MasteryScheduler(session_factory)
    await scheduler.record_attempt(node_id, "u1", True)

    results = await asyncio.gather(
        scheduler.record_attempt(node_id, "u1", True),
        scheduler.record_attempt(node_id, "u1", True),
    )

    assert sorted(r.mastery_score for r in results) == [30, 45]
    async with session_factory() as session:
        review = await scheduler.get_review(session, node_id, "u1")
    assert review.mastery_score == 45
    assert review.review_interval == 4


@pytest.mark.asyncio
async def test_concurrent_first_attempts_create_one_review(session_factory, node_id):
    scheduler = MasteryScheduler(session_factory)

    await asyncio.gather(*(scheduler.record_attempt(node_id, "u1", True) for _ in range(3)))

    async with session_factory() as session:
        reviews = (await session.execute(select(Review))).scalars().all()
    assert len(reviews) == 1
    assert reviews[0].mastery_score == 45


@pytest.mark.asyncio
async def test_write_from_stale_read_is_rejected(session_factory, node_id):
    await MasteryScheduler(session_factory).record_attempt(node_id, "u1", True)

    async with session_factory() as stale, session_factory() as fresh:
        stale_review = await stale.scalar(select(Review))
        fresh_review = await fresh.scalar(select(Review))

        fresh_review.mastery_score = 30
        await fresh.commit()

        stale_review.mastery_score = 30
        with pytest.raises(StaleDataError):
            await stale.commit()


@pytest.mark.asyncio
async def test_due_reviews(session_factory, node_id):
    async with session_factory() as session:
        session.add(Review(
            node_id=node_id,
            user_id="u1",
            mastery_score=40,
            review_interval=4,
            last_reviewed=NOW - timedelta(days=5),
            next_review_date=NOW - timedelta(days=1),
        ))
        session.add(Review(
            node_id=node_id,
            user_id="u2",
            mastery_score=40,
            review_interval=4,
            last_reviewed=NOW,
            next_review_date=NOW + timedelta(days=4),
        ))
        await session.commit()

    scheduler = MasteryScheduler(session_factory)
    async with session_factory() as session:
        due_u1 = await scheduler.due_reviews(session, "u1", now=NOW)
        due_u2 = await scheduler.due_reviews(session, "u2", now=NOW)

    assert [r.user_id for r in due_u1] == ["u1"]
    assert due_u2 == []
