"""
Mastery scheduler: bounded mastery score and next review date per (node, user).

Policy (a coarse spaced-repetition curve, not SM-2):

    score'    = clamp(score + 15 if correct else score - 10, 0, 100)
    interval' = max(1, 2 ** (score' // 20))   # days: 1, 2, 4, 8, 16, 32
    next      = now + interval'

A missing Review counts as score 0.  Each update is a read-modify-write on a
single row done in its own transaction.  The row is versioned, so an UPDATE
based on a stale read matches nothing and the whole read-modify-write is
retried; this holds on backends that ignore SELECT ... FOR UPDATE (SQLite).
Concurrent first attempts collide on UNIQUE(node_id, user_id) and are
retried the same way.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from app.models.database_models import Review

logger = logging.getLogger(__name__)

MIN_SCORE = 0
MAX_SCORE = 100
CORRECT_DELTA = 15
INCORRECT_DELTA = -10
DOUBLING_STEP = 20
MIN_INTERVAL_DAYS = 1
UPSERT_ATTEMPTS = 5
RETRY_BACKOFF_SECONDS = 0.01


@dataclass
class MasteryUpdate:
    """Result of applying one attempt to a mastery score."""

    mastery_score: int
    review_interval: int
    last_reviewed: datetime
    next_review_date: datetime


def clamp_score(score: int) -> int:
    return max(MIN_SCORE, min(MAX_SCORE, score))


def review_interval_days(score: int) -> int:
    """Interval doubles for every 20 points of mastery, with a 1-day floor."""
    return max(MIN_INTERVAL_DAYS, 2 ** (clamp_score(score) // DOUBLING_STEP))


def compute_mastery_update(
    old_score: int,
    correct: bool,
    now: Optional[datetime] = None,
) -> MasteryUpdate:
    """
    Apply one attempt to *old_score*.

    Args:
        old_score: Current score (0 when the user has no Review yet)
        correct:   Whether the attempt was graded correct
        now:       Reference time, defaults to the current UTC time

    Returns:
        MasteryUpdate with the new score, interval and dates
    """
    now = now or datetime.now(timezone.utc)
    delta = CORRECT_DELTA if correct else INCORRECT_DELTA
    score = clamp_score(old_score + delta)
    interval = review_interval_days(score)
    return MasteryUpdate(
        mastery_score=score,
        review_interval=interval,
        last_reviewed=now,
        next_review_date=now + timedelta(days=interval),
    )


class MasteryScheduler:
    """Persists mastery updates; owns its own sessions and transactions."""

    def __init__(self, session_factory: async_sessionmaker) -> None:
        self.session_factory = session_factory

    async def record_attempt(self, node_id: int, user_id: str, correct: bool) -> Review:
        """
        Upsert the Review for (node_id, user_id) after one graded attempt.

        Retried on StaleDataError (another writer bumped the row version
        first), IntegrityError (two first attempts racing on the unique
        constraint) or OperationalError (lock timeout or deadlock).
        """
        last_exc: Optional[Exception] = None
        for attempt in range(1, UPSERT_ATTEMPTS + 1):
            try:
                return await self._upsert(node_id, user_id, correct)
            except (StaleDataError, IntegrityError, OperationalError) as exc:
                last_exc = exc
                logger.warning(
                    "Review upsert for node %d user %s failed (attempt %d/%d): %s",
                    node_id,
                    user_id,
                    attempt,
                    UPSERT_ATTEMPTS,
                    exc,
                )
                await asyncio.sleep(RETRY_BACKOFF_SECONDS * attempt)
        raise last_exc

    async def _upsert(self, node_id: int, user_id: str, correct: bool) -> Review:
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    select(Review)
                    .where(Review.node_id == node_id, Review.user_id == user_id)
                    .with_for_update()
                )
                review = result.scalar_one_or_none()

                old_score = review.mastery_score if review is not None else MIN_SCORE
                update = compute_mastery_update(old_score, correct)

                if review is None:
                    review = Review(node_id=node_id, user_id=user_id)
                    session.add(review)

                review.mastery_score = update.mastery_score
                review.review_interval = update.review_interval
                review.last_reviewed = update.last_reviewed
                review.next_review_date = update.next_review_date

            await session.refresh(review)

        logger.info(
            "Review node=%d user=%s: %d -> %d, next in %d day(s)",
            node_id,
            user_id,
            old_score,
            update.mastery_score,
            update.review_interval,
        )
        return review

    async def get_review(self, db: AsyncSession, node_id: int, user_id: str) -> Optional[Review]:
        result = await db.execute(
            select(Review).where(Review.node_id == node_id, Review.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def due_reviews(
        self,
        db: AsyncSession,
        user_id: str,
        now: Optional[datetime] = None,
    ) -> List[Review]:
        """Reviews whose next_review_date is at or before *now*, soonest first."""
        now = now or datetime.now(timezone.utc)
        result = await db.execute(
            select(Review)
            .where(Review.user_id == user_id, Review.next_review_date <= now)
            .order_by(Review.next_review_date)
        )
        return list(result.scalars().all())
