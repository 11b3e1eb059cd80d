"""
Attempt submission: grade an answer, store the attempt, update mastery.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.database_models import Attempt, Question
from app.services.errors import AttemptValidationError, QuestionNotFoundError
from app.services.mastery import MasteryScheduler
from app.services.quiz_generator import grade_answer

logger = logging.getLogger(__name__)


@dataclass
class AttemptResult:
    attempt_id: int
    correct: bool
    explanation: str
    correct_answer: str
    evidence_anchor: str
    mastery_score: int
    review_interval: int
    next_review_date: datetime


def build_explanation(correct: bool, question: Question) -> str:
    if correct:
        return f"Correct! {question.evidence_anchor}"
    return f"Incorrect. The correct answer is: {question.correct_answer}. {question.evidence_anchor}"


class AttemptService:
    """submitAttempt: the attempt row is committed before the mastery update runs."""

    def __init__(self, scheduler: MasteryScheduler) -> None:
        self.scheduler = scheduler

    async def submit_attempt(
        self,
        db: AsyncSession,
        question_id: int,
        user_id: str,
        answer: str,
        time_spent: Optional[float] = None,
        session_id: Optional[str] = None,
    ) -> AttemptResult:
        """
        Raises:
            AttemptValidationError: blank answer.
            QuestionNotFoundError:  unknown question.
        """
        if answer is None or not answer.strip():
            raise AttemptValidationError("Answer must not be empty.")

        question = await db.get(Question, question_id)
        if question is None:
            raise QuestionNotFoundError(f"Question {question_id} not found.")

        correct = grade_answer(answer, question.correct_answer)
        attempt = Attempt(
            question_id=question.id,
            user_id=user_id,
            answer=answer,
            is_correct=correct,
            time_spent=time_spent,
            session_id=session_id,
        )
        db.add(attempt)
        await db.commit()

        review = await self.scheduler.record_attempt(question.node_id, user_id, correct)

        logger.info(
            "Attempt %d: user=%s question=%d correct=%s",
            attempt.id,
            user_id,
            question.id,
            correct,
        )
        return AttemptResult(
            attempt_id=attempt.id,
            correct=correct,
            explanation=build_explanation(correct, question),
            correct_answer=question.correct_answer,
            evidence_anchor=question.evidence_anchor,
            mastery_score=review.mastery_score,
            review_interval=review.review_interval,
            next_review_date=review.next_review_date,
        )
