"""
Attempt submission endpoint.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies.auth import get_current_user_id
from app.dependencies.services import get_attempt_service
from app.models.schemas import AttemptCreate, AttemptResponse
from app.services.attempts import AttemptService
from app.services.errors import AttemptValidationError, QuestionNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/", response_model=AttemptResponse, status_code=status.HTTP_201_CREATED)
async def submit_attempt(
    payload: AttemptCreate,
    user_id: str = Depends(get_current_user_id),
    service: AttemptService = Depends(get_attempt_service),
    db: AsyncSession = Depends(get_db),
) -> AttemptResponse:
    """Grade one answer and update the caller's mastery for the question's node."""
    try:
        result = await service.submit_attempt(
            db,
            question_id=payload.question_id,
            user_id=user_id,
            answer=payload.answer,
            time_spent=payload.time_spent,
            session_id=payload.session_id,
        )
    except QuestionNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    except AttemptValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))

    return AttemptResponse(
        attempt_id=result.attempt_id,
        correct=result.correct,
        explanation=result.explanation,
        correct_answer=result.correct_answer,
        evidence_anchor=result.evidence_anchor,
        mastery_score=result.mastery_score,
        review_interval=result.review_interval,
        next_review_date=result.next_review_date,
    )
