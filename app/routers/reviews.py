"""
Spaced-repetition review endpoints.

GET /due             — the caller's reviews that are due now, soonest first.
GET /node/{node_id}  — the caller's mastery record for one node.
"""
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies.auth import get_current_user_id
from app.dependencies.services import get_mastery_scheduler
from app.models.schemas import ReviewResponse
from app.services.mastery import MasteryScheduler

router = APIRouter()


@router.get("/due", response_model=List[ReviewResponse])
async def get_due_reviews(
    user_id: str = Depends(get_current_user_id),
    scheduler: MasteryScheduler = Depends(get_mastery_scheduler),
    db: AsyncSession = Depends(get_db),
) -> List[ReviewResponse]:
    reviews = await scheduler.due_reviews(db, user_id)
    return [ReviewResponse.model_validate(r) for r in reviews]


@router.get("/node/{node_id}", response_model=ReviewResponse)
async def get_node_review(
    node_id: int,
    user_id: str = Depends(get_current_user_id),
    scheduler: MasteryScheduler = Depends(get_mastery_scheduler),
    db: AsyncSession = Depends(get_db),
) -> ReviewResponse:
    review = await scheduler.get_review(db, node_id, user_id)
    if review is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No review for node {node_id}.",
        )
    return ReviewResponse.model_validate(review)
