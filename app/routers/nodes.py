"""
Node question endpoints.

GET  /{id}/questions           — stored questions for one node.
POST /{id}/questions/generate  — run the assessment generator again for one node.
"""
from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies.auth import get_current_user_id
from app.dependencies.services import get_assessment_generator
from app.models.database_models import Document, DocumentStatus, Node
from app.models.schemas import QuestionGenerationResponse, QuestionResponse
from app.services.quiz_generator import AssessmentGenerator

logger = logging.getLogger(__name__)

router = APIRouter()


async def _get_owned_node(db: AsyncSession, node_id: int, user_id: str) -> tuple:
    result = await db.execute(
        select(Node, Document.status)
        .join(Document, Node.document_id == Document.id)
        .where(Node.id == node_id, Document.owner_id == user_id)
    )
    row = result.first()
    if row is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Node {node_id} not found.",
        )
    return row[0], row[1]


@router.get("/{node_id}/questions", response_model=List[QuestionResponse])
async def get_node_questions(
    node_id: int,
    user_id: str = Depends(get_current_user_id),
    assessment: AssessmentGenerator = Depends(get_assessment_generator),
    db: AsyncSession = Depends(get_db),
) -> List[QuestionResponse]:
    await _get_owned_node(db, node_id, user_id)
    questions = await assessment.get_questions(db, node_id)
    return [QuestionResponse.model_validate(q) for q in questions]


@router.post(
    "/{node_id}/questions/generate",
    response_model=QuestionGenerationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def generate_node_questions(
    node_id: int,
    user_id: str = Depends(get_current_user_id),
    assessment: AssessmentGenerator = Depends(get_assessment_generator),
    db: AsyncSession = Depends(get_db),
) -> QuestionGenerationResponse:
    """
    Ask the model for more questions about a node.

    New questions are deduplicated against the node's existing ones, so a
    run may add nothing.
    """
    node, doc_status = await _get_owned_node(db, node_id, user_id)
    if doc_status != DocumentStatus.COMPLETED:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Questions can only be generated for completed documents.",
        )

    generated = await assessment.generate_for_node(db, node)
    await db.commit()

    return QuestionGenerationResponse(
        node_id=node_id,
        questions_created=len(generated.questions),
        used_fallback=generated.used_fallback,
        questions=[QuestionResponse.model_validate(q) for q in generated.questions],
    )
