"""
Flashcard endpoints.

POST /generate               — generate cards for one of the caller's completed documents.
GET  /document/{id}          — every card of a document.
GET  /{id}                   — one card.
POST /{id}/study             — record a self-graded review of a card.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies.auth import get_current_user_id
from app.dependencies.services import get_flashcard_generator, get_flashcard_study_service
from app.models.schemas import (
    FlashcardDeckResponse,
    FlashcardGenerateRequest,
    FlashcardResponse,
    FlashcardStudyRequest,
    FlashcardStudyResponse,
)
from app.services.errors import (
    DocumentNotFoundError,
    DocumentNotReadyError,
    FlashcardNotFoundError,
)
from app.services.flashcards import FlashcardGenerator, FlashcardStudyService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/generate", response_model=FlashcardDeckResponse, status_code=status.HTTP_201_CREATED)
async def generate_flashcards(
    payload: FlashcardGenerateRequest,
    user_id: str = Depends(get_current_user_id),
    generator: FlashcardGenerator = Depends(get_flashcard_generator),
    db: AsyncSession = Depends(get_db),
) -> FlashcardDeckResponse:
    """
    Generate new flashcards for a document.

    Only the cards created by this call are returned; cards that repeat an
    existing card are dropped.
    """
    try:
        generated = await generator.generate_for_document(
            db, payload.document_id, user_id, payload.card_count
        )
    except DocumentNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    except DocumentNotReadyError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    await db.commit()

    return FlashcardDeckResponse(
        document_id=payload.document_id,
        cards=[FlashcardResponse.model_validate(c) for c in generated.cards],
        total_cards=len(generated.cards),
        used_fallback=generated.used_fallback,
    )


@router.get("/document/{document_id}", response_model=FlashcardDeckResponse)
async def get_document_flashcards(
    document_id: int,
    user_id: str = Depends(get_current_user_id),
    generator: FlashcardGenerator = Depends(get_flashcard_generator),
    db: AsyncSession = Depends(get_db),
) -> FlashcardDeckResponse:
    cards = await generator.get_document_cards(db, document_id, user_id)
    return FlashcardDeckResponse(
        document_id=document_id,
        cards=[FlashcardResponse.model_validate(c) for c in cards],
        total_cards=len(cards),
    )


@router.get("/{card_id}", response_model=FlashcardResponse)
async def get_flashcard(
    card_id: int,
    user_id: str = Depends(get_current_user_id),
    generator: FlashcardGenerator = Depends(get_flashcard_generator),
    db: AsyncSession = Depends(get_db),
) -> FlashcardResponse:
    try:
        card = await generator.get_card(db, card_id, user_id)
    except FlashcardNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    return FlashcardResponse.model_validate(card)


@router.post("/{card_id}/study", response_model=FlashcardStudyResponse)
async def study_flashcard(
    card_id: int,
    payload: FlashcardStudyRequest,
    user_id: str = Depends(get_current_user_id),
    service: FlashcardStudyService = Depends(get_flashcard_study_service),
    db: AsyncSession = Depends(get_db),
) -> FlashcardStudyResponse:
    """Apply the caller's self-grade to their mastery of the card's node."""
    try:
        result = await service.study(db, card_id, user_id, payload.correct)
    except FlashcardNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))

    return FlashcardStudyResponse(
        card_id=result.card_id,
        node_id=result.node_id,
        correct=result.correct,
        message=result.message,
        mastery_score=result.mastery_score,
        review_interval=result.review_interval,
        next_review_date=result.next_review_date,
    )
