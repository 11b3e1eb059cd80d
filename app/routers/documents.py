"""
Document upload and read endpoints.

POST /upload          — extract + validate synchronously, process in the background.
GET  /                — the caller's documents, newest first.
GET  /{id}            — document metadata + node count.
GET  /{id}/status     — lifecycle state (poll until completed / failed).
GET  /{id}/nodes      — mind map nodes, once completed.
GET  /{id}/questions  — every question of every node, once completed.
"""
from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.dependencies.auth import get_current_user_id
from app.dependencies.services import get_assessment_generator, get_pipeline
from app.models.database_models import DocumentStatus
from app.models.schemas import (
    DocumentQuizResponse,
    DocumentResponse,
    DocumentStatusResponse,
    DocumentUploadResponse,
    NodeResponse,
    QuestionResponse,
)
from app.services.errors import (
    DocumentNotFoundError,
    DocumentNotReadyError,
    InputRejectedError,
)
from app.services.pipeline import DocumentPipeline
from app.services.quiz_generator import AssessmentGenerator

logger = logging.getLogger(__name__)

router = APIRouter()

READ_SLICE = 1024 * 1024  # 1 MB


# ---------------------------------------------------------------------------
# Upload
# ---------------------------------------------------------------------------

@router.post(
    "/upload",
    response_model=DocumentUploadResponse,
    status_code=status.HTTP_201_CREATED,
)
async def upload_document(
    file: UploadFile = File(...),
    user_id: str = Depends(get_current_user_id),
    pipeline: DocumentPipeline = Depends(get_pipeline),
) -> DocumentUploadResponse:
    """
    Upload a PDF, DOCX or TXT file.

    - Max file size: 10 MB (configurable via MAX_FILE_SIZE)
    - PDFs are limited to 10 pages
    - Returns as soon as the document is stored in ``processing``; poll
      ``GET /api/documents/{id}/status`` for the outcome.
    """
    if not file.filename:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Upload must include a filename.",
        )

    # Read in slices while enforcing the size limit
    data = bytearray()
    while True:
        piece = await file.read(READ_SLICE)
        if not piece:
            break
        data.extend(piece)
        if len(data) > settings.MAX_FILE_SIZE:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=(
                    f"File exceeds the {settings.MAX_FILE_SIZE // (1024 * 1024)} MB "
                    "size limit."
                ),
            )

    try:
        result = await pipeline.submit_document(bytes(data), file.filename, user_id)
    except InputRejectedError as exc:
        logger.info("Upload %r rejected: %s", file.filename, exc)
        raise HTTPException(status_code=exc.status_code, detail=str(exc))

    return DocumentUploadResponse(
        document_id=result.document_id,
        title=result.title,
        file_type=result.file_type,
        status=result.status.value,
    )


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

@router.get("/", response_model=List[DocumentResponse])
async def list_documents(
    user_id: str = Depends(get_current_user_id),
    pipeline: DocumentPipeline = Depends(get_pipeline),
    db: AsyncSession = Depends(get_db),
) -> List[DocumentResponse]:
    rows = await pipeline.list_documents(db, user_id)
    return [_document_response(doc, count) for doc, count in rows]


@router.get("/{document_id}", response_model=DocumentResponse)
async def get_document(
    document_id: int,
    user_id: str = Depends(get_current_user_id),
    pipeline: DocumentPipeline = Depends(get_pipeline),
    db: AsyncSession = Depends(get_db),
) -> DocumentResponse:
    try:
        document = await pipeline.get_document(db, document_id, user_id)
    except DocumentNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))

    nodes = []
    if document.status == DocumentStatus.COMPLETED:
        nodes = await pipeline.get_nodes(db, document_id, user_id)
    return _document_response(document, len(nodes))


@router.get("/{document_id}/status", response_model=DocumentStatusResponse)
async def get_document_status(
    document_id: int,
    user_id: str = Depends(get_current_user_id),
    pipeline: DocumentPipeline = Depends(get_pipeline),
    db: AsyncSession = Depends(get_db),
) -> DocumentStatusResponse:
    try:
        document = await pipeline.get_document(db, document_id, user_id)
    except DocumentNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))

    live = pipeline.manager.get_status(document_id)
    return DocumentStatusResponse(
        document_id=document.id,
        status=document.status.value,
        is_running=pipeline.manager.is_running(document_id),
        phase=live.phase.value if live else None,
        error_message=document.error_message,
    )


@router.get("/{document_id}/nodes", response_model=List[NodeResponse])
async def get_document_nodes(
    document_id: int,
    user_id: str = Depends(get_current_user_id),
    pipeline: DocumentPipeline = Depends(get_pipeline),
    db: AsyncSession = Depends(get_db),
) -> List[NodeResponse]:
    try:
        nodes = await pipeline.get_nodes(db, document_id, user_id)
    except DocumentNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    except DocumentNotReadyError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))

    return [NodeResponse.model_validate(n) for n in nodes]


@router.get("/{document_id}/questions", response_model=DocumentQuizResponse)
async def get_document_questions(
    document_id: int,
    user_id: str = Depends(get_current_user_id),
    pipeline: DocumentPipeline = Depends(get_pipeline),
    assessment: AssessmentGenerator = Depends(get_assessment_generator),
    db: AsyncSession = Depends(get_db),
) -> DocumentQuizResponse:
    try:
        document = await pipeline.get_document(db, document_id, user_id)
    except DocumentNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if document.status != DocumentStatus.COMPLETED:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Document {document_id} is {document.status.value}; quiz is not available.",
        )

    questions = await assessment.get_document_questions(db, document_id)
    return DocumentQuizResponse(
        document_id=document_id,
        questions=[QuestionResponse.model_validate(q) for q in questions],
        total_questions=len(questions),
    )


def _document_response(document, node_count: int) -> DocumentResponse:
    return DocumentResponse(
        id=document.id,
        owner_id=document.owner_id,
        title=document.title,
        filename=document.filename,
        file_type=document.file_type.value,
        status=document.status.value,
        metadata_json=document.metadata_json,
        error_message=document.error_message,
        created_at=document.created_at,
        node_count=node_count or 0,
    )
