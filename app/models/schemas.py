"""
Pydantic schemas for request/response validation.
"""
from pydantic import BaseModel, Field, ConfigDict, field_validator
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum


# Enums (matching database enums)
class DocumentStatusSchema(str, Enum):
    """Document lifecycle states for API responses."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class QuestionTypeSchema(str, Enum):
    """Question types for API responses."""

    MCQ = "mcq"


# Document Schemas
class DocumentUploadResponse(BaseModel):
    """Schema for document upload response."""

    document_id: int
    title: str
    file_type: str
    status: DocumentStatusSchema = DocumentStatusSchema.PROCESSING
    message: str = "Document accepted for processing"


class DocumentStatusResponse(BaseModel):
    """Schema for the polled status endpoint."""

    document_id: int
    status: DocumentStatusSchema
    is_running: bool = False
    phase: Optional[str] = None  # live pipeline phase while this process runs it
    error_message: Optional[str] = None


class DocumentResponse(BaseModel):
    """Schema for document details."""

    id: int
    owner_id: str
    title: str
    filename: str
    file_type: str
    status: DocumentStatusSchema
    metadata_json: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    created_at: datetime
    node_count: int = 0

    model_config = ConfigDict(from_attributes=True)


# Node Schemas
class NodeResponse(BaseModel):
    """Schema for one mind map node."""

    id: int
    document_id: int
    parent_id: Optional[int] = None
    title: str
    summary: Optional[str] = None
    level: int
    position_x: float
    position_y: float
    color: Optional[str] = None
    metadata_json: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(from_attributes=True)


# Question Schemas
class QuestionResponse(BaseModel):
    """Schema for a stored question (includes the answer key)."""

    id: int
    node_id: int
    question_type: QuestionTypeSchema
    question: str
    correct_answer: str
    distractors: List[str]
    evidence_anchor: str
    metadata_json: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(from_attributes=True)


class DocumentQuizResponse(BaseModel):
    """Schema for every question of a document."""

    document_id: int
    questions: List[QuestionResponse] = []
    total_questions: int = 0


class QuestionGenerationResponse(BaseModel):
    """Schema for an on-demand question generation run."""

    node_id: int
    questions_created: int
    used_fallback: bool
    questions: List[QuestionResponse] = []


# Attempt Schemas
class AttemptCreate(BaseModel):
    """Schema for submitting one answer."""

    question_id: int
    answer: str = Field(..., min_length=1)
    time_spent: Optional[float] = Field(None, ge=0)
    session_id: Optional[str] = Field(None, max_length=255)

    @field_validator("answer")
    @classmethod
    def answer_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("answer must not be blank")
        return value


class AttemptResponse(BaseModel):
    """Schema for the graded result of an attempt."""

    attempt_id: int
    correct: bool
    explanation: str
    correct_answer: str
    evidence_anchor: str
    mastery_score: int
    review_interval: int
    next_review_date: datetime


# Review Schemas
class ReviewResponse(BaseModel):
    """Schema for a (node, user) mastery record."""

    id: int
    node_id: int
    user_id: str
    mastery_score: int
    review_interval: int
    last_reviewed: datetime
    next_review_date: datetime

    model_config = ConfigDict(from_attributes=True)


# Flashcard Schemas
class FlashcardGenerateRequest(BaseModel):
    """Schema for generating a document's flashcards."""

    document_id: int
    card_count: int = Field(20, ge=1, le=50)


class FlashcardResponse(BaseModel):
    """Schema for a stored flashcard."""

    id: int
    node_id: int
    front: str
    back: str
    difficulty: str
    category: str
    metadata_json: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(from_attributes=True)


class FlashcardDeckResponse(BaseModel):
    """Schema for every flashcard of a document."""

    document_id: int
    cards: List[FlashcardResponse] = []
    total_cards: int = 0
    used_fallback: bool = False


class FlashcardStudyRequest(BaseModel):
    """Schema for a self-graded flashcard review."""

    correct: bool


class FlashcardStudyResponse(BaseModel):
    """Schema for the mastery update after studying a card."""

    card_id: int
    node_id: int
    correct: bool
    message: str
    mastery_score: int
    review_interval: int
    next_review_date: datetime


# Health Check Schema
class HealthCheckResponse(BaseModel):
    """Schema for health check response."""

    status: str
    database: str
    ollama: str
    timestamp: datetime
