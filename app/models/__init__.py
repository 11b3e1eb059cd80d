"""Database and schema models for the MindMap backend."""
from app.models.database_models import (
    Document,
    Chunk,
    Node,
    Question,
    Attempt,
    Review,
    DocumentStatus,
    DocumentType,
    QuestionType,
)
from app.models.schemas import (
    DocumentUploadResponse,
    DocumentStatusResponse,
    DocumentResponse,
    NodeResponse,
    QuestionResponse,
    AttemptCreate,
    AttemptResponse,
    ReviewResponse,
    HealthCheckResponse,
)

__all__ = [
    # Database models
    "Document",
    "Chunk",
    "Node",
    "Question",
    "Attempt",
    "Review",
    "DocumentStatus",
    "DocumentType",
    "QuestionType",
    # Pydantic schemas
    "DocumentUploadResponse",
    "DocumentStatusResponse",
    "DocumentResponse",
    "NodeResponse",
    "QuestionResponse",
    "AttemptCreate",
    "AttemptResponse",
    "ReviewResponse",
    "HealthCheckResponse",
]
