"""
SQLAlchemy ORM models for the MindMap database.
Documents own chunks and nodes; nodes own questions, flashcards and reviews.
"""
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    DateTime,
    ForeignKey,
    Float,
    Boolean,
    Enum as SQLEnum,
    JSON,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

from app.database import Base


# Enums
class DocumentStatus(str, enum.Enum):
    """Lifecycle states of an uploaded document."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class DocumentType(str, enum.Enum):
    """Supported upload formats."""

    PDF = "pdf"
    TXT = "txt"
    DOCX = "docx"


class QuestionType(str, enum.Enum):
    """Assessment item types; the generator only produces multiple choice."""

    MCQ = "mcq"


# Models
class Document(Base):
    """Uploaded document with extracted text and processing status."""

    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(String(255), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    filename = Column(String(255), nullable=False)
    file_type = Column(SQLEnum(DocumentType), nullable=False)
    content_text = Column(Text, nullable=False)
    metadata_json = Column(JSON, nullable=True)  # file size, page count, etc.
    status = Column(
        SQLEnum(DocumentStatus),
        default=DocumentStatus.PROCESSING,
        nullable=False,
        index=True,
    )
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    # Relationships
    chunks = relationship("Chunk", back_populates="document", cascade="all, delete-orphan")
    nodes = relationship("Node", back_populates="document", cascade="all, delete-orphan")


class Chunk(Base):
    """Bounded-size slice of a document's text."""

    __tablename__ = "chunks"

    id = Column(Integer, primary_key=True, index=True)
    document_id = Column(Integer, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    chunk_index = Column(Integer, nullable=False)  # Position in document
    metadata_json = Column(JSON, nullable=True)

    # Relationships
    document = relationship("Document", back_populates="chunks")


class Node(Base):
    """One entry of a document's three-level knowledge hierarchy."""

    __tablename__ = "nodes"

    id = Column(Integer, primary_key=True, index=True)
    document_id = Column(Integer, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    parent_id = Column(Integer, ForeignKey("nodes.id", ondelete="CASCADE"), nullable=True, index=True)
    title = Column(String(255), nullable=False)
    summary = Column(Text, nullable=True)
    level = Column(Integer, nullable=False)  # 0 = topic, 1 = concept, 2 = detail

    # Layout
    position_x = Column(Float, nullable=False, default=0.0)
    position_y = Column(Float, nullable=False, default=0.0)
    color = Column(String(16), nullable=True)

    # Evidence excerpt, model reference, ai_generated flag
    metadata_json = Column(JSON, nullable=True)

    # Relationships
    document = relationship("Document", back_populates="nodes")
    parent = relationship("Node", remote_side=[id], backref="children")
    questions = relationship("Question", back_populates="node", cascade="all, delete-orphan")
    reviews = relationship("Review", back_populates="node", cascade="all, delete-orphan")
    flashcards = relationship("Flashcard", back_populates="node", cascade="all, delete-orphan")


class Question(Base):
    """Multiple-choice assessment item tied to a node."""

    __tablename__ = "questions"

    id = Column(Integer, primary_key=True, index=True)
    node_id = Column(Integer, ForeignKey("nodes.id", ondelete="CASCADE"), nullable=False, index=True)
    question_type = Column(SQLEnum(QuestionType), default=QuestionType.MCQ, nullable=False)
    question = Column(Text, nullable=False)
    correct_answer = Column(Text, nullable=False)
    distractors = Column(JSON, nullable=False)  # exactly three strings
    evidence_anchor = Column(Text, nullable=False)
    metadata_json = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relationships
    node = relationship("Node", back_populates="questions")
    attempts = relationship("Attempt", back_populates="question", cascade="all, delete-orphan")


class Attempt(Base):
    """Append-only record of one user answering one question."""

    __tablename__ = "attempts"

    id = Column(Integer, primary_key=True, index=True)
    question_id = Column(Integer, ForeignKey("questions.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    answer = Column(Text, nullable=False)
    is_correct = Column(Boolean, nullable=False)
    time_spent = Column(Float, nullable=True)  # seconds
    session_id = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relationships
    question = relationship("Question", back_populates="attempts")


class Review(Base):
    """Mastery and scheduling state for one (node, user) pair."""

    __tablename__ = "reviews"
    __table_args__ = (
        UniqueConstraint("node_id", "user_id", name="uq_reviews_node_user"),
    )

    id = Column(Integer, primary_key=True, index=True)
    node_id = Column(Integer, ForeignKey("nodes.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    mastery_score = Column(Integer, nullable=False, default=0)  # 0-100
    review_interval = Column(Integer, nullable=False, default=1)  # days
    last_reviewed = Column(DateTime(timezone=True), nullable=False)
    next_review_date = Column(DateTime(timezone=True), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    # Bumped on every write; stale UPDATEs match no row
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    node = relationship("Node", back_populates="reviews")


class Flashcard(Base):
    """Front/back study card tied to one node of a document."""

    __tablename__ = "flashcards"

    id = Column(Integer, primary_key=True, index=True)
    node_id = Column(Integer, ForeignKey("nodes.id", ondelete="CASCADE"), nullable=False, index=True)
    front = Column(Text, nullable=False)
    back = Column(Text, nullable=False)
    difficulty = Column(String(16), nullable=False, default="medium")  # easy | medium | hard
    category = Column(String(32), nullable=False, default="concept")
    metadata_json = Column(JSON, nullable=True)  # ai_generated, fallback
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relationships
    node = relationship("Node", back_populates="flashcards")
