"""initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-18

All 7 tables as defined in app/models/database_models.py:
documents, chunks, nodes, questions, attempts, reviews, flashcards.
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ── Enum types (SQLAlchemy stores enum member names) ──────────────────
    document_status = sa.Enum("PROCESSING", "COMPLETED", "FAILED", name="documentstatus")
    document_status.create(op.get_bind(), checkfirst=True)

    document_type = sa.Enum("PDF", "TXT", "DOCX", name="documenttype")
    document_type.create(op.get_bind(), checkfirst=True)

    question_type = sa.Enum("MCQ", name="questiontype")
    question_type.create(op.get_bind(), checkfirst=True)

    # ── documents ─────────────────────────────────────────────────────────
    op.create_table(
        "documents",
        sa.Column("id", sa.Integer, primary_key=True, index=True),
        sa.Column("owner_id", sa.String(255), nullable=False, index=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("filename", sa.String(255), nullable=False),
        sa.Column("file_type", sa.Enum("PDF", "TXT", "DOCX", name="documenttype", create_type=False), nullable=False),
        sa.Column("content_text", sa.Text, nullable=False),
        sa.Column("metadata_json", sa.JSON, nullable=True),
        sa.Column("status", sa.Enum("PROCESSING", "COMPLETED", "FAILED", name="documentstatus", create_type=False), nullable=False, index=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    # ── chunks ────────────────────────────────────────────────────────────
    op.create_table(
        "chunks",
        sa.Column("id", sa.Integer, primary_key=True, index=True),
        sa.Column("document_id", sa.Integer, sa.ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("chunk_index", sa.Integer, nullable=False),
        sa.Column("metadata_json", sa.JSON, nullable=True),
    )

    # ── nodes ─────────────────────────────────────────────────────────────
    op.create_table(
        "nodes",
        sa.Column("id", sa.Integer, primary_key=True, index=True),
        sa.Column("document_id", sa.Integer, sa.ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("parent_id", sa.Integer, sa.ForeignKey("nodes.id", ondelete="CASCADE"), nullable=True, index=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("summary", sa.Text, nullable=True),
        sa.Column("level", sa.Integer, nullable=False),
        sa.Column("position_x", sa.Float, nullable=False),
        sa.Column("position_y", sa.Float, nullable=False),
        sa.Column("color", sa.String(16), nullable=True),
        sa.Column("metadata_json", sa.JSON, nullable=True),
    )

    # ── questions ─────────────────────────────────────────────────────────
    op.create_table(
        "questions",
        sa.Column("id", sa.Integer, primary_key=True, index=True),
        sa.Column("node_id", sa.Integer, sa.ForeignKey("nodes.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("question_type", sa.Enum("MCQ", name="questiontype", create_type=False), nullable=False),
        sa.Column("question", sa.Text, nullable=False),
        sa.Column("correct_answer", sa.Text, nullable=False),
        sa.Column("distractors", sa.JSON, nullable=False),
        sa.Column("evidence_anchor", sa.Text, nullable=False),
        sa.Column("metadata_json", sa.JSON, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    # ── attempts ──────────────────────────────────────────────────────────
    op.create_table(
        "attempts",
        sa.Column("id", sa.Integer, primary_key=True, index=True),
        sa.Column("question_id", sa.Integer, sa.ForeignKey("questions.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("user_id", sa.String(255), nullable=False, index=True),
        sa.Column("answer", sa.Text, nullable=False),
        sa.Column("is_correct", sa.Boolean, nullable=False),
        sa.Column("time_spent", sa.Float, nullable=True),
        sa.Column("session_id", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    # ── reviews ───────────────────────────────────────────────────────────
    op.create_table(
        "reviews",
        sa.Column("id", sa.Integer, primary_key=True, index=True),
        sa.Column("node_id", sa.Integer, sa.ForeignKey("nodes.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("user_id", sa.String(255), nullable=False, index=True),
        sa.Column("mastery_score", sa.Integer, nullable=False),
        sa.Column("review_interval", sa.Integer, nullable=False),
        sa.Column("last_reviewed", sa.DateTime(timezone=True), nullable=False),
        sa.Column("next_review_date", sa.DateTime(timezone=True), nullable=False, index=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("version", sa.Integer, nullable=False),
        sa.UniqueConstraint("node_id", "user_id", name="uq_reviews_node_user"),
    )

    # ── flashcards ────────────────────────────────────────────────────────
    op.create_table(
        "flashcards",
        sa.Column("id", sa.Integer, primary_key=True, index=True),
        sa.Column("node_id", sa.Integer, sa.ForeignKey("nodes.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("front", sa.Text, nullable=False),
        sa.Column("back", sa.Text, nullable=False),
        sa.Column("difficulty", sa.String(16), nullable=False),
        sa.Column("category", sa.String(32), nullable=False),
        sa.Column("metadata_json", sa.JSON, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("flashcards")
    op.drop_table("reviews")
    op.drop_table("attempts")
    op.drop_table("questions")
    op.drop_table("nodes")
    op.drop_table("chunks")
    op.drop_table("documents")

    op.execute("DROP TYPE IF EXISTS questiontype")
    op.execute("DROP TYPE IF EXISTS documenttype")
    op.execute("DROP TYPE IF EXISTS documentstatus")
