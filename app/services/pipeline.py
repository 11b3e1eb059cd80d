"""
Document lifecycle controller.

Public API
----------
DocumentPipeline.submit_document(data, filename, owner_id) -> SubmissionResult
    Extract and validate synchronously, persist the Document in
    ``processing`` with its chunks, then schedule ``run`` in the background.
    Input-rejection errors propagate and nothing is persisted.

DocumentPipeline.run(document_id, status)
    Structuring → assessment → ``completed``, committed as one transaction.
    Any exception rolls the transaction back and marks the document
    ``failed`` in a fresh session.

Lifecycle: processing → completed | failed.  Both transitions are guarded
UPDATEs on ``status = 'processing'`` so a terminal state is never left.
"""
from __future__ import annotations

import dataclasses
import logging
import time
from datetime import datetime, timezone
from pathlib import PurePath
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.database_models import Chunk, Document, DocumentStatus, Node
from app.services.chunking import ChunkingService
from app.services.content_validator import ContentValidator
from app.services.errors import (
    DocumentNotFoundError,
    DocumentNotReadyError,
    InvalidTransitionError,
)
from app.services.mindmap_generator import KnowledgeStructuringEngine
from app.services.pipeline_manager import (
    PipelineManager,
    PipelinePhase,
    PipelineStatus,
)
from app.services.quiz_generator import AssessmentGenerator
from app.services.text_extractor import TextExtractor

logger = logging.getLogger(__name__)

ERROR_MESSAGE_CHARS = 1000


@dataclasses.dataclass
class SubmissionResult:
    """Returned to the uploader once the document is accepted."""

    document_id: int
    title: str
    file_type: str
    status: DocumentStatus


class DocumentPipeline:
    """
    Owns every Document status transition.

    Collaborators are injected so tests can swap in fakes; background runs
    open their own sessions from *session_factory*, never a request session.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        extractor: TextExtractor,
        validator: ContentValidator,
        structuring: KnowledgeStructuringEngine,
        assessment: AssessmentGenerator,
        manager: PipelineManager,
        chunker: Optional[ChunkingService] = None,
    ) -> None:
        self.session_factory = session_factory
        self.extractor = extractor
        self.validator = validator
        self.structuring = structuring
        self.assessment = assessment
        self.manager = manager
        self.chunker = chunker or ChunkingService()

    # ------------------------------------------------------------------
    # Upload intake
    # ------------------------------------------------------------------

    async def submit_document(self, data: bytes, filename: str, owner_id: str) -> SubmissionResult:
        extracted = await self.extractor.extract(data, filename)
        await self.validator.validate(extracted.text)

        chunks = self.chunker.chunk_text(extracted.text, {"filename": filename})

        async with self.session_factory() as session:
            document = Document(
                owner_id=owner_id,
                title=PurePath(filename).stem or filename,
                filename=filename,
                file_type=extracted.file_type,
                content_text=extracted.text,
                metadata_json=extracted.metadata,
                status=DocumentStatus.PROCESSING,
            )
            document.chunks = [
                Chunk(
                    content=c["content"],
                    chunk_index=c["chunk_index"],
                    metadata_json=c["metadata"],
                )
                for c in chunks
            ]
            session.add(document)
            await session.commit()
            result = SubmissionResult(
                document_id=document.id,
                title=document.title,
                file_type=extracted.file_type.value,
                status=DocumentStatus.PROCESSING,
            )

        logger.info(
            "Document %d accepted: %r (%d chunks), owner=%s",
            result.document_id,
            filename,
            len(chunks),
            owner_id,
        )
        self.manager.start(result.document_id, lambda st: self.run(result.document_id, st))
        return result

    # ------------------------------------------------------------------
    # Background run
    # ------------------------------------------------------------------

    async def run(self, document_id: int, status: Optional[PipelineStatus] = None) -> None:
        """
        Structure the document and generate its questions.

        Never raises for pipeline errors: they are logged and recorded as
        the ``failed`` state.
        """
        status = status or PipelineStatus(document_id=document_id)
        t0 = time.monotonic()

        async with self.session_factory() as session:
            try:
                document = await session.get(Document, document_id)
                if document is None:
                    logger.warning("Pipeline: document %d no longer exists", document_id)
                    status.phase = PipelinePhase.FAILED
                    return
                if document.status != DocumentStatus.PROCESSING:
                    logger.warning(
                        "Pipeline: document %d is already %s, skipping",
                        document_id,
                        document.status.value,
                    )
                    status.phase = PipelinePhase(document.status.value)
                    return

                chunk_rows = await session.execute(
                    select(Chunk.content)
                    .where(Chunk.document_id == document_id)
                    .order_by(Chunk.chunk_index)
                )
                chunks = list(chunk_rows.scalars().all())

                logger.info("Pipeline: [1/2] structuring document %d", document_id)
                status.phase = PipelinePhase.STRUCTURING
                outline = await self.structuring.build_outline(document.content_text, chunks)
                nodes = await self.structuring.persist(session, document_id, outline)
                status.nodes_created = len(nodes)
                status.used_fallback_structure = outline.used_fallback

                logger.info(
                    "Pipeline: [2/2] generating questions for %d nodes of document %d",
                    len(nodes),
                    document_id,
                )
                status.phase = PipelinePhase.ASSESSING
                for node in nodes:
                    generated = await self.assessment.generate_for_node(session, node)
                    status.questions_created += len(generated.questions)

                await self._transition(session, document_id, DocumentStatus.COMPLETED)
                await session.commit()
            except Exception as exc:
                await session.rollback()
                logger.error(
                    "Pipeline: document %d failed: %s", document_id, exc, exc_info=True
                )
                status.errors.append(str(exc)[:200])
                await self._mark_failed(document_id, exc)
                status.phase = PipelinePhase.FAILED
                return

        status.phase = PipelinePhase.COMPLETED
        logger.info(
            "Pipeline: document %d completed in %.2fs: %d nodes, %d questions (fallback=%s)",
            document_id,
            time.monotonic() - t0,
            status.nodes_created,
            status.questions_created,
            status.used_fallback_structure,
        )

    async def _mark_failed(self, document_id: int, exc: Exception) -> None:
        message = (str(exc) or exc.__class__.__name__)[:ERROR_MESSAGE_CHARS]
        async with self.session_factory() as session:
            try:
                await self._transition(session, document_id, DocumentStatus.FAILED, message)
                await session.commit()
            except InvalidTransitionError as terr:
                logger.warning("Pipeline: %s", terr)

    async def _transition(
        self,
        session: AsyncSession,
        document_id: int,
        target: DocumentStatus,
        error_message: Optional[str] = None,
    ) -> None:
        """
        Move *document_id* from ``processing`` to *target*.

        Raises:
            InvalidTransitionError: the document is not in ``processing``.
        """
        if target == DocumentStatus.PROCESSING:
            raise InvalidTransitionError("Documents never re-enter processing")

        result = await session.execute(
            update(Document)
            .where(
                Document.id == document_id,
                Document.status == DocumentStatus.PROCESSING,
            )
            .values(
                status=target,
                error_message=error_message,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidTransitionError(
                f"Document {document_id} is not processing; cannot move to {target.value}"
            )
        logger.info("Document %d -> %s", document_id, target.value)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_document(
        self,
        db: AsyncSession,
        document_id: int,
        owner_id: Optional[str] = None,
    ) -> Document:
        query = select(Document).where(Document.id == document_id)
        if owner_id is not None:
            query = query.where(Document.owner_id == owner_id)
        document = (await db.execute(query)).scalar_one_or_none()
        if document is None:
            raise DocumentNotFoundError(f"Document {document_id} not found.")
        return document

    async def get_status(
        self,
        db: AsyncSession,
        document_id: int,
        owner_id: Optional[str] = None,
    ) -> DocumentStatus:
        document = await self.get_document(db, document_id, owner_id)
        return document.status

    async def get_nodes(
        self,
        db: AsyncSession,
        document_id: int,
        owner_id: Optional[str] = None,
    ) -> List[Node]:
        """
        Nodes of a completed document, root first.

        Raises:
            DocumentNotFoundError, DocumentNotReadyError
        """
        document = await self.get_document(db, document_id, owner_id)
        if document.status != DocumentStatus.COMPLETED:
            raise DocumentNotReadyError(
                f"Document {document_id} is {document.status.value}; nodes are not available."
            )
        result = await db.execute(
            select(Node).where(Node.document_id == document_id).order_by(Node.level, Node.id)
        )
        return list(result.scalars().all())

    async def list_documents(self, db: AsyncSession, owner_id: str) -> List[tuple]:
        """(Document, node_count) pairs for *owner_id*, newest first."""
        node_count = (
            select(func.count(Node.id))
            .where(Node.document_id == Document.id)
            .correlate(Document)
            .scalar_subquery()
        )
        result = await db.execute(
            select(Document, node_count)
            .where(Document.owner_id == owner_id)
            .order_by(Document.created_at.desc(), Document.id.desc())
        )
        return [(row[0], row[1]) for row in result.all()]
