"""
Service dependencies for FastAPI routes.

Every service receives its collaborators explicitly; routes obtain them
through these providers so tests can replace any of them with
``app.dependency_overrides``.
"""
from __future__ import annotations

from fastapi import Depends
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.database import AsyncSessionLocal
from app.services.attempts import AttemptService
from app.services.chunking import ChunkingService
from app.services.content_validator import ContentValidator
from app.services.flashcards import FlashcardGenerator, FlashcardStudyService
from app.services.llm_service import OllamaLLMService
from app.services.mastery import MasteryScheduler
from app.services.mindmap_generator import KnowledgeStructuringEngine
from app.services.moderation import ModerationService
from app.services.pipeline import DocumentPipeline
from app.services.pipeline_manager import PipelineManager, pipeline_manager
from app.services.quiz_generator import AssessmentGenerator
from app.services.text_extractor import TextExtractor


def get_session_factory() -> async_sessionmaker:
    return AsyncSessionLocal


def get_llm_service() -> OllamaLLMService:
    return OllamaLLMService()


def get_moderation_service() -> ModerationService:
    return ModerationService()


def get_pipeline_manager() -> PipelineManager:
    return pipeline_manager


def get_assessment_generator(
    llm: OllamaLLMService = Depends(get_llm_service),
) -> AssessmentGenerator:
    return AssessmentGenerator(llm)


def get_pipeline(
    session_factory: async_sessionmaker = Depends(get_session_factory),
    llm: OllamaLLMService = Depends(get_llm_service),
    moderation: ModerationService = Depends(get_moderation_service),
    assessment: AssessmentGenerator = Depends(get_assessment_generator),
    manager: PipelineManager = Depends(get_pipeline_manager),
) -> DocumentPipeline:
    chunker = ChunkingService()
    return DocumentPipeline(
        session_factory=session_factory,
        extractor=TextExtractor(),
        validator=ContentValidator(moderation),
        structuring=KnowledgeStructuringEngine(llm, chunker),
        assessment=assessment,
        manager=manager,
        chunker=chunker,
    )


def get_mastery_scheduler(
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> MasteryScheduler:
    return MasteryScheduler(session_factory)


def get_attempt_service(
    scheduler: MasteryScheduler = Depends(get_mastery_scheduler),
) -> AttemptService:
    return AttemptService(scheduler)


def get_flashcard_generator(
    llm: OllamaLLMService = Depends(get_llm_service),
) -> FlashcardGenerator:
    return FlashcardGenerator(llm)


def get_flashcard_study_service(
    scheduler: MasteryScheduler = Depends(get_mastery_scheduler),
    generator: FlashcardGenerator = Depends(get_flashcard_generator),
) -> FlashcardStudyService:
    return FlashcardStudyService(scheduler, generator)
