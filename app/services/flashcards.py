"""
Flashcards: front/back study cards drawn from a document's mind map.

Cards are generated for a whole completed document in one model call.  Each
card is attached to the node it is about, so studying a card feeds the same
mastery record as answering that node's questions.  When the model fails
and the document has no cards yet, one deterministic card per node is made
from the node's title and summary.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.database_models import Document, DocumentStatus, Flashcard, Node
from app.services.errors import (
    DocumentNotFoundError,
    DocumentNotReadyError,
    FlashcardNotFoundError,
)
from app.services.llm_service import parse_json_robust
from app.services.mastery import MasteryScheduler
from app.services.quiz_generator import DuplicateDetector, JaccardDuplicateDetector, TextGenerator

logger = logging.getLogger(__name__)

DEFAULT_CARD_COUNT = 20
MAX_CARD_COUNT = 50
MAX_FRONT_CHARS = 500
MAX_BACK_CHARS = 2000

DIFFICULTIES = ("easy", "medium", "hard")
CATEGORIES = ("concept", "definition", "process", "relationship")

# Fallback difficulty by node level
LEVEL_DIFFICULTY = {0: "easy", 1: "medium", 2: "hard"}


@dataclass
class CardCandidate:
    front: str
    back: str
    node_ref: str = ""
    difficulty: str = "medium"
    category: str = "concept"


@dataclass
class FlashcardGenerationResult:
    document_id: int
    cards: List[Flashcard] = field(default_factory=list)
    used_fallback: bool = False
    rejected: int = 0


@dataclass
class StudyResult:
    card_id: int
    node_id: int
    correct: bool
    message: str
    mastery_score: int
    review_interval: int
    next_review_date: datetime


_SYSTEM_PROMPT = (
    "You are an expert educator creating flashcards for spaced repetition. "
    "Every card must be answerable from the provided concepts. "
    "Respond with JSON only."
)

_FLASHCARD_PROMPT = """\
Create up to {count} flashcards for studying the concepts below.

Document: {title}

Concepts (use the exact concept title in "concept"):
{concepts}

Requirements:
- "front" is a question or prompt, "back" is its concise answer.
- "difficulty" is one of: easy, medium, hard.
- "category" is one of: concept, definition, process, relationship.
- Spread the cards across the concepts.
- Do not repeat these existing cards:
{existing}

Respond ONLY with valid JSON. No explanation, no markdown:
{{"cards": [{{"concept": "...", "front": "...", "back": "...", "difficulty": "medium", "category": "concept"}}]}}\
"""


class FlashcardGenerator:
    """Generates, deduplicates and stores flashcards for a document."""

    SYSTEM_PROMPT = _SYSTEM_PROMPT
    FLASHCARD_PROMPT = _FLASHCARD_PROMPT

    def __init__(
        self,
        llm: TextGenerator,
        duplicate_detector: Optional[DuplicateDetector] = None,
    ) -> None:
        self.llm = llm
        self.duplicate_detector = duplicate_detector or JaccardDuplicateDetector()

    async def generate_for_document(
        self,
        db: AsyncSession,
        document_id: int,
        owner_id: str,
        card_count: int = DEFAULT_CARD_COUNT,
    ) -> FlashcardGenerationResult:
        """
        Generate up to *card_count* new cards for a completed document.

        Flushes but does not commit; the caller owns the transaction.

        Raises:
            DocumentNotFoundError, DocumentNotReadyError
        """
        document = await self._owned_document(db, document_id, owner_id)
        card_count = max(1, min(card_count, MAX_CARD_COUNT))

        nodes = list(
            (
                await db.execute(
                    select(Node).where(Node.document_id == document.id).order_by(Node.level, Node.id)
                )
            ).scalars().all()
        )
        existing = await self.get_document_cards(db, document.id, owner_id)
        existing_fronts = [c.front for c in existing]

        candidates: List[CardCandidate] = []
        try:
            raw = await self.llm.complete(
                self._build_prompt(document, nodes, existing_fronts, card_count),
                self.SYSTEM_PROMPT,
            )
            candidates = parse_cards(raw)
        except Exception as exc:
            logger.warning("Flashcard generation failed for document %d: %s", document.id, exc)

        accepted = self._accept(candidates, nodes, existing_fronts)[:card_count]
        result = FlashcardGenerationResult(
            document_id=document.id,
            rejected=len(candidates) - len(accepted),
        )

        if not accepted and not existing:
            logger.warning("No usable flashcards for document %d, using fallback", document.id)
            accepted = [(node, fallback_card(node)) for node in nodes[:card_count]]
            result.used_fallback = True

        for node, candidate in accepted:
            result.cards.append(
                Flashcard(
                    node_id=node.id,
                    front=candidate.front,
                    back=candidate.back,
                    difficulty=candidate.difficulty,
                    category=candidate.category,
                    metadata_json={
                        "ai_generated": not result.used_fallback,
                        "fallback": result.used_fallback,
                    },
                )
            )

        db.add_all(result.cards)
        await db.flush()
        logger.info(
            "Document %d: %d flashcards added, %d rejected (fallback=%s)",
            document.id,
            len(result.cards),
            result.rejected,
            result.used_fallback,
        )
        return result

    def _accept(
        self,
        candidates: Sequence[CardCandidate],
        nodes: Sequence[Node],
        existing_fronts: Sequence[str],
    ) -> List[Tuple[Node, CardCandidate]]:
        """Pair each usable candidate with its node; drop unmatched and near-duplicate cards."""
        if not nodes:
            return []
        by_title = {n.title.strip().lower(): n for n in nodes}
        by_id = {str(n.id): n for n in nodes}
        root = nodes[0]

        seen = list(existing_fronts)
        accepted: List[Tuple[Node, CardCandidate]] = []
        for candidate in candidates:
            if not (candidate.front and candidate.back):
                continue
            ref = candidate.node_ref.strip()
            if ref:
                node = by_id.get(ref) or by_title.get(ref.lower())
            else:
                # no concept named: the card is about the document topic
                node = root
            if node is None:
                logger.debug("Rejected flashcard for unknown concept %r", ref)
                continue
            if self.duplicate_detector.is_duplicate(candidate.front, seen):
                logger.debug("Rejected near-duplicate flashcard: %r", candidate.front)
                continue
            accepted.append((node, candidate))
            seen.append(candidate.front)
        return accepted

    def _build_prompt(
        self,
        document: Document,
        nodes: Sequence[Node],
        existing_fronts: Sequence[str],
        card_count: int,
    ) -> str:
        concepts = "\n".join(
            f"- {n.title}: {n.summary or ''}".rstrip(": ") for n in nodes
        ) or "- (none)"
        existing = "\n".join(f"- {front}" for front in existing_fronts) or "- (none)"
        return self.FLASHCARD_PROMPT.format(
            count=card_count,
            title=document.title,
            concepts=concepts,
            existing=existing,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def _owned_document(self, db: AsyncSession, document_id: int, owner_id: str) -> Document:
        document = (
            await db.execute(
                select(Document).where(Document.id == document_id, Document.owner_id == owner_id)
            )
        ).scalar_one_or_none()
        if document is None:
            raise DocumentNotFoundError(f"Document {document_id} not found.")
        if document.status != DocumentStatus.COMPLETED:
            raise DocumentNotReadyError(
                f"Document {document_id} is {document.status.value}; flashcards are not available."
            )
        return document

    async def get_card(self, db: AsyncSession, card_id: int, owner_id: str) -> Flashcard:
        """A card of one of the caller's documents.  Raises FlashcardNotFoundError."""
        card = (
            await db.execute(
                select(Flashcard)
                .join(Node, Flashcard.node_id == Node.id)
                .join(Document, Node.document_id == Document.id)
                .where(Flashcard.id == card_id, Document.owner_id == owner_id)
            )
        ).scalar_one_or_none()
        if card is None:
            raise FlashcardNotFoundError(f"Flashcard {card_id} not found.")
        return card

    async def get_document_cards(
        self,
        db: AsyncSession,
        document_id: int,
        owner_id: str,
    ) -> List[Flashcard]:
        result = await db.execute(
            select(Flashcard)
            .join(Node, Flashcard.node_id == Node.id)
            .join(Document, Node.document_id == Document.id)
            .where(Node.document_id == document_id, Document.owner_id == owner_id)
            .order_by(Node.level, Node.id, Flashcard.id)
        )
        return list(result.scalars().all())


class FlashcardStudyService:
    """Records a self-graded flashcard review against the card's node."""

    def __init__(self, scheduler: MasteryScheduler, generator: FlashcardGenerator) -> None:
        self.scheduler = scheduler
        self.generator = generator

    async def study(
        self,
        db: AsyncSession,
        card_id: int,
        user_id: str,
        correct: bool,
    ) -> StudyResult:
        card = await self.generator.get_card(db, card_id, user_id)
        review = await self.scheduler.record_attempt(card.node_id, user_id, correct)

        logger.info("Flashcard %d studied: user=%s correct=%s", card.id, user_id, correct)
        return StudyResult(
            card_id=card.id,
            node_id=card.node_id,
            correct=correct,
            message="Correct!" if correct else "Keep studying!",
            mastery_score=review.mastery_score,
            review_interval=review.review_interval,
            next_review_date=review.next_review_date,
        )


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def parse_cards(raw: str) -> List[CardCandidate]:
    """
    Read card candidates from a model response.

    Accepts ``{"cards": [...]}``, ``{"flashcards": [...]}`` or a bare list.
    Unknown difficulty and category values fall back to medium / concept.
    """
    ok, payload = parse_json_robust(raw)
    if not ok:
        logger.warning("Flashcard response is not valid JSON")
        return []

    if isinstance(payload, dict):
        items = payload.get("cards", payload.get("flashcards"))
    else:
        items = payload
    if not isinstance(items, list):
        return []

    candidates: List[CardCandidate] = []
    for item in items[:MAX_CARD_COUNT * 2]:
        if not isinstance(item, dict):
            continue
        candidates.append(
            CardCandidate(
                front=_text(item.get("front"))[:MAX_FRONT_CHARS],
                back=_text(item.get("back"))[:MAX_BACK_CHARS],
                node_ref=_text(item.get("concept") or item.get("node_id")),
                difficulty=_choice(item.get("difficulty"), DIFFICULTIES, "medium"),
                category=_choice(item.get("category"), CATEGORIES, "concept"),
            )
        )
    return candidates


def fallback_card(node: Node) -> CardCandidate:
    return CardCandidate(
        front=f"What is {node.title}?",
        back=node.summary or node.title,
        node_ref=str(node.id),
        difficulty=LEVEL_DIFFICULTY.get(node.level, "medium"),
        category="concept",
    )


def _choice(value: Any, allowed: Sequence[str], default: str) -> str:
    text = _text(value).lower()
    return text if text in allowed else default


def _text(value: Any) -> str:
    if value is None or isinstance(value, (dict, list)):
        return ""
    return str(value).strip()
