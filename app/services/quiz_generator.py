"""
Assessment generator: multiple-choice questions for mind map nodes.

Flow per node:
  1. gather the node plus up to 10 related nodes of the same document;
  2. ask the model for 3-5 questions;
  3. drop candidates failing structural checks;
  4. drop near-duplicates of the node's existing questions (and of earlier
     candidates in the same batch);
  5. if nothing survives and the node has no questions yet, add one
     deterministic fallback question.

Model failures never escape ``generate_for_node``; database errors do.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional, Protocol, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.database_models import Node, Question, QuestionType
from app.services.llm_service import parse_json_robust
from app.utils.helpers import jaccard_similarity, normalize_answer, question_tokens

logger = logging.getLogger(__name__)

DISTRACTOR_COUNT = 3
DUPLICATE_THRESHOLD = 0.8
MAX_RELATED_NODES = 10
MIN_QUESTIONS = 3
MAX_QUESTIONS = 5

FALLBACK_DISTRACTORS = (
    "A related but different concept",
    "An unrelated topic",
    "None of the above",
    "All of the above",
)


class TextGenerator(Protocol):
    async def complete(self, prompt: str, system: str = "") -> str: ...


class DuplicateDetector(Protocol):
    def is_duplicate(self, candidate: str, existing: Sequence[str]) -> bool: ...


class JaccardDuplicateDetector:
    """Bag-of-words near-duplicate check on question texts."""

    def __init__(self, threshold: float = DUPLICATE_THRESHOLD) -> None:
        self.threshold = threshold

    def similarity(self, a: str, b: str) -> float:
        return jaccard_similarity(question_tokens(a), question_tokens(b))

    def is_duplicate(self, candidate: str, existing: Sequence[str]) -> bool:
        return any(self.similarity(candidate, other) > self.threshold for other in existing)


@dataclass
class QuestionCandidate:
    question: str
    correct_answer: str
    distractors: List[str]
    evidence_anchor: str


@dataclass
class GenerationResult:
    node_id: int
    questions: List[Question] = field(default_factory=list)
    used_fallback: bool = False
    rejected: int = 0


_SYSTEM_PROMPT = (
    "You are an expert educator creating multiple-choice quiz questions. "
    "Every question must be answerable from the provided material. "
    "Respond with JSON only."
)

_QUESTION_PROMPT = """\
Create between {min_q} and {max_q} multiple-choice questions about the concept below.

Concept: {title}
Description: {summary}
Source evidence: {evidence}

Related concepts from the same document (use them to make wrong answers
plausible, do not copy them as questions):
{related}

Requirements:
- Each question has exactly one correct answer and exactly three wrong answers.
- Wrong answers must differ from the correct answer.
- "evidence_anchor" quotes the text that supports the correct answer.
- Do not repeat these existing questions:
{existing}

Respond ONLY with valid JSON. No explanation, no markdown:
{{"questions": [{{"question": "...", "correct_answer": "...", "distractors": ["...", "...", "..."], "evidence_anchor": "..."}}]}}\
"""


class AssessmentGenerator:
    """Generates, validates, deduplicates and stores questions for nodes."""

    SYSTEM_PROMPT = _SYSTEM_PROMPT
    QUESTION_PROMPT = _QUESTION_PROMPT

    def __init__(
        self,
        llm: TextGenerator,
        duplicate_detector: Optional[DuplicateDetector] = None,
    ) -> None:
        self.llm = llm
        self.duplicate_detector = duplicate_detector or JaccardDuplicateDetector()

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def generate_for_node(self, db: AsyncSession, node: Node) -> GenerationResult:
        """
        Generate and add questions for *node*.

        Flushes but does not commit; the caller owns the transaction.
        """
        existing = await self.get_questions(db, node.id)
        existing_texts = [q.question for q in existing]
        related = await self._related_nodes(db, node)

        candidates: List[QuestionCandidate] = []
        try:
            raw = await self.llm.complete(
                self._build_prompt(node, related, existing_texts),
                self.SYSTEM_PROMPT,
            )
            candidates = parse_candidates(raw)
        except Exception as exc:
            logger.warning("Question generation failed for node %d: %s", node.id, exc)

        accepted = self.filter_candidates(candidates, existing_texts)
        result = GenerationResult(node_id=node.id, rejected=len(candidates) - len(accepted))

        if not accepted and not existing:
            logger.warning("No usable questions for node %d, using fallback", node.id)
            accepted = [fallback_question(node)]
            result.used_fallback = True

        for candidate in accepted:
            result.questions.append(
                Question(
                    node_id=node.id,
                    question_type=QuestionType.MCQ,
                    question=candidate.question,
                    correct_answer=candidate.correct_answer,
                    distractors=candidate.distractors,
                    evidence_anchor=candidate.evidence_anchor,
                    metadata_json={
                        "ai_generated": not result.used_fallback,
                        "fallback": result.used_fallback,
                    },
                )
            )

        db.add_all(result.questions)
        await db.flush()
        logger.info(
            "Node %d: %d questions added, %d rejected (fallback=%s)",
            node.id,
            len(result.questions),
            result.rejected,
            result.used_fallback,
        )
        return result

    def filter_candidates(
        self,
        candidates: Iterable[QuestionCandidate],
        existing_texts: Sequence[str],
    ) -> List[QuestionCandidate]:
        """Structural check, then duplicate check against stored and accepted questions."""
        seen = list(existing_texts)
        accepted: List[QuestionCandidate] = []
        for candidate in candidates:
            if not is_well_formed(candidate):
                logger.debug("Rejected malformed question: %r", candidate.question)
                continue
            if self.duplicate_detector.is_duplicate(candidate.question, seen):
                logger.debug("Rejected near-duplicate question: %r", candidate.question)
                continue
            accepted.append(candidate)
            seen.append(candidate.question)
        return accepted

    async def _related_nodes(self, db: AsyncSession, node: Node) -> List[Node]:
        """Siblings first, then parent and children, then the rest of the document."""
        result = await db.execute(
            select(Node)
            .where(Node.document_id == node.document_id, Node.id != node.id)
            .order_by(Node.level, Node.id)
        )
        others = list(result.scalars().all())

        def rank(other: Node) -> int:
            if node.parent_id is not None and other.parent_id == node.parent_id:
                return 0
            if other.id == node.parent_id or other.parent_id == node.id:
                return 1
            return 2

        others.sort(key=rank)
        return others[:MAX_RELATED_NODES]

    def _build_prompt(
        self,
        node: Node,
        related: Sequence[Node],
        existing_texts: Sequence[str],
    ) -> str:
        evidence = (node.metadata_json or {}).get("evidence") or node.summary or node.title
        related_lines = "\n".join(
            f"- {n.title}: {n.summary or ''}".rstrip(": ") for n in related
        ) or "- (none)"
        existing_lines = "\n".join(f"- {q}" for q in existing_texts) or "- (none)"
        return self.QUESTION_PROMPT.format(
            min_q=MIN_QUESTIONS,
            max_q=MAX_QUESTIONS,
            title=node.title,
            summary=node.summary or node.title,
            evidence=evidence,
            related=related_lines,
            existing=existing_lines,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_questions(self, db: AsyncSession, node_id: int) -> List[Question]:
        result = await db.execute(
            select(Question).where(Question.node_id == node_id).order_by(Question.id)
        )
        return list(result.scalars().all())

    async def get_document_questions(self, db: AsyncSession, document_id: int) -> List[Question]:
        result = await db.execute(
            select(Question)
            .join(Node, Question.node_id == Node.id)
            .where(Node.document_id == document_id)
            .order_by(Node.level, Node.id, Question.id)
        )
        return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Grading
# ---------------------------------------------------------------------------

def grade_answer(submitted: str, correct: str) -> bool:
    """Case-insensitive, whitespace-trimmed exact match."""
    return normalize_answer(submitted) == normalize_answer(correct)


# ---------------------------------------------------------------------------
# Parsing and validation
# ---------------------------------------------------------------------------

def parse_candidates(raw: str) -> List[QuestionCandidate]:
    """
    Read question candidates from a model response.

    Accepts ``{"questions": [...]}`` or a bare list.  Unparseable responses
    yield an empty list; fields are coerced to text but not validated here.
    """
    ok, payload = parse_json_robust(raw)
    if not ok:
        logger.warning("Question response is not valid JSON")
        return []

    items = payload.get("questions") if isinstance(payload, dict) else payload
    if not isinstance(items, list):
        return []

    candidates: List[QuestionCandidate] = []
    for item in items[:MAX_QUESTIONS * 2]:
        if not isinstance(item, dict):
            continue
        distractors = item.get("distractors")
        if not isinstance(distractors, list):
            distractors = []
        candidates.append(
            QuestionCandidate(
                question=_text(item.get("question")),
                correct_answer=_text(item.get("correct_answer") or item.get("answer")),
                distractors=[_text(d) for d in distractors],
                evidence_anchor=_text(item.get("evidence_anchor") or item.get("evidence")),
            )
        )
    return candidates


def is_well_formed(candidate: QuestionCandidate) -> bool:
    """Non-empty texts and exactly three distinct distractors, none equal to the answer."""
    if not (candidate.question and candidate.correct_answer and candidate.evidence_anchor):
        return False
    if len(candidate.distractors) != DISTRACTOR_COUNT:
        return False
    folded = {normalize_answer(d) for d in candidate.distractors}
    if "" in folded or len(folded) != DISTRACTOR_COUNT:
        return False
    return normalize_answer(candidate.correct_answer) not in folded


def fallback_question(node: Node) -> QuestionCandidate:
    evidence = (node.metadata_json or {}).get("evidence") or node.summary or node.title
    return QuestionCandidate(
        question=f"What is the main concept related to {node.title}?",
        correct_answer=node.title,
        distractors=[
            d for d in FALLBACK_DISTRACTORS
            if normalize_answer(d) != normalize_answer(node.title)
        ][:DISTRACTOR_COUNT],
        evidence_anchor=evidence,
    )


def _text(value: Any) -> str:
    if value is None or isinstance(value, (dict, list)):
        return ""
    return str(value).strip()
