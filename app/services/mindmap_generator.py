"""
Knowledge structuring engine: validated text → three-level mind map.

Public API
----------
KnowledgeStructuringEngine.build_outline(text, chunks) -> StructuringResult
    Ask the model for an outline, validate its topology, lay it out.  Falls
    back to a deterministic chunk-based outline on any failure.

KnowledgeStructuringEngine.persist(db, document_id, result) -> List[Node]
    Insert every node in one flush (no commit; the caller owns the
    transaction).

Only the model's *topology* (title, summary, level, parent reference,
evidence) is used.  Coordinates and colours always come from
``app.services.layout``.

Topology repair rules
---------------------
* entries without a title or with a level outside 0–2 are skipped;
* the first level-0 entry is the root, further level-0 entries are dropped
  together with their descendants;
* a level-1 entry without a parent reference is attached to the root;
  any other parent reference must name the root;
* a level-2 entry must reference a kept level-1 entry;
* entries whose parent is missing or at the wrong level are dropped, and
  their descendants with them;
* over the 100-node ceiling the deepest entries go first: level-2 entries
  are cut before level-1 entries, later entries before earlier ones.
"""
from __future__ import annotations

import dataclasses
import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.database_models import Node
from app.services.chunking import ChunkingService
from app.services.errors import StructuringError, StructuringParseError
from app.services.layout import apply_layout
from app.services.llm_service import parse_json_robust
from app.utils.helpers import normalize_whitespace, truncate_text

logger = logging.getLogger(__name__)

MAX_LEVEL = 2
MAX_NODES = 100
FALLBACK_BRANCHES = 8
FALLBACK_ROOT_TITLE = "Document Overview"


class TextGenerator(Protocol):
    async def complete(self, prompt: str, system: str = "") -> str: ...


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------

@dataclasses.dataclass
class OutlineNode:
    """One validated outline entry before persistence."""

    ref: str
    title: str
    summary: str
    level: int
    parent_ref: Optional[str] = None
    evidence: str = ""
    x: float = 0.0
    y: float = 0.0
    color: Optional[str] = None


@dataclasses.dataclass
class StructuringResult:
    """Outline ready to persist, plus how it was obtained."""

    title: str
    nodes: List[OutlineNode]
    used_fallback: bool = False
    fallback_reason: Optional[str] = None


# ---------------------------------------------------------------------------
# Prompt templates
# ---------------------------------------------------------------------------

_SYSTEM_PROMPT = (
    "You are an expert at creating educational mind maps. Generate structured, "
    "hierarchical mind maps that facilitate learning. Respond with JSON only."
)

_OUTLINE_PROMPT = """\
Create a mind map from the document below.

Rules:
- Exactly three levels: level 0 is the single main topic, level 1 are key
  concepts, level 2 are specific details of a concept.
- Exactly one level-0 node. 3-6 level-1 nodes, each with 2-3 level-2 nodes.
- Never more than {max_nodes} nodes in total.
- Every level-1 node's parent_id is the level-0 node's id; every level-2
  node's parent_id is the id of its level-1 concept.
- "evidence" is a short verbatim excerpt from the document supporting the node.
- Layout is handled by the application: the topic is anchored on the left,
  concepts fan out to its right, details extend further right in the same
  direction as their concept. Do not output coordinates.

Respond ONLY with valid JSON. No explanation, no markdown:
{{"title": "Main Topic Title", "nodes": [
  {{"id": "n1", "title": "Main Topic", "summary": "One-sentence summary", "level": 0, "parent_id": null, "evidence": "..."}},
  {{"id": "n2", "title": "Key Concept", "summary": "...", "level": 1, "parent_id": "n1", "evidence": "..."}},
  {{"id": "n3", "title": "Specific Detail", "summary": "...", "level": 2, "parent_id": "n2", "evidence": "..."}}
]}}

Document content:
---
{content}
---\
"""


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class KnowledgeStructuringEngine:
    """Turns validated document text into a laid-out mind map outline."""

    SYSTEM_PROMPT = _SYSTEM_PROMPT
    OUTLINE_PROMPT = _OUTLINE_PROMPT

    def __init__(
        self,
        llm: TextGenerator,
        chunker: Optional[ChunkingService] = None,
        input_chars: Optional[int] = None,
    ) -> None:
        self.llm = llm
        self.chunker = chunker or ChunkingService()
        self.input_chars = input_chars or settings.STRUCTURING_INPUT_CHARS

    async def build_outline(
        self,
        text: str,
        chunks: Optional[Sequence[str]] = None,
    ) -> StructuringResult:
        """
        Generate, validate and lay out an outline for *text*.

        Never raises for model problems: unavailable model, unparseable
        output and empty or rootless outlines all produce the fallback.
        """
        try:
            result = await self._generate(text)
        except Exception as exc:
            logger.warning("Structuring failed, using fallback outline: %s", exc)
            result = self.build_fallback(text, chunks)
            result.fallback_reason = str(exc)[:500]

        apply_layout(result.nodes)
        logger.info(
            "Outline '%s': %d nodes (fallback=%s)",
            result.title,
            len(result.nodes),
            result.used_fallback,
        )
        return result

    async def _generate(self, text: str) -> StructuringResult:
        prompt = self.OUTLINE_PROMPT.format(
            max_nodes=MAX_NODES,
            content=text[: self.input_chars],
        )
        raw = await self.llm.complete(prompt, self.SYSTEM_PROMPT)
        title, parsed = parse_outline(raw)
        nodes = normalize_topology(parsed)
        return StructuringResult(title=title or nodes[0].title, nodes=nodes)

    def build_fallback(
        self,
        text: str,
        chunks: Optional[Sequence[str]] = None,
    ) -> StructuringResult:
        """
        Deterministic outline: one overview root plus up to 8 level-1 nodes,
        one per leading chunk of the text.
        """
        if not chunks:
            chunks = [c["content"] for c in self.chunker.chunk_text(text)]

        clean_text = normalize_whitespace(text)
        root = OutlineNode(
            ref="root",
            title=FALLBACK_ROOT_TITLE,
            summary=truncate_text(clean_text, 200) or FALLBACK_ROOT_TITLE,
            level=0,
            evidence=clean_text[:300],
        )
        nodes = [root]

        for index, chunk in enumerate(list(chunks)[:FALLBACK_BRANCHES], start=1):
            body = normalize_whitespace(chunk)
            if not body:
                continue
            nodes.append(
                OutlineNode(
                    ref=f"chunk-{index}",
                    title=truncate_text(body, 50),
                    summary=truncate_text(body, 300),
                    level=1,
                    parent_ref=root.ref,
                    evidence=body[:500],
                )
            )

        return StructuringResult(title=FALLBACK_ROOT_TITLE, nodes=nodes, used_fallback=True)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def persist(
        self,
        db: AsyncSession,
        document_id: int,
        result: StructuringResult,
    ) -> List[Node]:
        """Add every outline node to the session and flush once."""
        by_ref: Dict[str, Node] = {}
        rows: List[Node] = []

        for item in sorted(result.nodes, key=lambda n: n.level):
            row = Node(
                document_id=document_id,
                title=truncate_text(item.title, 255),
                summary=item.summary,
                level=item.level,
                position_x=item.x,
                position_y=item.y,
                color=item.color,
                metadata_json={
                    "ai_generated": not result.used_fallback,
                    "source_ref": item.ref,
                    "evidence": item.evidence,
                },
            )
            if item.parent_ref is not None:
                row.parent = by_ref[item.parent_ref]
            by_ref[item.ref] = row
            rows.append(row)

        db.add_all(rows)
        await db.flush()
        logger.info("Persisted %d nodes for document %d", len(rows), document_id)
        return rows


# ---------------------------------------------------------------------------
# Parsing and validation
# ---------------------------------------------------------------------------

def parse_outline(raw: str) -> tuple:
    """
    Parse the model's response into ``(title, [OutlineNode, ...])``.

    Accepts either ``{"title": ..., "nodes": [...]}`` or a bare node list.
    Entries failing basic field checks are skipped here; topology is
    checked by ``normalize_topology``.

    Raises:
        StructuringParseError: the response is not JSON or has no node list.
    """
    ok, payload = parse_json_robust(raw)
    if not ok:
        raise StructuringParseError("model response is not valid JSON")

    title = ""
    if isinstance(payload, dict):
        title = _as_text(payload.get("title"))
        items = payload.get("nodes")
    else:
        items = payload

    if not isinstance(items, list):
        raise StructuringParseError("model response has no node list")

    nodes: List[OutlineNode] = []
    seen_refs = set()
    for position, item in enumerate(items):
        node = _coerce_node(item, position)
        if node is None:
            continue
        if node.ref in seen_refs:
            logger.debug("Skipping duplicate node id %r", node.ref)
            continue
        seen_refs.add(node.ref)
        nodes.append(node)

    return title, nodes


def normalize_topology(nodes: List[OutlineNode]) -> List[OutlineNode]:
    """
    Enforce the single-root, parent-one-level-up, ≤100-node invariants.

    Raises:
        StructuringError: no level-0 node survives.
    """
    roots = [n for n in nodes if n.level == 0]
    if not roots:
        raise StructuringError("outline has no level-0 node")

    root = roots[0]
    root.parent_ref = None
    if len(roots) > 1:
        logger.debug("Dropping %d extra level-0 nodes", len(roots) - 1)

    branches: List[OutlineNode] = []
    for node in nodes:
        if node.level != 1:
            continue
        if node.parent_ref is None:
            node.parent_ref = root.ref
        if node.parent_ref == root.ref:
            branches.append(node)
        else:
            logger.debug("Dropping level-1 node %r with parent %r", node.title, node.parent_ref)

    branch_refs = {b.ref for b in branches}
    leaves: List[OutlineNode] = []
    for node in nodes:
        if node.level != 2:
            continue
        if node.parent_ref in branch_refs:
            leaves.append(node)
        else:
            logger.debug("Dropping level-2 node %r with parent %r", node.title, node.parent_ref)

    kept = ([root] + branches + leaves)[:MAX_NODES]
    if len(kept) < 1 + len(branches) + len(leaves):
        logger.info(
            "Outline truncated from %d to %d nodes",
            1 + len(branches) + len(leaves),
            len(kept),
        )

    kept_refs = {n.ref for n in kept}
    return [n for n in kept if n.parent_ref is None or n.parent_ref in kept_refs]


def _coerce_node(item: Any, position: int) -> Optional[OutlineNode]:
    if not isinstance(item, dict):
        return None

    title = _as_text(item.get("title") or item.get("text"))
    if not title:
        return None

    level = item.get("level")
    if isinstance(level, bool):
        return None
    try:
        level = int(level)
    except (TypeError, ValueError):
        return None
    if level < 0 or level > MAX_LEVEL:
        return None

    ref = _as_text(item.get("id")) or f"pos-{position}"
    parent = item.get("parent_id", item.get("parent"))
    parent_ref = _as_text(parent) or None

    return OutlineNode(
        ref=ref,
        title=title,
        summary=_as_text(item.get("summary") or item.get("content")),
        level=level,
        parent_ref=parent_ref,
        evidence=_as_text(item.get("evidence") or item.get("evidence_excerpt")),
    )


def _as_text(value: Any) -> str:
    if value is None or isinstance(value, (dict, list)):
        return ""
    return str(value).strip()
