"""
Deterministic mind map layout.

Coordinates returned by the model are never trusted; every node is placed
from its level and sibling index only:

* the root sits at a fixed anchor on the left;
* level-1 nodes form a column at a fixed horizontal offset, evenly spaced
  and centred on the root.  The pitch is the height needed by the largest
  family of children (at least one sibling spacing), so neighbouring
  subtrees never overlap;
* level-2 nodes form a further column, evenly spaced around their parent's
  y-coordinate.

Colours follow the level-1 ancestor so a subtree can be traced visually.
"""
from __future__ import annotations

from typing import Dict, List, Protocol, Optional

ROOT_X = 100.0
ROOT_Y = 400.0
LEVEL1_OFFSET_X = 320.0
LEVEL2_OFFSET_X = 300.0
SIBLING_SPACING = 80.0

ROOT_COLOR = "#6366F1"
BRANCH_COLORS = (
    "#F97316",
    "#10B981",
    "#3B82F6",
    "#EC4899",
    "#EAB308",
    "#8B5CF6",
    "#14B8A6",
    "#EF4444",
)


class LayoutNode(Protocol):
    ref: str
    level: int
    parent_ref: Optional[str]
    x: float
    y: float
    color: Optional[str]


def branch_color(index: int) -> str:
    return BRANCH_COLORS[index % len(BRANCH_COLORS)]


def apply_layout(nodes: List[LayoutNode]) -> None:
    """
    Assign ``x``, ``y`` and ``color`` in place.

    Expects a topologically valid tree: one level-0 node, level-1 nodes
    pointing at it, level-2 nodes pointing at level-1 nodes.
    """
    root = next((n for n in nodes if n.level == 0), None)
    if root is None:
        return

    branches = [n for n in nodes if n.level == 1]
    children: Dict[str, List[LayoutNode]] = {b.ref: [] for b in branches}
    for node in nodes:
        if node.level == 2 and node.parent_ref in children:
            children[node.parent_ref].append(node)

    root.x, root.y, root.color = ROOT_X, ROOT_Y, ROOT_COLOR

    widest = max((len(children[b.ref]) for b in branches), default=0)
    pitch = max(1, widest) * SIBLING_SPACING
    middle = (len(branches) - 1) / 2.0

    for index, branch in enumerate(branches):
        branch.x = ROOT_X + LEVEL1_OFFSET_X
        branch.y = ROOT_Y + (index - middle) * pitch
        branch.color = branch_color(index)

        leaves = children[branch.ref]
        centre = (len(leaves) - 1) / 2.0
        for j, leaf in enumerate(leaves):
            leaf.x = branch.x + LEVEL2_OFFSET_X
            leaf.y = branch.y + (j - centre) * SIBLING_SPACING
            leaf.color = branch.color
