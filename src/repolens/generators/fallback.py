"""Local, AI-free architecture sketch built from the directory tree.

Used whenever the inference endpoint cannot produce a diagram.  The output
is always a valid Mermaid flowchart, carries a visible "Offline Mode"
marker and never depends on anything but the tree itself.
"""

from __future__ import annotations

from collections import deque
from typing import Optional

from ..core.models import TreeNode
from .diagram import DEFAULT_CLASS_DEF, quote_label

MAX_DEPTH = 1
MAX_NODES = 15

EXCLUDED_DIRS = frozenset({
    "node_modules", ".git", "dist", "build", "__pycache__",
    ".venv", "venv", "coverage", "target",
})

IMPORTANT_FILES = frozenset({
    "package.json", "README.md", "Dockerfile", "compose.yml",
    "docker-compose.yml", "pyproject.toml", "setup.py", "requirements.txt",
    "Cargo.toml", "go.mod", "Makefile",
})

STATUS_CLASS_DEF = "classDef status fill:#374151,stroke:#6b7280,stroke-dasharray: 5 5;"
OFFLINE_MARKER = 'fallback["⚠️ Offline Mode"]:::status'


def _relevant(child: TreeNode, depth: int) -> bool:
    if child.is_dir:
        return child.name not in EXCLUDED_DIRS
    return depth == 0 and child.name in IMPORTANT_FILES


def synthesize_from_tree(tree: Optional[TreeNode]) -> str:
    """Sketch the top of *tree* as ``root --> node_N`` edges.

    Top-level directories and well-known project files come first, then
    the directories one level below them, up to ``MAX_NODES`` nodes.
    """
    lines = [
        "graph TD",
        f"    {DEFAULT_CLASS_DEF}",
        f"    {STATUS_CLASS_DEF}",
        '    subgraph Status ["Metadata"]',
        "        direction TB",
        f"        {OFFLINE_MARKER}",
        "    end",
        '    root["Repository Root"]',
    ]
    if tree is None:
        return "\n".join(lines)

    count = 0
    queue: deque[tuple[TreeNode, str, int]] = deque([(tree, "root", 0)])
    while queue and count < MAX_NODES:
        node, parent_id, depth = queue.popleft()
        for child in node.children or []:
            if count >= MAX_NODES:
                break
            if not _relevant(child, depth):
                continue
            child_id = f"node_{count}"
            count += 1
            lines.append(f'    {parent_id} --> {child_id}["{quote_label(child.name)}"]')
            if child.is_dir and depth < MAX_DEPTH:
                queue.append((child, child_id, depth + 1))
    return "\n".join(lines)
