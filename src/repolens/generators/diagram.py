"""Render an ``ArchitectureData`` into Mermaid flowchart markup.

Layout::

    graph TD
      subgraph layer_presentation ["Presentation"]
        ui["User Interface"]
      end
      ...
      ui -.->|"renders"| store
    classDef default fill:...;

Synthesis is pure and total for any validated ``ArchitectureData``.
"""

from __future__ import annotations

import logging
import re

from ..core.models import ArchitectureComponent, ArchitectureData, RelationshipKind

logger = logging.getLogger(__name__)

DEFAULT_CLASS_DEF = "classDef default fill:#1f2937,stroke:#3b82f6,stroke-width:2px,color:#fff;"

_DASHED_KINDS = {RelationshipKind.IMPORTS, RelationshipKind.USES}
_INVALID_ID_CHARS = re.compile(r"[^A-Za-z0-9_]")
_RESERVED = {"end", "graph", "subgraph", "flowchart", "classdef", "class", "style", "click", "default"}


def sanitize_id(value: str) -> str:
    """Map *value* onto Mermaid's identifier alphabet ``[A-Za-z0-9_]``."""
    cleaned = _INVALID_ID_CHARS.sub("_", value.strip()) or "_"
    if cleaned.lower() in _RESERVED:
        cleaned += "_"
    return cleaned


def quote_label(value: str) -> str:
    """Make *value* safe inside a double-quoted Mermaid label."""
    return " ".join(value.replace('"', "'").split())


def _ordered_layers(data: ArchitectureData) -> list[tuple[str, list[ArchitectureComponent]]]:
    by_layer: dict[str, list[ArchitectureComponent]] = {}
    for component in data.components:
        by_layer.setdefault(component.layer.value, []).append(component)

    groups: list[tuple[str, list[ArchitectureComponent]]] = []
    seen: set[str] = set()
    for title in data.layers:
        key = title.strip().lower()
        if key in seen:
            continue
        seen.add(key)
        members = by_layer.get(key)
        if members:
            groups.append((title.strip(), members))
    # Layers used by components but missing from the explicit order.
    for key, members in by_layer.items():
        if key not in seen:
            groups.append((key.replace("_", " ").title(), members))
    return groups


def synthesize(data: ArchitectureData) -> str:
    """Return Mermaid markup for *data*."""
    lines = ["graph TD"]
    emitted: set[str] = set()

    for title, members in _ordered_layers(data):
        lines.append(f'  subgraph {sanitize_id("layer_" + title.lower())} ["{quote_label(title)}"]')
        for component in members:
            node_id = sanitize_id(component.id)
            emitted.add(node_id)
            lines.append(f'    {node_id}["{quote_label(component.name)}"]')
        lines.append("  end")

    for rel in data.relationships:
        source, target = sanitize_id(rel.source), sanitize_id(rel.target)
        if source not in emitted or target not in emitted:
            logger.debug("Skipping edge %s -> %s: endpoint not rendered", rel.source, rel.target)
            continue
        arrow = "-.->" if rel.kind in _DASHED_KINDS else "-->"
        label = f'|"{quote_label(rel.description)}"|' if rel.description and rel.description.strip() else ""
        lines.append(f"  {source} {arrow}{label} {target}")

    lines.append(DEFAULT_CLASS_DEF)
    return "\n".join(lines)
