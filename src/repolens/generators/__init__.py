"""Diagram synthesis: AI architecture, local fallback and PNG rendering."""

from .diagram import quote_label, sanitize_id, synthesize
from .fallback import synthesize_from_tree
from .renderer import MermaidRenderer

__all__ = [
    "quote_label",
    "sanitize_id",
    "synthesize",
    "synthesize_from_tree",
    "MermaidRenderer",
]
