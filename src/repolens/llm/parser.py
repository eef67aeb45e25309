"""Turn raw endpoint responses into text, JSON and validated architecture.

The producer is unreliable: answers arrive fenced or bare, wrapped in prose,
cut off by the output-token limit or blocked by safety filters.  Every
failure is raised as a ``ContentError`` carrying a ``FailureKind`` so the
retry policy and the pipeline can tell them apart.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Iterator, Optional, Sequence

from pydantic import ValidationError

from ..core.models import (
    ArchitectureComponent,
    ArchitectureData,
    ArchitectureRelationship,
)
from ..errors import ContentError, FailureKind
from .providers import RawResponse

logger = logging.getLogger(__name__)

_SAFETY_REASONS = {"SAFETY", "RECITATION", "PROHIBITED_CONTENT", "BLOCKLIST", "SPII", "CONTENT_FILTER"}
_LENGTH_REASONS = {"MAX_TOKENS", "LENGTH"}

_FENCED_TAGGED_RE = re.compile(r"```json\s*\n?([\s\S]*?)```", re.IGNORECASE)
_FENCED_BARE_RE = re.compile(r"```[A-Za-z0-9_-]*\s*\n?([\s\S]*?)```")
_CODE_BLOCK_RE = re.compile(r"```[\s\S]*?```")
_FUNCTION_LINE_RE = re.compile(r"^\s*FUNCTION_(\d+)\s*:\s*(.*)$", re.MULTILINE)

NO_EXPLANATION = "No explanation available"


def _reason(value: Optional[str]) -> str:
    return (value or "").upper()


def hit_length_limit(raw: RawResponse) -> bool:
    return _reason(raw.finish_reason) in _LENGTH_REASONS


def extract_text(raw: RawResponse) -> str:
    """Return the usable text of *raw* or raise ``ContentError``."""
    if raw.block_reason:
        raise ContentError(f"Prompt blocked: {raw.block_reason}", FailureKind.SAFETY)
    if _reason(raw.finish_reason) in _SAFETY_REASONS:
        raise ContentError(f"Response blocked: {raw.finish_reason}", FailureKind.SAFETY)

    text = (raw.text or "").strip()
    if hit_length_limit(raw):
        if not text:
            raise ContentError("Output token limit reached before any text", FailureKind.MAX_TOKENS)
        logger.warning("Response from %s was cut by the output token limit", raw.model)
        return text
    if not text:
        raise ContentError("Empty response", FailureKind.EMPTY)
    return text


# ---------------------------------------------------------------------------
# JSON extraction
# ---------------------------------------------------------------------------

def _fenced_tagged(text: str) -> Iterator[str]:
    for match in _FENCED_TAGGED_RE.finditer(text):
        yield match.group(1)


def _fenced_bare(text: str) -> Iterator[str]:
    for match in _FENCED_BARE_RE.finditer(text):
        yield match.group(1)


def _raw(text: str) -> Iterator[str]:
    yield text


def _trimmed_prose(text: str) -> Iterator[str]:
    # Outermost object first, then outermost array.
    for opener, closer in (("{", "}"), ("[", "]")):
        start = text.find(opener)
        end = text.rfind(closer)
        if start != -1 and end > start:
            yield text[start:end + 1]


JSON_STRATEGIES: list[tuple[str, Callable[[str], Iterator[str]]]] = [
    ("fenced_tagged", _fenced_tagged),
    ("fenced_bare", _fenced_bare),
    ("raw", _raw),
    ("trimmed_prose", _trimmed_prose),
]


def extract_json(text: str) -> Any:
    """Parse the first JSON candidate found by ``JSON_STRATEGIES``.

    Raises ``ContentError(INVALID_JSON)`` when no candidate parses.
    """
    for name, strategy in JSON_STRATEGIES:
        for candidate in strategy(text):
            candidate = candidate.strip()
            if not candidate:
                continue
            try:
                data = json.loads(candidate)
            except ValueError:
                continue
            logger.debug("JSON extracted with strategy %s", name)
            return data
    raise ContentError("Response contained no parsable JSON", FailureKind.INVALID_JSON)


# ---------------------------------------------------------------------------
# Architecture
# ---------------------------------------------------------------------------

def _validate_components(items: Any) -> list[ArchitectureComponent]:
    components: list[ArchitectureComponent] = []
    seen: set[str] = set()
    for item in items if isinstance(items, list) else []:
        try:
            component = ArchitectureComponent.model_validate(item)
        except ValidationError as exc:
            logger.debug("Dropping invalid component %r: %s", item, exc)
            continue
        if component.id in seen:
            logger.debug("Dropping duplicate component id %s", component.id)
            continue
        seen.add(component.id)
        components.append(component)
    return components


def _validate_relationships(items: Any, ids: set[str]) -> list[ArchitectureRelationship]:
    relationships: list[ArchitectureRelationship] = []
    for item in items if isinstance(items, list) else []:
        try:
            rel = ArchitectureRelationship.model_validate(item)
        except ValidationError as exc:
            logger.debug("Dropping invalid relationship %r: %s", item, exc)
            continue
        if rel.source not in ids or rel.target not in ids:
            logger.debug("Dropping relationship %s -> %s: unknown endpoint", rel.source, rel.target)
            continue
        relationships.append(rel)
    return relationships


def parse_architecture(data: Any) -> ArchitectureData:
    """Validate decoded JSON into ``ArchitectureData``, repairing what it can."""
    if not isinstance(data, dict):
        raise ContentError("Architecture JSON must be an object", FailureKind.SCHEMA)

    components = _validate_components(data.get("components"))
    if not components:
        raise ContentError("Architecture has no valid components", FailureKind.SCHEMA)

    ids = {c.id for c in components}
    raw_layers = data.get("layers")
    if not isinstance(raw_layers, list):
        if raw_layers is not None:
            logger.debug("Ignoring non-list layers %r", raw_layers)
        raw_layers = []
    layers = [layer for layer in raw_layers if isinstance(layer, str) and layer.strip()]
    return ArchitectureData(
        components=components,
        relationships=_validate_relationships(data.get("relationships"), ids),
        layers=layers,
    )


def extract_architecture(raw: RawResponse) -> ArchitectureData:
    text = extract_text(raw)
    try:
        data = extract_json(text)
    except ContentError:
        if hit_length_limit(raw):
            raise ContentError(
                "Architecture JSON cut by the output token limit",
                FailureKind.MAX_TOKENS,
            ) from None
        raise
    return parse_architecture(data)


# ---------------------------------------------------------------------------
# Free-text helpers
# ---------------------------------------------------------------------------

def extract_code_snippets(text: str) -> list[str]:
    return _CODE_BLOCK_RE.findall(text)


def parse_function_summaries(text: str, names: Sequence[str]) -> dict[str, str]:
    """Map ``FUNCTION_n: ...`` answer lines back onto *names* (1-based)."""
    answers: dict[int, str] = {}
    for match in _FUNCTION_LINE_RE.finditer(text):
        index = int(match.group(1))
        answer = match.group(2).strip()
        if answer and index not in answers:
            answers[index] = answer
    return {
        name: answers.get(i, NO_EXPLANATION)
        for i, name in enumerate(names, start=1)
    }
