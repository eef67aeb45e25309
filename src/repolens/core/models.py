"""Pydantic models shared by the analysis, prompting and rendering stages.

The architecture models accept the wire names the LLM is asked to produce
(``type``, ``from``, ``to``) while exposing Python-friendly attribute names.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Iterator, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..errors import FailureKind


# ---------------------------------------------------------------------------
# Repository tree
# ---------------------------------------------------------------------------

class NodeKind(str, Enum):
    """Kinds of entries in a repository tree."""
    FILE = "file"
    DIRECTORY = "dir"


class TreeNode(BaseModel):
    """One entry of a repository directory tree.

    Produced by the content-hosting client and consumed read-only by the
    prompt builders and the fallback diagram.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str
    path: str = ""
    kind: NodeKind = Field(default=NodeKind.FILE, alias="type")
    children: Optional[list[TreeNode]] = None
    size: Optional[int] = None
    download_url: Optional[str] = None

    @property
    def is_dir(self) -> bool:
        return self.kind == NodeKind.DIRECTORY

    def iter_nodes(self) -> Iterator[TreeNode]:
        """Yield every descendant (depth-first, self excluded)."""
        for child in self.children or []:
            yield child
            yield from child.iter_nodes()

    def iter_files(self) -> Iterator[TreeNode]:
        return (n for n in self.iter_nodes() if not n.is_dir)

    def count(self, kind: NodeKind) -> int:
        return sum(1 for n in self.iter_nodes() if n.kind == kind)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TreeNode:
        """Build a tree from a plain dict using GitHub-style ``type`` keys."""
        return cls.model_validate(data)


TreeNode.model_rebuild()


# ---------------------------------------------------------------------------
# Static analysis facts
# ---------------------------------------------------------------------------

class FileFacts(BaseModel):
    """Facts extracted from a single source file."""

    model_config = ConfigDict(frozen=True)

    file: str
    imports: list[str] = Field(default_factory=list)
    exports: list[str] = Field(default_factory=list)
    reactive_calls: list[str] = Field(default_factory=list)  # deduplicated
    network_calls: list[str] = Field(default_factory=list)


class CodebaseFacts(BaseModel):
    """Aggregate facts handed to the architecture prompt."""
    files: list[FileFacts] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Architecture model
# ---------------------------------------------------------------------------

class ComponentKind(str, Enum):
    SERVICE = "service"
    CONTROLLER = "controller"
    MODEL = "model"
    VIEW = "view"
    UTILITY = "utility"
    COMPONENT = "component"
    CONTEXT = "context"
    HOOK = "hook"


class Layer(str, Enum):
    PRESENTATION = "presentation"
    STATE = "state"
    SERVICES = "services"
    DATA = "data"
    INFRASTRUCTURE = "infrastructure"
    EXTERNAL = "external"


class RelationshipKind(str, Enum):
    CALLS = "calls"
    DEPENDS_ON = "depends_on"
    IMPORTS = "imports"
    INHERITS = "inherits"
    USES = "uses"
    PROVIDES = "provides"


def _normalize_enum_value(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower().replace(" ", "_").replace("-", "_")
    return value


class ArchitectureComponent(BaseModel):
    """A logical block of the analysed system."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(min_length=1)
    name: str
    kind: ComponentKind = Field(alias="type")
    layer: Layer
    responsibilities: list[str] = Field(default_factory=list)

    @field_validator("kind", "layer", mode="before")
    @classmethod
    def _normalize(cls, value: Any) -> Any:
        return _normalize_enum_value(value)


class ArchitectureRelationship(BaseModel):
    """A directed edge between two components."""

    model_config = ConfigDict(populate_by_name=True)

    source: str = Field(alias="from")
    target: str = Field(alias="to")
    kind: RelationshipKind = Field(default=RelationshipKind.DEPENDS_ON, alias="type")
    description: Optional[str] = None

    @field_validator("kind", mode="before")
    @classmethod
    def _normalize(cls, value: Any) -> Any:
        return _normalize_enum_value(value)


class ArchitectureData(BaseModel):
    """Validated architecture extracted from one diagram request."""

    components: list[ArchitectureComponent] = Field(default_factory=list)
    relationships: list[ArchitectureRelationship] = Field(default_factory=list)
    layers: list[str] = Field(default_factory=list)

    @property
    def component_ids(self) -> set[str]:
        return {c.id for c in self.components}

    def dangling_relationships(self) -> list[ArchitectureRelationship]:
        ids = self.component_ids
        return [r for r in self.relationships if r.source not in ids or r.target not in ids]


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

class ResultStatus(str, Enum):
    """Outcome of an AI-backed operation."""
    SUCCESS = "success"
    DEGRADED = "degraded"
    FALLBACK = "fallback"


class Explanation(BaseModel):
    """Free-text result of an explanation or question."""

    content: str
    code_snippets: list[str] = Field(default_factory=list)
    status: ResultStatus = ResultStatus.SUCCESS
    failure: Optional[FailureKind] = None
    model: Optional[str] = None
    cached: bool = False

    @property
    def ok(self) -> bool:
        return self.status == ResultStatus.SUCCESS


class DiagramResult(BaseModel):
    """Mermaid markup for the architecture view, AI-produced or local."""

    mermaid: str
    status: ResultStatus = ResultStatus.SUCCESS
    failure: Optional[FailureKind] = None
    cached: bool = False
    architecture: Optional[ArchitectureData] = None
    trace: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == ResultStatus.SUCCESS
