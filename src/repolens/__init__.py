"""repolens — explain GitHub repositories and sketch their architecture with an LLM."""

__version__ = "0.1.0"

from .core.models import DiagramResult, Explanation, ResultStatus, TreeNode  # noqa: E402
from .pipeline import DiagramState, RepoLens  # noqa: E402

__all__ = [
    "__version__",
    "DiagramResult",
    "DiagramState",
    "Explanation",
    "RepoLens",
    "ResultStatus",
    "TreeNode",
]
