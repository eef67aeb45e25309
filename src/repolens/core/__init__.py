"""Data models, static analysis, caching and repository fetching."""

from .analyzer import analyze, analyze_codebase
from .cache import CacheKind, FileStorage, MemoryStorage, ResponseCache
from .fetcher import GitHubClient, parse_github_url
from .models import (
    ArchitectureData,
    CodebaseFacts,
    DiagramResult,
    Explanation,
    FileFacts,
    NodeKind,
    ResultStatus,
    TreeNode,
)

__all__ = [
    "analyze",
    "analyze_codebase",
    "CacheKind",
    "FileStorage",
    "MemoryStorage",
    "ResponseCache",
    "GitHubClient",
    "parse_github_url",
    "ArchitectureData",
    "CodebaseFacts",
    "DiagramResult",
    "Explanation",
    "FileFacts",
    "NodeKind",
    "ResultStatus",
    "TreeNode",
]
