"""Regex-based static analysis feeding the architecture prompt.

No parser is involved: every rule works on raw text, so files with syntax
errors (or in a language we only partly understand) still yield whatever
facts can be matched.  Absence of a pattern simply yields empty lists.
"""

from __future__ import annotations

import logging
import re
from pathlib import PurePosixPath
from typing import Mapping

from .models import CodebaseFacts, FileFacts

logger = logging.getLogger(__name__)

SOURCE_EXTENSIONS = frozenset({".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs", ".py"})

# ── Patterns ──────────────────────────────────────────────────────────────

# One alternation so specifiers come out in discovery order.
_IMPORT_RE = re.compile(
    r"""
    \bimport\s+(?:type\s+)?[\w*\s{},$]+?\s+from\s+['"](?P<es>[^'"]+)['"]
    | \bexport\s+[\w*\s{},$]+?\s+from\s+['"](?P<reexport>[^'"]+)['"]
    | ^\s*import\s+['"](?P<bare>[^'"]+)['"]
    | \brequire\(\s*['"](?P<cjs>[^'"]+)['"]\s*\)
    | ^[ \t]*from\s+(?P<pyfrom>\.*[\w.]*)\s+import\b
    | ^[ \t]*import\s+(?P<py>[A-Za-z_][\w.]*)(?:\s+as\s+\w+)?\s*(?:[,#;]|$)
    """,
    re.MULTILINE | re.VERBOSE,
)

_EXPORT_RE = re.compile(
    r"\bexport\s+(?:default\s+)?(?:declare\s+)?(?:abstract\s+)?(?:async\s+)?"
    r"(?:class|function\*?|const|let|var|interface|type|enum)\s+([A-Za-z_$][\w$]*)"
)
_PY_EXPORT_RE = re.compile(r"^(?:async\s+)?(?:def|class)\s+([A-Za-z]\w*)", re.MULTILINE)

_HOOK_RE = re.compile(r"\b(use[A-Z]\w*)\s*\(")

_NETWORK_RE = re.compile(
    r"""
    (?<![\w.])(?P<callee>fetch
        | axios(?:\.(?:get|post|put|patch|delete|head|request))?
        | (?:requests|httpx)\.(?:get|post|put|patch|delete|head|request)
    )\(\s*['"`](?P<url>[^'"`]+)['"`]
    """,
    re.VERBOSE,
)


def _is_python(file_name: str) -> bool:
    return PurePosixPath(file_name).suffix.lower() == ".py"


def _dedupe(items: list[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out


def _imports(content: str, python: bool) -> list[str]:
    specifiers: list[str] = []
    for m in _IMPORT_RE.finditer(content):
        groups = ("pyfrom", "py") if python else ("es", "reexport", "bare", "cjs")
        for name in groups:
            value = m.group(name)
            if value:
                specifiers.append(value)
                break
    return specifiers


def _exports(content: str, python: bool) -> list[str]:
    if python:
        return [m.group(1) for m in _PY_EXPORT_RE.finditer(content)]
    return [m.group(1) for m in _EXPORT_RE.finditer(content)]


def analyze(file_name: str, content: str) -> FileFacts:
    """Extract imports, exports, hook-like calls and network calls.

    Never raises; anything unexpected produces an empty fact sheet.
    """
    try:
        python = _is_python(file_name)
        return FileFacts(
            file=file_name,
            imports=_imports(content, python),
            exports=_exports(content, python),
            reactive_calls=_dedupe([m.group(1) for m in _HOOK_RE.finditer(content)]),
            network_calls=[
                f"{m.group('callee')}({m.group('url')})"
                for m in _NETWORK_RE.finditer(content)
            ],
        )
    except Exception as exc:  # pragma: no cover - regexes are total on str
        logger.debug("Analysis of %s failed: %s", file_name, exc)
        return FileFacts(file=file_name)


def is_source_file(path: str) -> bool:
    return PurePosixPath(path).suffix.lower() in SOURCE_EXTENSIONS


def analyze_codebase(files: Mapping[str, str]) -> CodebaseFacts:
    """Analyse every source file in *files* (``path -> content``)."""
    facts = [analyze(path, content) for path, content in files.items() if is_source_file(path)]
    logger.debug("Analysed %d of %d files", len(facts), len(files))
    return CodebaseFacts(files=facts)
