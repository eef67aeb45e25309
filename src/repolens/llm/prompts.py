"""Prompt builders for every AI-backed operation.

All builders are pure: the same inputs always produce the same prompt.
Oversized content is cut with ``truncate_middle`` so the model still sees
the beginning (imports, declarations) and the end (exports, entry logic)
of a file.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Sequence

from ..core.models import CodebaseFacts, NodeKind, TreeNode

# ---------------------------------------------------------------------------
# Budgets (characters)
# ---------------------------------------------------------------------------

FILE_BUDGET = 15_000
QUESTION_BUDGET = 12_000
ARCHITECTURE_FACTS_BUDGET = 10_000
README_BUDGET = 8_000
FUNCTION_CODE_BUDGET = 500

MAX_TREE_DEPTH = 3
MAX_CHILDREN_PER_DIR = 20
MAX_COMPONENTS = 20

IGNORED_NAMES = frozenset({
    "node_modules", ".git", ".vscode", ".idea", "dist", "build", "coverage",
    "__pycache__", ".venv", "venv", ".tox", ".mypy_cache", ".pytest_cache",
    "target", ".next", "package-lock.json", "yarn.lock", "pnpm-lock.yaml",
    "poetry.lock", ".DS_Store",
})

_CODE_EXTENSIONS = {"py", "pyw", "js", "jsx", "ts", "tsx", "mjs", "cjs", "go", "rs", "java", "rb"}
_CONFIG_EXTENSIONS = {"toml", "yaml", "yml", "xml", "ini", "cfg"}

_NO_EXCUSES = (
    'DO NOT mention "incomplete context", "limited context", "insufficient '
    'context" or "need more information": analyse what IS provided.'
)


# ---------------------------------------------------------------------------
# Truncation
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Truncation:
    text: str
    omitted: int = 0

    @property
    def truncated(self) -> bool:
        return self.omitted > 0


def truncation_marker(omitted: int) -> str:
    return f"\n\n... [middle section truncated - {omitted} characters omitted] ...\n\n"


def truncate_middle(content: str, budget: int) -> Truncation:
    """Keep the first and last ``budget // 2`` characters of *content*."""
    if len(content) <= budget:
        return Truncation(content)
    half = budget // 2
    omitted = len(content) - 2 * half
    head = content[:half]
    tail = content[len(content) - half:] if half else ""
    return Truncation(f"{head}{truncation_marker(omitted)}{tail}", omitted)


# ---------------------------------------------------------------------------
# Tree outline
# ---------------------------------------------------------------------------

def _visible_children(node: TreeNode) -> list[TreeNode]:
    children = [c for c in node.children or [] if c.name not in IGNORED_NAMES]
    return sorted(children, key=lambda c: (not c.is_dir, c.name.lower()))


def render_tree_outline(
    node: TreeNode,
    *,
    max_depth: int = MAX_TREE_DEPTH,
    max_children: int = MAX_CHILDREN_PER_DIR,
) -> str:
    """Render *node* as an indented outline.

    Directories come first, ignored build/dependency entries are dropped and
    siblings beyond *max_children* collapse into a single ``+N more`` line.
    """
    lines: list[str] = []

    def walk(current: TreeNode, prefix: str, depth: int) -> None:
        if depth > max_depth:
            return
        children = _visible_children(current)
        visible = children[:max_children]
        hidden = len(children) - len(visible)
        for index, child in enumerate(visible):
            last = index == len(visible) - 1 and hidden == 0
            lines.append(f"{prefix}{'└── ' if last else '├── '}{child.name}{'/' if child.is_dir else ''}")
            if child.is_dir:
                walk(child, prefix + ("    " if last else "│   "), depth + 1)
        if hidden > 0:
            lines.append(f"{prefix}└── ... +{hidden} more")

    walk(node, "", 0)
    return "\n".join(lines)


def summarize_facts(facts: CodebaseFacts, budget: int = ARCHITECTURE_FACTS_BUDGET) -> Truncation:
    """Serialise static-analysis facts for the architecture prompt."""
    blocks = []
    for f in facts.files:
        blocks.append(
            f"File: {f.file}\n"
            f"  - Imports: {', '.join(f.imports) or '(none)'}\n"
            f"  - Exports: {', '.join(f.exports) or '(none)'}\n"
            f"  - Hooks: {', '.join(f.reactive_calls) or '(none)'}\n"
            f"  - API Calls: {', '.join(f.network_calls) or '(none)'}"
        )
    return truncate_middle("\n\n".join(blocks) or "(no source files analysed)", budget)


# ---------------------------------------------------------------------------
# Free-text builders
# ---------------------------------------------------------------------------

def build_repo_prompt(repo_name: str, tree: TreeNode | None, readme: str | None) -> str:
    """High-level explanation of a whole repository."""
    outline = render_tree_outline(tree) if tree is not None else "(structure unavailable)"
    readme_part = truncate_middle(readme, README_BUDGET).text if readme else "No README found"
    return f"""You are a senior developer explaining a GitHub repository to a teammate. Provide a high-level explanation of the repository "{repo_name}" and its structure. Based on the repository structure and README content below, explain:

1. What this project is and what problem it solves
2. The high-level architecture and organization
3. Key directories and their purposes
4. Any important configuration files
5. Main entry points
6. Technology stack used

Be conversational like a coworker. Explain the 'why' not just the 'what'. Point out interesting patterns. {_NO_EXCUSES}

REPOSITORY STRUCTURE:
```
{outline}
```

README CONTENT:
{readme_part}"""


def build_directory_prompt(dir_path: str, contents: Sequence[TreeNode], repo_name: str) -> str:
    """Short explanation of one directory."""
    listing = "\n".join(
        f"- {item.name} ({item.kind.value})"
        for item in contents[:MAX_CHILDREN_PER_DIR * 5]
    ) or "(empty)"
    return f"""Explain the "{dir_path}" directory of the {repo_name} repository:

Contents:
{listing}

Provide:
1. Purpose of this directory (1-2 sentences)
2. Key items and their roles
3. How it fits in the project

Be concise. {_NO_EXCUSES}"""


_FILE_GUIDANCE = {
    "code": """Provide a comprehensive explanation covering:

1. **Purpose & Overview**: What this file does and its role in the project (2-3 sentences)
2. **Key Components**: Main functions, classes, or components with their purposes
3. **Implementation Details**: Important patterns, algorithms, or logic flows
4. **Dependencies**: Key imports and how they're used
5. **Notable Features**: Any interesting patterns, optimizations, or important details

Be thorough and detailed. Explain the logic and reasoning behind the code.""",
    "json": """Provide a detailed explanation covering:

1. **Configuration Purpose**: What this configuration controls (2-3 sentences)
2. **Key Settings**: Important configuration values and their meanings
3. **Impact**: How these settings affect the project
4. **Notable Entries**: Any particularly important or interesting configurations""",
    "markdown": """Provide a comprehensive summary covering:

1. **Document Purpose**: What this document covers (2-3 sentences)
2. **Main Sections**: Overview of the major sections and topics
3. **Key Information**: Important details, instructions, or guidelines
4. **Highlights**: Notable points that developers should know""",
    "config": """Provide a detailed explanation covering:

1. **Configuration Purpose**: What this configuration file controls (2-3 sentences)
2. **Key Settings**: Important configuration values and their effects
3. **Structure**: How the configuration is organized
4. **Impact**: How these settings affect the project""",
    "other": """Provide a comprehensive explanation covering:

1. **Purpose**: What this file does and why it exists (2-3 sentences)
2. **Content Analysis**: Key elements and their purposes
3. **Structure**: How the file is organized
4. **Important Details**: Notable aspects developers should understand""",
}


def file_category(file_path: str) -> str:
    ext = PurePosixPath(file_path).suffix.lower().lstrip(".")
    if ext in _CODE_EXTENSIONS:
        return "code"
    if ext == "json":
        return "json"
    if ext in ("md", "markdown", "rst"):
        return "markdown"
    if ext in _CONFIG_EXTENSIONS:
        return "config"
    return "other"


def build_file_prompt(file_path: str, content: str, repo_name: str) -> str:
    """Detailed explanation of one file, guidance chosen by extension."""
    cut = truncate_middle(content, FILE_BUDGET)
    status = (
        "- Note: Middle section truncated, but you have the beginning and end for full understanding"
        if cut.truncated
        else "- Status: Complete file content provided"
    )
    amount = "substantial portions of" if cut.truncated else "the complete"
    return f"""You are analyzing the file "{file_path}" from the {repo_name} repository.

FILE STATISTICS:
- Lines: {len(content.splitlines())}
- Characters: {len(content)}
{status}

FILE CONTENT:
```
{cut.text}
```

IMPORTANT INSTRUCTIONS:
- You have {amount} file content above
- {_NO_EXCUSES}
- Be thorough and detailed in your explanation
- Focus on what the code DOES and WHY it matters

{_FILE_GUIDANCE[file_category(file_path)]}"""


def build_question_prompt(question: str, file_path: str, content: str, repo_name: str) -> str:
    """Answer a user question about one file."""
    cut = truncate_middle(content, QUESTION_BUDGET)
    label = "SUBSTANTIAL" if cut.truncated else "COMPLETE"
    return f"""You are answering a question about the file "{file_path}" from the {repo_name} repository.

USER QUESTION: "{question}"

{label} FILE CONTENT:
```
{cut.text}
```

INSTRUCTIONS:
- Answer the question directly and thoroughly based on the code provided
- {_NO_EXCUSES}
- Reference specific code sections when relevant
- If the answer requires context from the visible code, explain it fully

Provide a clear, comprehensive answer:"""


def build_function_prompt(function_name: str, code: str) -> str:
    cut = truncate_middle(code, QUESTION_BUDGET)
    return f"""Explain the purpose of the function `{function_name}` in 1-2 sentences. Be specific about what it does:

```
{cut.text}
```"""


def build_batch_function_prompt(functions: Sequence[tuple[str, str]]) -> str:
    """One prompt for many ``(name, code)`` pairs; answers come back as ``FUNCTION_n:`` lines."""
    blocks = "\n\n".join(
        f"FUNCTION_{i}: {name}\n```\n{truncate_middle(code, FUNCTION_CODE_BUDGET).text}\n```"
        for i, (name, code) in enumerate(functions, start=1)
    )
    return f"""Explain each function below in 1-2 sentences. Be specific about what each does.

{blocks}

Respond in this exact format:
FUNCTION_1: [explanation]
FUNCTION_2: [explanation]
..."""


# ---------------------------------------------------------------------------
# Architecture extraction
# ---------------------------------------------------------------------------

ARCHITECTURE_SCHEMA = {
    "components": [
        {
            "id": "unique_snake_case_id",
            "name": "Human Readable Name",
            "type": "service|controller|model|view|utility|component|context|hook",
            "layer": "presentation|state|services|data|infrastructure|external",
            "responsibilities": ["list", "of", "responsibilities"],
        }
    ],
    "relationships": [
        {
            "from": "component_id_a",
            "to": "component_id_b",
            "type": "calls|depends_on|imports|inherits|uses|provides",
            "description": "context of relationship",
        }
    ],
    "layers": ["Presentation", "Services", "Data"],
}


def build_architecture_prompt(repo_name: str, tree: TreeNode, facts: CodebaseFacts) -> str:
    """Ask for a grounded, schema-conforming architecture definition."""
    outline = render_tree_outline(tree)
    summary = summarize_facts(facts)
    schema = json.dumps(ARCHITECTURE_SCHEMA, indent=2)
    return f"""You are a Senior Software Architect. Analyze the codebase structure and static analysis data to generate a structured architecture definition.

CONTEXT:
- Repository: {repo_name}
- Files: ~{tree.count(NodeKind.FILE)} | Directories: ~{tree.count(NodeKind.DIRECTORY)}

FILE STRUCTURE:
```
{outline}
```

STATIC ANALYSIS DATA (Imports, Exports, Hooks, API Calls):
{summary.text}

INSTRUCTIONS:
1. **Identify High-Level Modules**: functional blocks (e.g. "Auth Service", "User Context", "Payment Controller") that EXIST in the code.
2. **Abstract UI Components**: do NOT list individual UI atoms like "Button" or "Header"; group them into one presentation node.
3. **Determine Layers**: logical layers such as Presentation, State, Services, Data, Infrastructure, External.
4. **Map Relationships**: usage and dependencies based on the imports and calls provided.
5. **Strict Grounding**: every component must correspond to a real file or directory in the FILE STRUCTURE or STATIC ANALYSIS DATA. If it is not in the code, do not include it.
6. {_NO_EXCUSES}

OUTPUT SCHEMA:
{schema}

CONSTRAINTS:
- **Max {MAX_COMPONENTS} components**. Focus on the most important modules.
- IDs must be alphanumeric snake_case.
- Every "from"/"to" in relationships must be an id listed in components.
- **NO HALLUCINATIONS**: do not add databases, caches, queues or services unless you see code for them.
- Response must be pure JSON, no markdown and no Mermaid."""
