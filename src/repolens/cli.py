"""repolens CLI — explain GitHub repositories and sketch their architecture.

Usage:
    repolens explain <github_url> [path]
    repolens ask <github_url> <path> "<question>"
    repolens diagram <github_url> [-o architecture.mmd] [--png]
    repolens analyze <github_url>
    repolens cache clear
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, NoReturn, TypeVar

import click
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table as RichTable
from rich.text import Text

from . import __version__
from .config import Settings
from .core.analyzer import analyze_codebase
from .core.cache import FileStorage
from .core.fetcher import GitHubClient, parse_github_url
from .core.models import Explanation, ResultStatus, TreeNode
from .errors import ConfigurationError, FetchError
from .generators.renderer import MermaidRenderer
from .llm.providers import SUPPORTED_PROVIDERS, get_endpoint, resolve_api_key
from .pipeline import RepoLens

console = Console()

T = TypeVar("T")

_STATUS_STYLE = {
    ResultStatus.SUCCESS: "green",
    ResultStatus.DEGRADED: "yellow",
    ResultStatus.FALLBACK: "yellow",
}


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _input_error(message: str) -> NoReturn:
    console.print(f"[bold red]Error:[/] {message}")
    raise SystemExit(2)


def _repo_from_url(url: str) -> tuple[str, str]:
    try:
        return parse_github_url(url)
    except ValueError as exc:
        _input_error(str(exc))


def _build_lens(settings: Settings) -> RepoLens:
    try:
        endpoint = get_endpoint(settings.provider, api_key=settings.api_key, timeout=settings.timeout)
    except ConfigurationError as exc:
        _input_error(str(exc))
    return RepoLens(
        endpoint,
        queue=settings.build_queue(),
        cache=settings.build_cache(),
        text_policy=settings.retry_policy(),
    )


def _run(description: str, work: Callable[[], Awaitable[T]]) -> T:
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    ) as progress:
        progress.add_task(f"[cyan]{description}", total=None)
        try:
            return asyncio.run(work())
        except FetchError as exc:
            progress.stop()
            console.print(f"\n[bold red]GitHub request failed ({exc.kind.value}):[/] {exc}")
            raise SystemExit(1)


def _find_node(tree: TreeNode, path: str) -> TreeNode | None:
    wanted = path.strip().strip("/")
    if not wanted:
        return tree
    for node in tree.iter_nodes():
        if node.path.strip("/") == wanted:
            return node
    return None


def _print_explanation(title: str, result: Explanation) -> None:
    style = _STATUS_STYLE[result.status]
    subtitle = "cached" if result.cached else (result.model or result.status.value)
    console.print(Panel(
        Markdown(result.content),
        title=f"[bold {style}]{title}[/]",
        subtitle=subtitle,
        border_style=style,
    ))


# ---------------------------------------------------------------------------
# Command group
# ---------------------------------------------------------------------------

@click.group()
@click.version_option(version=__version__, prog_name="repolens")
@click.option(
    "--provider",
    type=click.Choice(SUPPORTED_PROVIDERS, case_sensitive=False),
    default=None,
    help="LLM provider: google (default), openai, anthropic, ollama.",
)
@click.option(
    "--api-key",
    "api_key",
    default=None,
    envvar="REPOLENS_API_KEY",
    help="API key for the provider (defaults to the provider's env var).",
)
@click.option(
    "--model",
    "models",
    multiple=True,
    help="Candidate model, best first. Repeat to add fallbacks.",
)
@click.option(
    "--github-token",
    "github_token",
    default=None,
    envvar="GITHUB_TOKEN",
    help="GitHub token for higher API rate limits.",
)
@click.option("-v", "--verbose", is_flag=True, default=False, help="Verbose logging.")
@click.pass_context
def main(
    ctx: click.Context,
    provider: str | None,
    api_key: str | None,
    models: tuple[str, ...],
    github_token: str | None,
    verbose: bool,
):
    """repolens — explain GitHub repositories with an LLM."""
    _setup_logging(verbose)
    try:
        base = Settings.from_env()
    except ConfigurationError as exc:
        _input_error(str(exc))
    settings = base.with_overrides(
        provider=provider.lower() if provider else None,
        models=models or None,
        github_token=github_token,
    )
    settings.api_key = resolve_api_key(settings.provider, api_key)
    ctx.obj = settings


# ---------------------------------------------------------------------------
# explain / ask
# ---------------------------------------------------------------------------

@main.command()
@click.argument("url")
@click.argument("path", required=False, default="")
@click.pass_obj
def explain(settings: Settings, url: str, path: str):
    """Explain a repository, or one directory or file inside it."""
    owner, repo = _repo_from_url(url)
    repo_name = f"{owner}/{repo}"
    lens = _build_lens(settings)

    async def work() -> Explanation | None:
        try:
            async with GitHubClient(token=settings.github_token) as gh:
                tree = await gh.fetch_tree(owner, repo)
                node = _find_node(tree, path)
                if node is None:
                    return None
                if node is tree:
                    readme = await gh.fetch_readme(owner, repo)
                    return await lens.generate_repo_explanation(repo_name, tree, readme)
                if node.is_dir:
                    return await lens.generate_directory_explanation(repo_name, node)
                content = await gh.fetch_file_content(node.download_url or "")
                return await lens.generate_explanation(repo_name, node, content=content)
        finally:
            await lens.aclose()

    result = _run(f"Explaining {repo_name}/{path}".rstrip("/"), work)
    if result is None:
        _input_error(f"Path not found in {repo_name}: {path}")
    _print_explanation(path or repo_name, result)


@main.command()
@click.argument("url")
@click.argument("path")
@click.argument("question")
@click.pass_obj
def ask(settings: Settings, url: str, path: str, question: str):
    """Answer QUESTION about the file at PATH."""
    owner, repo = _repo_from_url(url)
    repo_name = f"{owner}/{repo}"
    lens = _build_lens(settings)

    async def work() -> Explanation | None:
        try:
            async with GitHubClient(token=settings.github_token) as gh:
                tree = await gh.fetch_tree(owner, repo)
                node = _find_node(tree, path)
                if node is None or node.is_dir:
                    return None
                content = await gh.fetch_file_content(node.download_url or "")
                return await lens.generate_question_response(repo_name, node.path, content, question)
        finally:
            await lens.aclose()

    result = _run(f"Asking about {path}", work)
    if result is None:
        _input_error(f"File not found in {repo_name}: {path}")
    _print_explanation(question, result)


# ---------------------------------------------------------------------------
# diagram / analyze
# ---------------------------------------------------------------------------

@main.command()
@click.argument("url")
@click.option(
    "-o", "--output",
    "output",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write the Mermaid markup to this file.",
)
@click.option("--png", is_flag=True, default=False, help="Also render a PNG via mermaid.ink.")
@click.pass_obj
def diagram(settings: Settings, url: str, output: Path | None, png: bool):
    """Generate the architecture diagram of a repository."""
    owner, repo = _repo_from_url(url)
    repo_name = f"{owner}/{repo}"
    lens = _build_lens(settings)

    async def work() -> Any:
        try:
            async with GitHubClient(token=settings.github_token) as gh:
                tree = await gh.fetch_tree(owner, repo)
                files = await gh.fetch_source_files(tree)
                return await lens.generate_architecture_diagram(repo_name, tree, files=files)
        finally:
            await lens.aclose()

    result = _run(f"Building architecture of {repo_name}", work)
    style = _STATUS_STYLE[result.status]
    status = "cached" if result.cached else result.status.value
    if result.failure is not None:
        status += f" ({result.failure.value})"
    console.print(Panel(
        Text(result.mermaid),
        title=f"[bold {style}]Architecture — {repo_name}[/]",
        subtitle=status,
        border_style=style,
    ))

    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(result.mermaid + "\n", encoding="utf-8")
        console.print(f"[green]Saved:[/] {output}")
    if png:
        target = (output or Path(f"{repo}-architecture.mmd")).with_suffix(".png")
        rendered = MermaidRenderer(cache_dir=settings.cache_dir / "diagrams").render_to(result.mermaid, target)
        if rendered is None:
            console.print("[yellow]PNG rendering failed; the Mermaid markup is still available.[/]")
        else:
            console.print(f"[green]Saved:[/] {rendered}")


@main.command()
@click.argument("url")
@click.option("--limit", default=40, show_default=True, help="Maximum number of source files to analyse.")
@click.pass_obj
def analyze(settings: Settings, url: str, limit: int):
    """Print the static-analysis facts of a repository (no LLM calls)."""
    owner, repo = _repo_from_url(url)

    async def work() -> dict[str, str]:
        async with GitHubClient(token=settings.github_token) as gh:
            tree = await gh.fetch_tree(owner, repo)
            return await gh.fetch_source_files(tree, limit=limit)

    files = _run(f"Fetching sources of {owner}/{repo}", work)
    facts = analyze_codebase(files)

    table = RichTable(title=f"Static analysis — {owner}/{repo}", show_lines=True)
    table.add_column("File", style="bold cyan")
    table.add_column("Imports")
    table.add_column("Exports")
    table.add_column("Hooks")
    table.add_column("API calls")
    for f in facts.files:
        table.add_row(
            f.file,
            "\n".join(f.imports),
            "\n".join(f.exports),
            "\n".join(f.reactive_calls),
            "\n".join(f.network_calls),
        )
    console.print(table)


# ---------------------------------------------------------------------------
# cache
# ---------------------------------------------------------------------------

@main.group()
def cache():
    """Manage the local response cache."""


@cache.command("clear")
@click.pass_obj
def cache_clear(settings: Settings):
    """Delete every cached response."""
    removed = FileStorage(settings.cache_dir).clear()
    console.print(f"[green]Removed {removed} cached entr{'y' if removed == 1 else 'ies'}[/] from {settings.cache_dir}")


if __name__ == "__main__":
    main()
