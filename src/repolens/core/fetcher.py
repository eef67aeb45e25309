"""Fetch repository trees and file contents from GitHub."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any

import httpx

from ..errors import FetchError, FetchErrorKind
from .analyzer import is_source_file
from .models import NodeKind, TreeNode

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GITHUB_API = "https://api.github.com/repos"
_GITHUB_URL_RE = re.compile(
    r"(?:https?://)?github\.com/(?P<owner>[^/\s]+)/(?P<repo>[^/\s#?]+)"
)

_BATCH_SIZE = 3
_RATE_LIMIT_PAUSE = 3.0
_SUBDIR_DELAY = 0.15

# Typical README filenames in priority order
_README_NAMES = ["README.md", "readme.md", "Readme.md", "README.rst", "README.txt", "README"]


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------

def parse_github_url(url: str) -> tuple[str, str]:
    """Extract (owner, repo) from a GitHub URL.

    Raises ValueError if the URL doesn't match the expected pattern.
    """
    m = _GITHUB_URL_RE.search(url)
    if not m:
        raise ValueError(f"Not a valid GitHub URL: {url}")
    repo = m.group("repo").rstrip("/")
    if repo.endswith(".git"):
        repo = repo[:-4]
    return m.group("owner"), repo


def is_github_url(source: str) -> bool:
    """Return True if *source* looks like a GitHub repository URL."""
    return bool(_GITHUB_URL_RE.search(source))


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class GitHubClient:
    """Async reader for the public GitHub contents API.

    Parameters
    ----------
    token
        Optional personal access token (raises the API rate limit).
    timeout
        Per-request timeout in seconds.
    client
        Pre-built ``httpx.AsyncClient`` (tests pass one with a mock transport).
    """

    def __init__(
        self,
        token: str | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
        *,
        rate_limit_pause: float = _RATE_LIMIT_PAUSE,
        subdir_delay: float = _SUBDIR_DELAY,
    ) -> None:
        headers = {"Accept": "application/vnd.github+json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = client or httpx.AsyncClient(
            timeout=timeout, headers=headers, follow_redirects=True
        )
        self.rate_limit_pause = rate_limit_pause
        self.subdir_delay = subdir_delay

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> GitHubClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # -- public API ----------------------------------------------------------

    async def fetch_tree(
        self,
        owner: str,
        repo: str,
        root_path: str = "",
        max_depth: int = 3,
    ) -> TreeNode:
        """Return the directory tree below *root_path*, *max_depth* levels deep."""
        return await self._fetch_dir(owner, repo, root_path, max_depth, 0)

    async def fetch_file_content(self, url: str) -> str:
        """Download the raw text behind a ``download_url``."""
        resp = await self._get(url)
        return resp.text

    async def fetch_readme(self, owner: str, repo: str) -> str | None:
        """Return README text, or None when the repository has none."""
        for name in _README_NAMES:
            url = f"{_GITHUB_API}/{owner}/{repo}/contents/{name}"
            try:
                resp = await self._get(url, headers={"Accept": "application/vnd.github.raw"})
            except FetchError as exc:
                if exc.kind == FetchErrorKind.NOT_FOUND:
                    continue
                raise
            return resp.text
        return None

    async def fetch_source_files(
        self,
        tree: TreeNode,
        *,
        limit: int = 40,
        max_bytes: int = 100_000,
    ) -> dict[str, str]:
        """Download up to *limit* source files of the tree for static analysis.

        Files that fail to download are skipped with a warning.
        """
        candidates = [
            node for node in tree.iter_files()
            if node.download_url
            and is_source_file(node.path or node.name)
            and (node.size is None or node.size <= max_bytes)
        ][:limit]

        files: dict[str, str] = {}
        for i in range(0, len(candidates), _BATCH_SIZE):
            batch = candidates[i:i + _BATCH_SIZE]
            results = await asyncio.gather(
                *(self.fetch_file_content(n.download_url or "") for n in batch),
                return_exceptions=True,
            )
            for node, result in zip(batch, results):
                if isinstance(result, BaseException):
                    logger.warning("Skipping %s: %s", node.path, result)
                    continue
                files[node.path or node.name] = result
        return files

    # -- private -------------------------------------------------------------

    async def _get(self, url: str, **kwargs: Any) -> httpx.Response:
        try:
            resp = await self._client.get(url, **kwargs)
        except httpx.HTTPError as exc:
            raise FetchError(f"Request to {url} failed: {exc}", FetchErrorKind.NETWORK) from exc

        if resp.status_code == 404:
            raise FetchError(
                "Repository or path not found (only public repositories are supported).",
                FetchErrorKind.NOT_FOUND,
            )
        if resp.status_code in (403, 429):
            raise FetchError(
                "GitHub API rate limit exceeded. Please try again later or supply a token.",
                FetchErrorKind.RATE_LIMITED,
            )
        if resp.status_code >= 400:
            raise FetchError(
                f"GitHub request failed with status {resp.status_code}",
                FetchErrorKind.NETWORK,
            )
        return resp

    async def _list(self, owner: str, repo: str, path: str) -> list[dict[str, Any]]:
        url = f"{_GITHUB_API}/{owner}/{repo}/contents/{path}".rstrip("/")
        try:
            resp = await self._get(url)
        except FetchError as exc:
            if exc.kind != FetchErrorKind.RATE_LIMITED:
                raise
            logger.warning("Rate limit hit listing %r, retrying once in %.1fs", path, self.rate_limit_pause)
            await asyncio.sleep(self.rate_limit_pause)
            resp = await self._get(url)
        data = resp.json()
        return data if isinstance(data, list) else []

    async def _fetch_dir(
        self, owner: str, repo: str, path: str, max_depth: int, depth: int,
    ) -> TreeNode:
        name = path.rsplit("/", 1)[-1] if path else repo
        node = TreeNode(name=name, path=path, kind=NodeKind.DIRECTORY, children=[])
        if depth >= max_depth:
            return node

        if depth > 0 and self.subdir_delay:
            await asyncio.sleep(self.subdir_delay)

        try:
            items = await self._list(owner, repo, path)
        except FetchError as exc:
            if depth == 0:
                raise
            # Sub-directories that cannot be listed stay empty.
            logger.warning("Failed to fetch %s: %s", path, exc)
            return node

        children: list[TreeNode] = []
        for i in range(0, len(items), _BATCH_SIZE):
            batch = items[i:i + _BATCH_SIZE]
            children.extend(
                await asyncio.gather(
                    *(self._child(owner, repo, item, max_depth, depth) for item in batch)
                )
            )
        node.children = children
        return node

    async def _child(
        self, owner: str, repo: str, item: dict[str, Any], max_depth: int, depth: int,
    ) -> TreeNode:
        if item.get("type") == "dir":
            sub = await self._fetch_dir(owner, repo, item["path"], max_depth, depth + 1)
            sub.name = item.get("name", sub.name)
            return sub
        return TreeNode(
            name=item.get("name", ""),
            path=item.get("path", ""),
            kind=NodeKind.FILE,
            size=item.get("size"),
            download_url=item.get("download_url"),
        )
