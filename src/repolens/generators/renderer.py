"""Render Mermaid diagram markup to PNG images.

Uses the **mermaid.ink** HTTP renderer: the diagram is base64url encoded
and fetched from ``https://mermaid.ink/img/{encoded}``.  Rendered images
are cached on disk by content hash so the same diagram is only fetched
once.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import tempfile
from pathlib import Path

import httpx

logger = logging.getLogger(__name__)

_MERMAID_INK_BASE = "https://mermaid.ink"
_REQUEST_TIMEOUT = 30.0


def _plain_base64(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii")


def _diagram_hash(code: str) -> str:
    """Deterministic short hash for cache filenames."""
    return hashlib.sha256(code.encode("utf-8")).hexdigest()[:12]


class MermaidRenderer:
    """Render Mermaid diagrams to PNG files.

    Parameters
    ----------
    cache_dir
        Directory for rendered images.  If *None* a temp directory is
        created.
    theme
        Mermaid theme (``default``, ``dark``, ``forest``, ``neutral``).
    client
        Optional ``httpx.Client`` (tests inject one with a mock transport).
    """

    def __init__(
        self,
        cache_dir: Path | None = None,
        theme: str = "dark",
        client: httpx.Client | None = None,
    ) -> None:
        if cache_dir is None:
            self.cache_dir = Path(tempfile.mkdtemp(prefix="repolens_diagrams_"))
        else:
            self.cache_dir = Path(cache_dir)
            self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.theme = theme
        self._client = client

    def image_url(self, code: str) -> str:
        return f"{_MERMAID_INK_BASE}/img/{_plain_base64(code)}?type=png&theme={self.theme}"

    def render(self, code: str, *, label: str = "") -> Path | None:
        """Render *code* and return the PNG path, or *None* on failure."""
        h = _diagram_hash(code)
        cached = self.cache_dir / f"mermaid_{h}.png"
        if cached.exists() and cached.stat().st_size > 0:
            return cached

        result = self._render_ink(code, cached)
        if result is not None:
            logger.info("Rendered mermaid diagram (%s) → %s", label or h, result)
            return result

        logger.warning("Failed to render mermaid diagram: %s", label or h)
        return None

    def render_to(self, code: str, output_path: Path) -> Path | None:
        """Render *code* and copy the image to *output_path*."""
        rendered = self.render(code, label=output_path.name)
        if rendered is None:
            return None
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(rendered.read_bytes())
        return output_path

    def _render_ink(self, code: str, output_path: Path) -> Path | None:
        url = self.image_url(code)
        client = self._client or httpx.Client(timeout=_REQUEST_TIMEOUT, follow_redirects=True)
        try:
            resp = client.get(url)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("mermaid.ink render failed: %s", exc)
            return None
        finally:
            if self._client is None:
                client.close()

        content_type = resp.headers.get("content-type", "")
        if "image" not in content_type:
            logger.warning("mermaid.ink returned unexpected content-type: %s", content_type)
            return None
        output_path.write_bytes(resp.content)
        return output_path
