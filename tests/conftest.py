"""Shared fixtures: a fake clock and a scripted inference endpoint."""

from __future__ import annotations

import pytest

from repolens.core.cache import MemoryStorage, ResponseCache
from repolens.core.models import NodeKind, TreeNode
from repolens.llm.providers import GenerationConfig, InferenceEndpoint, RawResponse
from repolens.llm.queue import RequestQueue
from repolens.llm.retry import RetryPolicy


class FakeClock:
    """Monotonic clock whose ``sleep`` advances time instantly."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class ScriptedEndpoint(InferenceEndpoint):
    """Endpoint replaying *outcomes* in order; the last one repeats.

    An outcome is a ``str`` (successful text), a ``RawResponse`` or an
    exception instance to raise.
    """

    provider = "google"

    def __init__(self, *outcomes) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[tuple[str, str, GenerationConfig]] = []

    async def invoke(self, model: str, prompt: str, config: GenerationConfig) -> RawResponse:
        self.calls.append((model, prompt, config))
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, str):
            return RawResponse(model=model, text=outcome, finish_reason="STOP")
        return outcome


def make_tree(layout: dict, name: str = "repo", path: str = "") -> TreeNode:
    """Build a tree from ``{"dir/": {...}, "file.py": None}`` dicts."""
    children = []
    for key, value in layout.items():
        child_name = key.rstrip("/")
        child_path = f"{path}/{child_name}" if path else child_name
        if key.endswith("/"):
            children.append(make_tree(value or {}, child_name, child_path))
        else:
            children.append(TreeNode(name=child_name, path=child_path, kind=NodeKind.FILE))
    return TreeNode(name=name, path=path, kind=NodeKind.DIRECTORY, children=children)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache() -> ResponseCache:
    return ResponseCache(MemoryStorage())


@pytest.fixture
def queue(clock: FakeClock) -> RequestQueue:
    return RequestQueue(3.5, clock=clock, sleep=clock.sleep)


@pytest.fixture
def policy() -> RetryPolicy:
    return RetryPolicy(candidates=("model-a", "model-b"), max_attempts=2, min_delay=3.5)


@pytest.fixture
def sample_tree() -> TreeNode:
    return make_tree({
        "src/": {
            "api/": {"client.ts": None},
            "components/": {"App.tsx": None},
            "index.ts": None,
        },
        "node_modules/": {"react/": {}},
        "docs/": {"guide.md": None},
        "scripts/": {},
        "package.json": None,
        "README.md": None,
        "LICENSE": None,
    })
