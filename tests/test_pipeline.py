"""End-to-end tests for the RepoLens orchestration pipeline."""

from __future__ import annotations

import json

import pytest

from repolens.core.models import NodeKind, ResultStatus, TreeNode
from repolens.errors import FailureKind, RateLimitError, RequestError, TransientError
from repolens.generators.fallback import OFFLINE_MARKER
from repolens.llm.parser import NO_EXPLANATION
from repolens.llm.retry import RetryPolicy
from repolens.pipeline import DiagramState, RepoLens

from conftest import ScriptedEndpoint

ARCHITECTURE_JSON = json.dumps({
    "components": [
        {"id": "ui", "name": "User Interface", "type": "component", "layer": "presentation"},
        {"id": "api", "name": "API Client", "type": "service", "layer": "services"},
    ],
    "relationships": [{"from": "ui", "to": "api", "type": "calls", "description": "requests data"}],
    "layers": ["Presentation", "Services"],
})


@pytest.fixture
def make_lens(queue, cache, policy, clock):
    def factory(*outcomes) -> tuple[RepoLens, ScriptedEndpoint]:
        endpoint = ScriptedEndpoint(*outcomes)
        lens = RepoLens(
            endpoint,
            queue=queue,
            cache=cache,
            text_policy=policy,
            diagram_policy=policy,
            sleep=clock.sleep,
        )
        return lens, endpoint
    return factory


def states(*names: DiagramState) -> list[str]:
    return [s.value for s in names]


# ---------------------------------------------------------------------------
# Free-text workflow
# ---------------------------------------------------------------------------

class TestExplanations:
    @pytest.mark.asyncio
    async def test_success_extracts_snippets(self, make_lens):
        lens, endpoint = make_lens("It prints.\n```python\nprint(1)\n```")
        result = await lens.generate_file_explanation("o/r", "main.py", "print(1)")

        assert result.status == ResultStatus.SUCCESS
        assert result.ok
        assert result.model == "model-a"
        assert result.code_snippets == ["```python\nprint(1)\n```"]
        config = endpoint.calls[0][2]
        assert (config.temperature, config.max_output_tokens, config.top_k, config.top_p) == (0.7, 8192, 40, 0.95)
        assert not config.json_mode

    @pytest.mark.asyncio
    async def test_cache_hit_skips_endpoint(self, make_lens):
        lens, endpoint = make_lens("Explained.")
        first = await lens.generate_file_explanation("o/r", "main.py", "x")
        second = await lens.generate_file_explanation("o/r", "main.py", "x")

        assert len(endpoint.calls) == 1
        assert not first.cached
        assert second.cached
        assert second.content == "Explained."

    @pytest.mark.asyncio
    async def test_rate_limit_degrades(self, make_lens, policy):
        lens, endpoint = make_lens(RateLimitError(retry_after=1))
        result = await lens.generate_repo_explanation("o/r", None, None)

        assert result.status == ResultStatus.DEGRADED
        assert result.failure == FailureKind.RATE_LIMIT
        assert result.content.startswith("⚠️ **Rate Limit Exceeded**")
        assert len(endpoint.calls) == policy.total_attempts

    @pytest.mark.asyncio
    async def test_degraded_results_not_cached(self, make_lens, policy):
        lens, endpoint = make_lens(TransientError("503"))
        await lens.generate_file_explanation("o/r", "a.py", "x")
        await lens.generate_file_explanation("o/r", "a.py", "x")
        assert len(endpoint.calls) == 2 * policy.total_attempts

    @pytest.mark.asyncio
    async def test_request_error_message_and_remediation(self, make_lens):
        lens, endpoint = make_lens(RequestError("model not found", status=404))
        result = await lens.generate_file_explanation("o/r", "a.py", "x")

        assert result.content.startswith("⚠️ Generation Failed.")
        assert "model not found" in result.content
        assert "API key" in result.content
        assert [model for model, _, _ in endpoint.calls] == ["model-a", "model-b"]

    @pytest.mark.asyncio
    async def test_questions_cached_per_question(self, make_lens):
        lens, endpoint = make_lens("answer")
        await lens.generate_question_response("o/r", "a.py", "x", "What?")
        await lens.generate_question_response("o/r", "a.py", "x", "Why?")
        await lens.generate_question_response("o/r", "a.py", "x", "What?")
        assert len(endpoint.calls) == 2

    @pytest.mark.asyncio
    async def test_calls_spaced_by_queue(self, make_lens, clock):
        lens, _ = make_lens("ok")
        await lens.generate_file_explanation("o/r", "a.py", "x")
        await lens.generate_file_explanation("o/r", "b.py", "y")
        assert clock.sleeps == [3.5]

    @pytest.mark.asyncio
    async def test_retried_calls_stay_spaced_across_requests(self, queue, cache, clock):
        class TimedEndpoint(ScriptedEndpoint):
            def __init__(self, *outcomes):
                super().__init__(*outcomes)
                self.times: list[float] = []

            async def invoke(self, model, prompt, config):
                self.times.append(clock())
                return await super().invoke(model, prompt, config)

        endpoint = TimedEndpoint(TransientError("503"), "ok")
        lens = RepoLens(
            endpoint,
            queue=queue,
            cache=cache,
            text_policy=RetryPolicy(candidates=("model-a",), max_attempts=2, base_delay=0.5),
            sleep=clock.sleep,
        )
        first = await lens.generate_file_explanation("o/r", "a.py", "x")
        second = await lens.generate_file_explanation("o/r", "b.py", "y")

        assert first.ok and second.ok
        assert len(endpoint.times) == 3
        gaps = [b - a for a, b in zip(endpoint.times, endpoint.times[1:])]
        assert all(gap >= queue.min_interval for gap in gaps)

    @pytest.mark.asyncio
    async def test_generate_explanation_dispatch(self, make_lens, sample_tree):
        lens, endpoint = make_lens("ok")
        await lens.generate_explanation("o/r", sample_tree, readme="hello readme")
        src = next(n for n in sample_tree.children if n.name == "src")
        await lens.generate_explanation("o/r", src)
        prompts = [prompt for _, prompt, _ in endpoint.calls]
        assert "hello readme" in prompts[0]
        assert 'Explain the "src" directory' in prompts[1]

    @pytest.mark.asyncio
    async def test_file_explanation_requires_content(self, make_lens):
        lens, _ = make_lens("ok")
        with pytest.raises(ValueError):
            await lens.generate_explanation("o/r", TreeNode(name="a.py", path="a.py", kind=NodeKind.FILE))


class TestFunctionExplanations:
    @pytest.mark.asyncio
    async def test_single_function(self, make_lens):
        lens, endpoint = make_lens("Adds two numbers.")
        result = await lens.generate_function_explanation("o/r", "m.py", "add", "def add(a, b): ...")
        assert result.content == "Adds two numbers."
        assert "`add`" in endpoint.calls[0][1]

    @pytest.mark.asyncio
    async def test_batch(self, make_lens):
        lens, endpoint = make_lens("FUNCTION_1: Adds.\nFUNCTION_2: Subtracts.")
        result = await lens.generate_batch_function_explanations([("add", "..."), ("sub", "...")])
        assert result == {"add": "Adds.", "sub": "Subtracts."}
        assert len(endpoint.calls) == 1

    @pytest.mark.asyncio
    async def test_batch_failure(self, make_lens):
        lens, _ = make_lens(TransientError("down"))
        result = await lens.generate_batch_function_explanations([("add", "...")])
        assert result == {"add": NO_EXPLANATION}

    @pytest.mark.asyncio
    async def test_batch_empty(self, make_lens):
        lens, endpoint = make_lens("unused")
        assert await lens.generate_batch_function_explanations([]) == {}
        assert endpoint.calls == []


# ---------------------------------------------------------------------------
# Architecture diagram workflow
# ---------------------------------------------------------------------------

class TestArchitectureDiagram:
    @pytest.mark.asyncio
    async def test_success_then_cache_hit(self, make_lens, sample_tree):
        lens, endpoint = make_lens(f"```json\n{ARCHITECTURE_JSON}\n```")
        first = await lens.generate_architecture_diagram("o/r", sample_tree, files={"src/index.ts": "import x from 'y'"})
        second = await lens.generate_architecture_diagram("o/r", sample_tree)

        assert first.status == ResultStatus.SUCCESS
        assert 'ui["User Interface"]' in first.mermaid
        assert "ui -->" in first.mermaid
        assert first.trace == states(
            DiagramState.CACHE_CHECK, DiagramState.CACHE_MISS, DiagramState.CALLING,
            DiagramState.SUCCESS, DiagramState.SYNTHESIZING, DiagramState.CACHED, DiagramState.DONE,
        )
        assert second.cached
        assert second.mermaid == first.mermaid
        assert second.architecture is not None
        assert [c.id for c in second.architecture.components] == ["ui", "api"]
        assert second.trace == states(DiagramState.CACHE_CHECK, DiagramState.CACHE_HIT, DiagramState.DONE)
        assert len(endpoint.calls) == 1

    @pytest.mark.asyncio
    async def test_diagram_generation_config(self, make_lens, sample_tree):
        lens, endpoint = make_lens(ARCHITECTURE_JSON)
        await lens.generate_architecture_diagram("o/r", sample_tree)
        config = endpoint.calls[0][2]
        assert config.json_mode
        assert (config.temperature, config.max_output_tokens, config.top_k, config.top_p) == (0.2, 4000, 40, 0.8)

    @pytest.mark.asyncio
    async def test_retry_recorded_in_trace(self, make_lens, sample_tree):
        lens, endpoint = make_lens(RateLimitError(retry_after=2), ARCHITECTURE_JSON)
        result = await lens.generate_architecture_diagram("o/r", sample_tree)

        assert result.ok
        assert result.trace[2:5] == states(
            DiagramState.CALLING, DiagramState.RETRYABLE_FAILURE, DiagramState.CALLING,
        )
        assert len(endpoint.calls) == 2

    @pytest.mark.asyncio
    async def test_repeated_failures_fall_back_without_extra_calls(self, make_lens, policy, sample_tree):
        lens, endpoint = make_lens(TransientError("503"))
        first = await lens.generate_architecture_diagram("o/r", sample_tree)
        second = await lens.generate_architecture_diagram("o/r", sample_tree)

        for result in (first, second):
            assert result.status == ResultStatus.FALLBACK
            assert OFFLINE_MARKER in result.mermaid
            assert result.failure == FailureKind.TRANSIENT
            assert result.trace[-3:] == states(
                DiagramState.TERMINAL_FAILURE, DiagramState.FALLBACK, DiagramState.DONE,
            )
        assert len(endpoint.calls) == 2 * policy.total_attempts

    @pytest.mark.asyncio
    async def test_invalid_json_falls_back(self, make_lens, sample_tree):
        lens, _ = make_lens("I cannot produce JSON today.")
        result = await lens.generate_architecture_diagram("o/r", sample_tree)
        assert result.status == ResultStatus.FALLBACK
        assert result.failure == FailureKind.INVALID_JSON

    @pytest.mark.asyncio
    async def test_synthesis_error_falls_back(self, make_lens, sample_tree, monkeypatch):
        def broken(data):
            raise RuntimeError("renderer bug")

        monkeypatch.setattr("repolens.pipeline.synthesize", broken)
        lens, _ = make_lens(ARCHITECTURE_JSON)
        result = await lens.generate_architecture_diagram("o/r", sample_tree)

        assert result.status == ResultStatus.FALLBACK
        assert result.failure == FailureKind.UNKNOWN
        assert not result.cached

    @pytest.mark.asyncio
    async def test_fallback_not_cached(self, make_lens, cache, sample_tree):
        lens, _ = make_lens(TransientError("503"))
        await lens.generate_architecture_diagram("o/r", sample_tree)
        assert len(cache.storage) == 0
