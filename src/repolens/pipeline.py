"""Orchestration pipeline — ties analysis, prompts, inference and diagrams together.

Every AI-backed operation follows the same path::

    cache check → prompt → queue slot [ retry.execute(endpoint.invoke) ] → parse → cache

Errors are raised inside the stages and turned into tagged results here:
free-text operations come back ``DEGRADED`` with an explanatory message,
the architecture diagram comes back ``FALLBACK`` with a locally built
sketch.  Neither degraded nor fallback results are cached.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Mapping, Optional, Sequence

from .core.analyzer import analyze_codebase
from .core.cache import CacheKind, ResponseCache
from .core.models import (
    ArchitectureData,
    CodebaseFacts,
    DiagramResult,
    Explanation,
    ResultStatus,
    TreeNode,
)
from .errors import FailureKind, InferenceError
from .generators.diagram import synthesize
from .generators.fallback import synthesize_from_tree
from .llm import prompts
from .llm.parser import (
    NO_EXPLANATION,
    extract_architecture,
    extract_code_snippets,
    extract_text,
    parse_function_summaries,
)
from .llm.providers import GenerationConfig, InferenceEndpoint
from .llm.queue import RequestQueue, get_default_queue
from .llm.retry import RetryPolicy, execute

logger = logging.getLogger(__name__)

TEXT_CONFIG = GenerationConfig(temperature=0.7, max_output_tokens=8192, top_k=40, top_p=0.95)
DIAGRAM_CONFIG = GenerationConfig(
    temperature=0.2, max_output_tokens=4000, top_k=40, top_p=0.8, json_mode=True,
)

RATE_LIMIT_MESSAGE = (
    "⚠️ **Rate Limit Exceeded**\n"
    "Please wait a moment. The free tier limit is strict (about 15 requests "
    "per minute). Requests are paced, but you may have hit the daily quota."
)
FAILURE_MESSAGE = "⚠️ Generation Failed.\nLast error: {error}"
REMEDIATION = {
    FailureKind.SAFETY: "The response was blocked by the provider's safety filter; try a narrower question.",
    FailureKind.MAX_TOKENS: "The answer hit the output token limit; try a smaller file or question.",
    FailureKind.REQUEST: "Check the API key and the configured model names.",
    FailureKind.TRANSIENT: "The service is unavailable; try again in a few minutes.",
}


class DiagramState(str, Enum):
    """States of the architecture-diagram workflow, recorded in ``DiagramResult.trace``."""
    CACHE_CHECK = "cache_check"
    CACHE_HIT = "cache_hit"
    CACHE_MISS = "cache_miss"
    CALLING = "calling"
    RETRYABLE_FAILURE = "retryable_failure"
    SUCCESS = "success"
    SYNTHESIZING = "synthesizing"
    CACHED = "cached"
    TERMINAL_FAILURE = "terminal_failure"
    FALLBACK = "fallback"
    DONE = "done"


def degraded_explanation(error: Exception) -> Explanation:
    """Explanation returned when every model and attempt failed."""
    kind = error.kind if isinstance(error, InferenceError) else FailureKind.UNKNOWN
    if kind == FailureKind.RATE_LIMIT:
        content = RATE_LIMIT_MESSAGE
    else:
        cause = getattr(error, "last_error", None) or error
        content = FAILURE_MESSAGE.format(error=cause)
        if kind in REMEDIATION:
            content += f"\n\n{REMEDIATION[kind]}"
    return Explanation(content=content, status=ResultStatus.DEGRADED, failure=kind)


class RepoLens:
    """Explanations and architecture diagrams for one inference endpoint.

    Usage::

        lens = RepoLens(get_endpoint("google", api_key="..."))
        explanation = await lens.generate_file_explanation("owner/repo", "src/app.py", code)
        diagram = await lens.generate_architecture_diagram("owner/repo", tree, files=sources)

    Parameters
    ----------
    endpoint
        Inference endpoint used for every call.
    queue
        Request queue shared by every caller in the process (defaults to
        ``get_default_queue()``).
    cache
        Response cache (defaults to an in-memory one).
    text_policy / diagram_policy
        Retry policies.  By default both try the endpoint's default models.
        Every call, retries included, is paced by *queue*.
    sleep
        Coroutine used for retry backoff; tests inject a fake.
    """

    def __init__(
        self,
        endpoint: InferenceEndpoint,
        *,
        queue: RequestQueue | None = None,
        cache: ResponseCache | None = None,
        text_policy: RetryPolicy | None = None,
        diagram_policy: RetryPolicy | None = None,
        models: Sequence[str] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.endpoint = endpoint
        self.queue = queue if queue is not None else get_default_queue()
        self.cache = cache if cache is not None else ResponseCache()
        candidates = tuple(models or endpoint.default_models)
        self.text_policy = text_policy or RetryPolicy(candidates=candidates)
        self.diagram_policy = diagram_policy or self.text_policy
        self._sleep = sleep

    async def aclose(self) -> None:
        await self.endpoint.aclose()

    # ------------------------------------------------------------------
    # Free-text workflow
    # ------------------------------------------------------------------

    async def _explain(self, prompt: str, cache_key: Optional[str]) -> Explanation:
        if cache_key is not None:
            hit = self.cache.get(cache_key)
            if hit is not None:
                logger.info("Cache hit: %s", cache_key)
                try:
                    return Explanation.model_validate(hit).model_copy(update={"cached": True})
                except ValueError as exc:
                    logger.warning("Ignoring malformed cache entry %s: %s", cache_key, exc)

        async def attempt(model: str) -> Explanation:
            await self.queue.pace()
            raw = await self.endpoint.invoke(model, prompt, TEXT_CONFIG)
            text = extract_text(raw)
            return Explanation(content=text, code_snippets=extract_code_snippets(text), model=model)

        result = await self.queue.schedule(
            lambda: execute(self.text_policy, attempt, fallback=degraded_explanation, sleep=self._sleep)
        )
        if result.ok and cache_key is not None:
            self.cache.set(cache_key, result.model_dump(mode="json"))
        return result

    async def generate_repo_explanation(
        self, repo_name: str, tree: TreeNode | None, readme: str | None = None,
    ) -> Explanation:
        key = ResponseCache.generate_key(repo_name, "", CacheKind.EXPLANATION)
        return await self._explain(prompts.build_repo_prompt(repo_name, tree, readme), key)

    async def generate_directory_explanation(self, repo_name: str, node: TreeNode) -> Explanation:
        key = ResponseCache.generate_key(repo_name, node.path, CacheKind.EXPLANATION)
        prompt = prompts.build_directory_prompt(node.path or node.name, node.children or [], repo_name)
        return await self._explain(prompt, key)

    async def generate_file_explanation(self, repo_name: str, path: str, content: str) -> Explanation:
        key = ResponseCache.generate_key(repo_name, path, CacheKind.EXPLANATION)
        return await self._explain(prompts.build_file_prompt(path, content, repo_name), key)

    async def generate_explanation(
        self,
        repo_name: str,
        node: TreeNode,
        *,
        content: str | None = None,
        readme: str | None = None,
    ) -> Explanation:
        """Explain *node*: the repository root, a directory or a file."""
        if node.is_dir:
            if not node.path.strip("/"):
                return await self.generate_repo_explanation(repo_name, node, readme)
            return await self.generate_directory_explanation(repo_name, node)
        if content is None:
            raise ValueError(f"File content is required to explain {node.path or node.name}")
        return await self.generate_file_explanation(repo_name, node.path or node.name, content)

    async def generate_question_response(
        self, repo_name: str, path: str, content: str, question: str,
    ) -> Explanation:
        key = ResponseCache.generate_key(repo_name, f"{path}?{question.strip()}", CacheKind.CODE_QA)
        return await self._explain(prompts.build_question_prompt(question, path, content, repo_name), key)

    async def generate_function_explanation(
        self, repo_name: str, path: str, function_name: str, code: str,
    ) -> Explanation:
        key = ResponseCache.generate_key(repo_name, f"{path}#{function_name}", CacheKind.FUNCTION)
        return await self._explain(prompts.build_function_prompt(function_name, code), key)

    async def generate_batch_function_explanations(
        self, functions: Sequence[tuple[str, str]],
    ) -> dict[str, str]:
        """Summarise many ``(name, code)`` pairs with a single call."""
        if not functions:
            return {}
        names = [name for name, _ in functions]
        result = await self._explain(prompts.build_batch_function_prompt(functions), None)
        if not result.ok:
            return {name: NO_EXPLANATION for name in names}
        return parse_function_summaries(result.content, names)

    # ------------------------------------------------------------------
    # Architecture diagram workflow
    # ------------------------------------------------------------------

    async def generate_architecture_diagram(
        self,
        repo_id: str,
        tree: TreeNode,
        *,
        files: Mapping[str, str] | None = None,
        facts: CodebaseFacts | None = None,
    ) -> DiagramResult:
        """Return an AI-built diagram, a cached one, or the local fallback.

        Never raises for inference or synthesis failures.
        """
        trace: list[DiagramState] = [DiagramState.CACHE_CHECK]
        key = ResponseCache.generate_key(repo_id, "root", CacheKind.DIAGRAM)

        hit = self.cache.get(key)
        if isinstance(hit, dict) and isinstance(hit.get("mermaid"), str):
            try:
                architecture = (
                    ArchitectureData.model_validate(hit["architecture"])
                    if hit.get("architecture") else None
                )
            except ValueError as exc:
                logger.debug("Cached architecture for %s is unreadable: %s", repo_id, exc)
                architecture = None
            trace += [DiagramState.CACHE_HIT, DiagramState.DONE]
            logger.info("Diagram cache hit for %s", repo_id)
            return DiagramResult(
                mermaid=hit["mermaid"],
                cached=True,
                architecture=architecture,
                trace=[s.value for s in trace],
            )
        trace.append(DiagramState.CACHE_MISS)

        try:
            if facts is None:
                facts = analyze_codebase(files or {})
            prompt = prompts.build_architecture_prompt(repo_id, tree, facts)

            async def attempt(model: str) -> ArchitectureData:
                trace.append(DiagramState.CALLING)
                try:
                    await self.queue.pace()
                    raw = await self.endpoint.invoke(model, prompt, DIAGRAM_CONFIG)
                    return extract_architecture(raw)
                except Exception:
                    trace.append(DiagramState.RETRYABLE_FAILURE)
                    raise

            data = await self.queue.schedule(
                lambda: execute(self.diagram_policy, attempt, sleep=self._sleep)
            )
            trace += [DiagramState.SUCCESS, DiagramState.SYNTHESIZING]
            mermaid = synthesize(data)
        except Exception as exc:
            kind = exc.kind if isinstance(exc, InferenceError) else FailureKind.UNKNOWN
            logger.warning("Architecture generation failed for %s (%s); using local fallback", repo_id, exc)
            trace += [DiagramState.TERMINAL_FAILURE, DiagramState.FALLBACK, DiagramState.DONE]
            return DiagramResult(
                mermaid=synthesize_from_tree(tree),
                status=ResultStatus.FALLBACK,
                failure=kind,
                trace=[s.value for s in trace],
            )

        self.cache.set(key, {"mermaid": mermaid, "architecture": data.model_dump(mode="json", by_alias=True)})
        trace += [DiagramState.CACHED, DiagramState.DONE]
        return DiagramResult(
            mermaid=mermaid,
            architecture=data,
            trace=[s.value for s in trace],
        )
