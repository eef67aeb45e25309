"""Inference endpoints, request scheduling, retries, prompts and parsing."""

from .parser import extract_architecture, extract_json, extract_text
from .providers import (
    GenerationConfig,
    InferenceEndpoint,
    RawResponse,
    get_endpoint,
    resolve_api_key,
)
from .queue import RequestQueue, get_default_queue
from .retry import RetryPolicy, execute

__all__ = [
    "extract_architecture",
    "extract_json",
    "extract_text",
    "GenerationConfig",
    "InferenceEndpoint",
    "RawResponse",
    "get_endpoint",
    "resolve_api_key",
    "RequestQueue",
    "get_default_queue",
    "RetryPolicy",
    "execute",
]
