from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

# USD per 1M tokens.
PRICING: dict[str, dict[str, float]] = {
    "gemini-2.0-flash-exp": {"input": 0.075, "output": 0.3},
    "text-embedding-004": {"input": 0.075, "output": 0.0},
    "default": {"input": 0.075, "output": 0.3},
}

OPERATION_JOB_EXTRACTION = "job-extraction"
OPERATION_EMBEDDING = "embedding"
OPERATION_STRUCTURED_EMBEDDING = "structured-embedding"


def calculate_cost(model: str, usage: dict[str, Any], operation: str) -> dict[str, Any]:
    pricing = PRICING.get(model, PRICING["default"])

    input_tokens = _tokens(usage.get("prompt_tokens")) or _tokens(usage.get("total_tokens"))
    output_tokens = _tokens(usage.get("completion_tokens"))
    input_cost = input_tokens / 1_000_000 * pricing["input"]
    output_cost = output_tokens / 1_000_000 * pricing["output"]

    return {
        "model": model,
        "operation": operation,
        "usage": {
            "prompt_tokens": input_tokens,
            "completion_tokens": output_tokens,
            "total_tokens": _tokens(usage.get("total_tokens")) or input_tokens + output_tokens,
        },
        "cost": {
            "input_cost": round(input_cost, 8),
            "output_cost": round(output_cost, 8),
            "total_cost": round(input_cost + output_cost, 8),
        },
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def extract_usage(payload: Any) -> dict[str, int]:
    """Normalize a collaborator ``usage`` block for text generation."""
    if not isinstance(payload, dict):
        return {}
    usage: dict[str, int] = {}
    for key in ("prompt_tokens", "completion_tokens", "total_tokens"):
        if isinstance(payload.get(key), int):
            usage[key] = payload[key]
    return usage


def extract_embedding_usage(payload: Any) -> dict[str, int]:
    """Embedding usage reports input tokens only, under varying names."""
    if not isinstance(payload, dict):
        return {}
    input_tokens = 0
    for key in ("input_tokens", "prompt_tokens", "total_tokens"):
        if isinstance(payload.get(key), int):
            input_tokens = payload[key]
            break
    total = payload.get("total_tokens")
    return {
        "prompt_tokens": input_tokens,
        "completion_tokens": 0,
        "total_tokens": total if isinstance(total, int) else input_tokens,
    }


def _tokens(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        return 0
    return max(0, value)
