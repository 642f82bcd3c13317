"""Approximate token counting for rate limiting and context budgets."""

import json
from functools import lru_cache
from typing import Any

import tiktoken

from sandcoder.utils.logging import get_logger

logger = get_logger(__name__)


@lru_cache(maxsize=1)
def _get_encoding() -> tiktoken.Encoding | None:
    try:
        # Close approximation for every supported provider
        return tiktoken.encoding_for_model("gpt-4")
    except Exception as e:
        logger.warning(f"tiktoken encoding unavailable, falling back to character estimate: {e}")
        return None


def estimate_tokens(text: str) -> int:
    """Estimate the token count of ``text``.

    Args:
        text: Arbitrary text

    Returns:
        Estimated token count (roughly 4 characters per token without tiktoken)
    """
    if not text:
        return 0
    encoding = _get_encoding()
    try:
        return len(encoding.encode(text, disallowed_special=())) if encoding else len(text) // 4
    except Exception:
        # Fallback: roughly 4 characters per token
        return len(text) // 4


def estimate_payload_tokens(payload: Any) -> int:
    """Estimate tokens for a JSON-serialisable request payload."""
    return estimate_tokens(json.dumps(payload, default=str))
