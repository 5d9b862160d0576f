"""Token and USD cost estimation for catalog models."""
from __future__ import annotations

import math
from typing import Any, Dict

TOKENS_PER_MILLION = 1_000_000
CHARS_PER_TOKEN = 4


def estimate_tokens(text: str | None) -> int:
    """Rough token count for text when a provider does not report usage."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def _clean_count(value: Any) -> int:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(number) or number < 0:
        return 0
    return int(math.floor(number))


def _clean_price(value: Any) -> float | None:
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(price) or price < 0:
        return None
    return price


def normalize_usage(input_tokens: Any, output_tokens: Any) -> Dict[str, int]:
    inp = _clean_count(input_tokens)
    out = _clean_count(output_tokens)
    return {"input_tokens": inp, "output_tokens": out, "total_tokens": inp + out}


def estimate_cost(model: Any, input_tokens: Any, output_tokens: Any) -> float:
    """Return the USD cost of a call on ``model``.

    ``model`` is anything exposing ``cost_per_mtok_in`` and ``cost_per_mtok_out``
    (USD per million tokens). Invalid prices or token counts contribute zero,
    so the result is always finite and non-negative.
    """
    price_in = _clean_price(getattr(model, "cost_per_mtok_in", None))
    price_out = _clean_price(getattr(model, "cost_per_mtok_out", None))
    if price_in is None or price_out is None:
        return 0.0
    usage = normalize_usage(input_tokens, output_tokens)
    return (
        usage["input_tokens"] / TOKENS_PER_MILLION * price_in
        + usage["output_tokens"] / TOKENS_PER_MILLION * price_out
    )
