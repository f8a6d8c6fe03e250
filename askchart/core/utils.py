"""
Small shared utilities.
"""
from __future__ import annotations

import math
import time
from contextlib import contextmanager
from decimal import ROUND_HALF_UP, Decimal
from typing import Generator, Hashable, Iterable, TypeVar

T = TypeVar("T", bound=Hashable)

_CENT = Decimal("0.01")
_CENT_LIMIT = 1e15


@contextmanager
def timer() -> Generator[dict, None, None]:
    """Context manager that records elapsed wall-clock milliseconds."""
    result: dict = {}
    start = time.perf_counter()
    try:
        yield result
    finally:
        result["elapsed_ms"] = int((time.perf_counter() - start) * 1000)


def round_value(value: float) -> float:
    """Round a chart value half-up to two decimal places.

    Non-finite values and magnitudes past float cent precision come back
    unchanged.
    """
    value = float(value)
    if not math.isfinite(value) or abs(value) >= _CENT_LIMIT:
        return value
    return float(Decimal(repr(value)).quantize(_CENT, rounding=ROUND_HALF_UP))


def dedupe(items: Iterable[T]) -> list[T]:
    """Drop repeats while keeping first-seen order."""
    seen: set[T] = set()
    out: list[T] = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out


def format_field_name(name: str) -> str:
    """``origin_state`` -> ``Origin State``."""
    if not name:
        return ""
    return name.replace("_", " ").title()
