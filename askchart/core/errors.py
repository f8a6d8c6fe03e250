"""
Error types raised inside the compiler pipeline.

None of these are fatal to the host process: the pipeline converts every
one of them into an empty or partial ``ChartResult`` plus a message.
"""
from __future__ import annotations


class AskChartError(Exception):
    """Base class for all pipeline errors."""


class StoreQueryError(AskChartError):
    """An aggregate round trip failed (transport error or ``{error}`` payload)."""

    def __init__(self, table: str, detail: str):
        self.table = table
        self.detail = detail
        super().__init__(f"Aggregate query on '{table}' failed: {detail}")


FALLBACK_TIMEOUT = "timeout"
FALLBACK_SERVER = "server"
FALLBACK_MALFORMED = "malformed"
FALLBACK_GENERIC = "generic"

_FALLBACK_MESSAGES: dict[str, str] = {
    FALLBACK_TIMEOUT: "Request timed out. Try a simpler query or check your connection.",
    FALLBACK_SERVER: "Server error. Please try again in a moment.",
    FALLBACK_MALFORMED: "The analysis service returned an unreadable response. Please try again.",
}


class FallbackServiceError(AskChartError):
    """The external reasoning service failed.

    ``kind`` is one of ``timeout``, ``server``, ``malformed`` or ``generic``;
    ``user_message`` is what the dashboard shows.
    """

    def __init__(self, kind: str, detail: str = ""):
        self.kind = kind
        self.detail = detail
        super().__init__(detail or kind)

    @property
    def user_message(self) -> str:
        if self.kind in _FALLBACK_MESSAGES:
            return _FALLBACK_MESSAGES[self.kind]
        return self.detail or "AI request failed"


class SupersededError(AskChartError):
    """A newer prompt replaced this pipeline run before it finished."""

    def __init__(self, generation: int):
        self.generation = generation
        super().__init__(f"Pipeline run {generation} was superseded")
