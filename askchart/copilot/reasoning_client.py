"""
Reasoning fallback client -- provider-agnostic wrapper.

Used only when the local classifier finds no intent.

Supported providers:
  mock  -- no I/O; reports that nothing could be visualised
  http  -- the ``investigate`` edge function (POST, bearer auth)

Configuration is read from Settings (env / .env).
"""
from __future__ import annotations

import json
from typing import Any, Awaitable, Callable

import httpx
from pydantic import BaseModel, Field, ValidationError

from askchart.catalog.loader import load_field_catalog
from askchart.copilot.classifier import has_metric_keyword
from askchart.core.config import get_settings
from askchart.core.errors import (
    FALLBACK_GENERIC,
    FALLBACK_MALFORMED,
    FALLBACK_SERVER,
    FALLBACK_TIMEOUT,
    FallbackServiceError,
)
from askchart.core.logging import get_logger

logger = get_logger(__name__)

_SERVER_STATUSES = {500, 502, 503, 504}


# ── Payloads ────────────────────────────────────────────

class FallbackRequest(BaseModel):
    question: str
    scope_id: str = "0"
    user_id: str | None = None
    preferences: dict[str, Any] = Field(
        default_factory=lambda: {"showReasoning": True, "forceMode": "visual"},
    )

    def to_body(self) -> dict[str, Any]:
        return {
            "question": self.question,
            "customerId": self.scope_id,
            "userId": self.user_id,
            "conversationHistory": [],
            "preferences": self.preferences,
        }


class VisualizationConfig(BaseModel):
    groupBy: str | None = None
    metric: str | None = None


class Visualization(BaseModel):
    type: str = "bar"
    title: str = ""
    config: VisualizationConfig = Field(default_factory=VisualizationConfig)
    data: dict[str, Any] = Field(default_factory=dict)


class FallbackResponse(BaseModel):
    success: bool = False
    visualizations: list[Visualization] = Field(default_factory=list)
    reasoning: list[dict[str, Any]] = Field(default_factory=list)
    error: str | None = None


# ── Prompt shaping ──────────────────────────────────────

def build_fallback_prompt(prompt: str, is_admin: bool) -> str:
    """Wrap the user prompt with metric, product and security hints."""
    catalog = load_field_catalog()
    lower = prompt.lower()

    metric_hint = ""
    if not has_metric_keyword(lower, catalog):
        default_metric = "average cost per shipment" if is_admin else "average retail (your charge) per shipment"
        metric_hint = f"\n\nNOTE: The user didn't specify a metric. Default to {default_metric}."

    mentioned = [p.label for p in catalog.products if p.find(lower) >= 0]
    product_hint = ""
    if len(mentioned) >= 2:
        steps = "\n".join(
            f"{i}. Filter: {catalog.text_search_field} ILIKE '%{p}%' -> Return as \"{p}\" category"
            for i, p in enumerate(mentioned, start=1)
        )
        product_hint = (
            "\n\nIMPORTANT - PRODUCT COMPARISON DETECTED:\n"
            f"The user wants to compare these {len(mentioned)} product categories: {', '.join(mentioned)}\n"
            f"You MUST return {len(mentioned)} SEPARATE data points, one for each category.\n"
            "DO NOT combine them into a single value.\n\n"
            f"For each product term, run a separate query:\n{steps}"
        )

    security = ""
    if not is_admin:
        restricted = ", ".join(sorted(catalog.admin_only_ids()))
        security = (
            "\nSECURITY: This user is a CUSTOMER. Never include: "
            f"{restricted}. Use 'retail' for financial data."
        )

    return (
        "Create a dashboard widget visualization.\n\n"
        f'User request: "{prompt}"\n'
        f"{metric_hint}{product_hint}\n\n"
        "Instructions:\n"
        "1. If specific products are mentioned, return SEPARATE data points for EACH product category\n"
        "2. Use the appropriate aggregation:\n"
        '   - "average" or "avg" = use AVG aggregation\n'
        '   - "total" or "sum" = use SUM aggregation\n'
        '   - "how many" or "count" = use COUNT aggregation\n'
        f"3. Search the {catalog.text_search_field} field for product terms\n"
        "4. Limit results to top 15 groups maximum\n"
        f"{security}\n\n"
        "Return a clear visualization with properly grouped data."
    )


# ── Providers ───────────────────────────────────────────

def _parse_body(text: str) -> FallbackResponse:
    if not text.strip():
        raise FallbackServiceError(FALLBACK_TIMEOUT, "Unexpected end of JSON input")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise FallbackServiceError(FALLBACK_MALFORMED, f"Invalid JSON: {exc}") from exc
    try:
        return FallbackResponse.model_validate(data)
    except ValidationError as exc:
        raise FallbackServiceError(FALLBACK_MALFORMED, f"Unexpected payload: {exc.error_count()} error(s)") from exc


async def _call_mock(request: FallbackRequest, client: httpx.AsyncClient | None = None) -> FallbackResponse:
    logger.info("Reasoning mock mode -- no visualization")
    return FallbackResponse(
        success=False,
        error="AI could not generate visualization. "
              'Try a prompt like: "Average cost for drawer, cargoglide, toolbox"',
        reasoning=[{"type": "routing", "content": "mock reasoning provider"}],
    )


async def _call_http(request: FallbackRequest, client: httpx.AsyncClient | None = None) -> FallbackResponse:
    """POST to the investigate edge function."""
    settings = get_settings()
    if not settings.supabase_url:
        raise FallbackServiceError(
            FALLBACK_GENERIC,
            "supabase_url is not set.  Set SUPABASE_URL in your .env file or environment.",
        )

    headers = {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {settings.supabase_key}",
    }
    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(timeout=httpx.Timeout(settings.http_timeout_seconds))
    try:
        response = await client.post(settings.reasoning_url, json=request.to_body(), headers=headers)
    except httpx.TimeoutException as exc:
        raise FallbackServiceError(FALLBACK_TIMEOUT, str(exc)) from exc
    except httpx.HTTPError as exc:
        raise FallbackServiceError(FALLBACK_GENERIC, f"Request failed: {exc}") from exc
    finally:
        if owns_client:
            await client.aclose()

    if response.status_code in _SERVER_STATUSES:
        raise FallbackServiceError(FALLBACK_SERVER, f"Request failed: {response.status_code}")
    if response.status_code >= 400:
        raise FallbackServiceError(FALLBACK_GENERIC, f"Request failed: {response.status_code}")

    parsed = _parse_body(response.text)
    logger.info(
        "Reasoning response success=%s visualizations=%d steps=%d",
        parsed.success, len(parsed.visualizations), len(parsed.reasoning),
    )
    return parsed


Provider = Callable[[FallbackRequest, "httpx.AsyncClient | None"], Awaitable[FallbackResponse]]

_PROVIDERS: dict[str, Provider] = {
    "mock": _call_mock,
    "http": _call_http,
}


async def call_reasoning(
    request: FallbackRequest,
    provider: str | None = None,
    client: httpx.AsyncClient | None = None,
) -> FallbackResponse:
    """Send *request* to the configured (or overridden) reasoning provider.

    Raises
    ------
    FallbackServiceError
        On transport failures, HTTP errors and unreadable payloads.
    NotImplementedError
        For an unknown provider name.
    """
    if provider is None:
        provider = get_settings().reasoning_provider.lower()

    fn = _PROVIDERS.get(provider)
    if fn is None:
        raise NotImplementedError(
            f"Reasoning provider '{provider}' is not supported.  "
            f"Choose from: {', '.join(_PROVIDERS)}"
        )

    logger.info("Calling reasoning provider=%s  question_len=%d", provider, len(request.question))
    return await fn(request, client)
