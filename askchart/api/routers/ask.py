"""POST /ask -- prompt to chart data; POST /ask/classify -- dry-run intent detection."""
from __future__ import annotations

import datetime
from functools import lru_cache
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, ValidationError

from askchart.copilot.models import ChartResult, DateRange, QueryScope
from askchart.copilot.service import ChartPipeline
from askchart.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


@lru_cache
def get_pipeline() -> ChartPipeline:
    return ChartPipeline()



class AskRequest(BaseModel):
    prompt: str = Field(..., min_length=1, max_length=500, description="Free-text chart request")
    customer_id: int | None = Field(None, description="Customer scope; omit for admin")
    start_date: datetime.date | None = None
    end_date: datetime.date | None = None
    user_id: str | None = None

    def date_range(self) -> DateRange | None:
        if self.start_date is None or self.end_date is None:
            return None
        return DateRange(start=self.start_date, end=self.end_date)


class ClassifyRequest(BaseModel):
    prompt: str = Field(..., min_length=1, max_length=500)


class AskResponse(BaseModel):
    prompt: str
    intent: dict[str, Any] | None
    success: bool
    result: ChartResult


class ClassifyResponse(BaseModel):
    prompt: str
    intent: dict[str, Any] | None
    route: str



@router.post("", response_model=AskResponse)
async def ask_endpoint(req: AskRequest, pipeline: ChartPipeline = Depends(get_pipeline)):
    """Classify, query, merge and assemble chart data for one prompt."""
    try:
        date_range = req.date_range()
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail="start_date must not be after end_date") from exc

    result = await pipeline.ask(
        req.prompt,
        scope=QueryScope(customer_id=req.customer_id),
        date_range=date_range,
        user_id=req.user_id,
    )
    return AskResponse(
        prompt=req.prompt,
        intent=result.intent.model_dump(mode="json") if result.intent is not None else None,
        success=result.success,
        result=result,
    )


@router.post("/classify", response_model=ClassifyResponse)
def classify_endpoint(req: ClassifyRequest, pipeline: ChartPipeline = Depends(get_pipeline)):
    """Dry-run: report the detected intent without touching the store."""
    intent = pipeline.classify(req.prompt)
    return ClassifyResponse(
        prompt=req.prompt,
        intent=intent.model_dump(mode="json") if intent is not None else None,
        route="local" if intent is not None else "fallback",
    )
