"""
FastAPI application exposing the billing engine over HTTP.

Endpoints:
- GET  /health
- POST /api/v1/billing/summary            line-item pipeline
- POST /api/v1/billing/invoices/summary   invoice-level pipeline
- POST /api/v1/billing/forecast           trend and forecast for a monthly series
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, FastAPI, HTTPException, status
from pydantic import BaseModel, Field

from finops import __version__
from finops.core.config import get_settings
from finops.core.logging_config import configure_logging
from finops.services.billing import (
    TimeWindow,
    append_forecast_point,
    compute_trend_and_forecast,
    sort_buckets,
    summarize_invoices,
    summarize_line_items,
)
from finops.services.billing.models import SpendSummary
from finops.services.billing.normalizer import format_currency
from finops.services.ingestion import PayloadError, parse_invoices

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/billing", tags=["billing"])


class LineItemSummaryRequest(BaseModel):
    """Request model for the line-item pipeline"""
    line_items: List[Dict[str, Any]] = Field(default_factory=list, description="Tagged billing line items")
    window: TimeWindow = Field(TimeWindow.ALL_TIME, description="Time window to report on")
    now: Optional[datetime] = Field(None, description="Reference time for the window")


class InvoiceSummaryRequest(BaseModel):
    """Request model for the invoice-level pipeline"""
    invoices: List[Dict[str, Any]] = Field(default_factory=list, description="Invoice list entries")
    line_items: Optional[List[Dict[str, Any]]] = Field(None, description="Optional line items for breakdowns")
    window: TimeWindow = Field(TimeWindow.ALL_TIME, description="Time window to report on")
    now: Optional[datetime] = Field(None, description="Reference time for the window")


class SeriesPoint(BaseModel):
    label: str
    total: float


class ForecastRequest(BaseModel):
    """Request model for a standalone forecast"""
    series: List[SeriesPoint] = Field(default_factory=list, description="Monthly totals")
    include_chart: bool = Field(False, description="Append the forecast as the next period")


def _summary_response(summary: SpendSummary, window: TimeWindow) -> Dict[str, Any]:
    response = summary.to_dict()
    response["window"] = window.value
    response["total_formatted"] = format_currency(summary.total_amount)
    for key, buckets in (
        ("category_ranking", summary.category_totals),
        ("project_ranking", summary.project_totals),
        ("product_ranking", summary.product_totals),
    ):
        response[key] = [{"label": label, "total": float(total)} for label, total in sort_buckets(buckets)]
    return response


@router.post("/summary")
async def line_item_summary(request: LineItemSummaryRequest) -> Dict[str, Any]:
    """Aggregate line items by category, project, product and month, with a forecast"""
    summary = summarize_line_items(request.line_items, request.window, now=request.now)
    logger.info("summary_requested", window=request.window.value, items=len(request.line_items))
    return _summary_response(summary, request.window)


@router.post("/invoices/summary")
async def invoice_summary(request: InvoiceSummaryRequest) -> Dict[str, Any]:
    """Monthly invoice totals with a forecast; invalid entries are reported, not summarized"""
    try:
        invoices, rejections = parse_invoices(request.invoices)
    except PayloadError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if rejections and not invoices:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=[{"index": r.index, "reason": r.reason} for r in rejections],
        )

    summary = summarize_invoices(invoices, request.window, now=request.now, line_items=request.line_items)
    response = _summary_response(summary, request.window)
    response["rejections"] = [{"index": r.index, "reason": r.reason} for r in rejections]
    return response


@router.post("/forecast")
async def forecast(request: ForecastRequest) -> Dict[str, Any]:
    """Trend and next-month forecast for a monthly series"""
    series = [(point.label, point.total) for point in request.series]
    result = compute_trend_and_forecast(series)
    response = result.to_dict()
    if request.include_chart:
        response["chart"] = [
            {"label": point.label, "total": float(point.total)}
            for point in append_forecast_point(series, result)
        ]
    return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info("🚀 Starting FinOps billing API", environment=settings.app.env, version=__version__)
    yield
    logger.info("🛑 FinOps billing API stopped")


def create_app() -> FastAPI:
    """Build the FastAPI application"""
    settings = get_settings()
    configure_logging()
    app = FastAPI(
        title="FinOps Billing Insights API",
        description="Billing aggregation and spend forecasting",
        version=__version__,
        docs_url=None if settings.is_production else "/docs",
        lifespan=lifespan,
    )

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "service": "finops-billing-insights",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": __version__,
        }

    app.include_router(router)
    return app


app = create_app()


def run() -> None:
    """Serve the API with uvicorn"""
    import uvicorn

    settings = get_settings()
    logger.info("🚀 Starting FinOps billing API", host=settings.app.host, port=settings.app.port)
    uvicorn.run(
        "finops.services.api.app:app",
        host=settings.app.host,
        port=settings.app.port,
        log_level=settings.app.log_level.lower(),
    )


if __name__ == "__main__":
    run()
