"""
Data structures shared by the billing aggregation and forecasting pipeline.

Line items stay as ordered key/value mappings exactly as the provider delivers
them; everything in this module is derived from them and recomputed on every
pipeline run.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

# A single billing export row, tagged with its owning invoice by the adapter
LineItem = Mapping[str, Any]

# label -> signed running total
BucketMapping = Dict[str, Decimal]


class Dimension(str, Enum):
    """Aggregation dimensions"""
    CATEGORY = "category"
    PROJECT = "project"
    PRODUCT = "product"
    MONTH = "month"


class TrendDirection(str, Enum):
    """Month-over-month trend direction"""
    UP = "Up"
    DOWN = "Down"
    # Never produced by the calculator: a zero change reads as Up
    FLAT = "Flat"
    UNKNOWN = "Unknown"


class ForecastMethod(str, Enum):
    """Forecast regime selected from the length of the monthly series"""
    NO_DATA = "no_data"
    CARRY_FORWARD = "carry_forward"
    DAMPED_GROWTH = "damped_growth"
    LINEAR_REGRESSION = "linear_regression"
    WEIGHTED_AVERAGE = "weighted_average"
    ENSEMBLE = "ensemble"


@dataclass(frozen=True)
class Invoice:
    """One billing period statement"""
    invoice_id: str
    period: Optional[str]
    amount: Decimal
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class MonthlyPoint:
    """One (period label, total) pair of a monthly series"""
    label: str
    total: Decimal


@dataclass(frozen=True)
class ForecastResult:
    """Trend and next-period forecast for a monthly series"""
    trend_direction: TrendDirection
    trend_percent: Optional[float]
    forecast_amount: float
    confidence_label: str
    method: ForecastMethod
    anomaly_adjusted: bool = False
    previous_was_zero: bool = False

    @property
    def trend_text(self) -> str:
        """Human readable trend, e.g. 'Up 12.5%'"""
        if self.trend_direction == TrendDirection.UNKNOWN or self.trend_percent is None:
            if self.previous_was_zero:
                return "N/A (Previous spend was $0)"
            return "N/A"
        return f"{self.trend_direction.value} {abs(self.trend_percent):.1f}%"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trend_direction": self.trend_direction.value,
            "trend_percent": self.trend_percent,
            "trend_text": self.trend_text,
            "forecast_amount": self.forecast_amount,
            "confidence_label": self.confidence_label,
            "method": self.method.value,
            "anomaly_adjusted": self.anomaly_adjusted,
        }


@dataclass
class SpendSummary:
    """Result of a full pipeline run over line items or invoices"""
    total_amount: Decimal
    item_count: int
    invoice_count: int
    category_totals: BucketMapping = field(default_factory=dict)
    project_totals: BucketMapping = field(default_factory=dict)
    product_totals: BucketMapping = field(default_factory=dict)
    monthly_series: List[MonthlyPoint] = field(default_factory=list)
    forecast: Optional[ForecastResult] = None
    used_invoice_totals: bool = False

    @classmethod
    def empty(cls) -> "SpendSummary":
        """Zero-valued summary for an empty input"""
        return cls(
            total_amount=Decimal("0"),
            item_count=0,
            invoice_count=0,
            forecast=ForecastResult(
                trend_direction=TrendDirection.UNKNOWN,
                trend_percent=None,
                forecast_amount=0.0,
                confidence_label="No data available",
                method=ForecastMethod.NO_DATA,
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to plain data for API responses and the cache"""
        return {
            "total_amount": float(self.total_amount),
            "item_count": self.item_count,
            "invoice_count": self.invoice_count,
            "category_totals": {k: float(v) for k, v in self.category_totals.items()},
            "project_totals": {k: float(v) for k, v in self.project_totals.items()},
            "product_totals": {k: float(v) for k, v in self.product_totals.items()},
            "monthly_series": [
                {"label": point.label, "total": float(point.total)}
                for point in self.monthly_series
            ],
            "forecast": self.forecast.to_dict() if self.forecast else None,
            "used_invoice_totals": self.used_invoice_totals,
        }
