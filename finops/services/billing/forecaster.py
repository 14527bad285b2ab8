"""
Trend & Forecast Calculator for monthly spend series.

The forecasting method depends on how much history is available:

- 1 month: carry the value forward
- 2 months: damped growth
- 3-5 months: least-squares linear trend with a curvature correction
- 6-11 months: weighted 6-month average times a capped growth factor
- 12+ months: ensemble of a growth-trend model and a seasonal moving average

When at least 4 months exist, a last month that is an outlier against both the
median and the trailing 3-month average pulls the forecast back toward them.

Series values can be negative (net credits). Every ratio divides by the
magnitude of its base, so a negative base never flips the direction.
"""

from decimal import Decimal
from typing import Iterable, List, Sequence, Tuple, Union

import numpy as np
import structlog

from .models import ForecastMethod, ForecastResult, MonthlyPoint, TrendDirection
from .periods import next_period_label, parse_period_label, period_sort_key, shift_months

logger = structlog.get_logger(__name__)

SeriesInput = Iterable[Union[MonthlyPoint, Tuple[str, Union[Decimal, float, int]]]]

# Most recent month first
WEIGHTED_AVERAGE_WEIGHTS: Tuple[float, ...] = (0.35, 0.25, 0.15, 0.10, 0.08, 0.07)

GROWTH_FACTOR_BOUNDS = (0.9, 1.1)
SEASONAL_FACTOR_BOUNDS = (0.8, 1.2)
TREND_MODEL_WEIGHT = 0.6
MOVING_AVERAGE_WEIGHT = 0.4

ANOMALY_MIN_POINTS = 4
ANOMALY_MEDIAN_THRESHOLD = 0.3
ANOMALY_TRAILING_THRESHOLD = 0.25
ANOMALY_KEEP_WEIGHT = 0.4
ANOMALY_SUFFIX = " (adjusted for recent anomaly)"

# Confidence band (percent) per method: fixed for sparse data, CV-derived bounds otherwise
FIXED_CONFIDENCE = {
    ForecastMethod.CARRY_FORWARD: 50,
    ForecastMethod.DAMPED_GROWTH: 25,
}
CONFIDENCE_BOUNDS = {
    ForecastMethod.LINEAR_REGRESSION: (10, 40),
    ForecastMethod.WEIGHTED_AVERAGE: (8, 35),
    ForecastMethod.ENSEMBLE: (5, 30),
}

NO_DATA_LABEL = "No data available"


def _clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def _relative_ratio(value: float, base: float) -> float:
    """value/base measured against |base|; equals value/base for a positive base"""
    return 1.0 + (value - base) / abs(base)


def _apply_factor(base: float, factor: float) -> float:
    """Scale base by factor relative to its magnitude, so factor > 1 always moves it up"""
    return base + abs(base) * (factor - 1)


def _relative_deviation(value: float, reference: float) -> float:
    if reference == 0:
        return 0.0 if value == 0 else float("inf")
    return abs(value - reference) / abs(reference)


def _normalize_series(series: SeriesInput) -> List[MonthlyPoint]:
    points = []
    for entry in series:
        if isinstance(entry, MonthlyPoint):
            points.append(entry)
        else:
            label, total = entry
            points.append(MonthlyPoint(label=str(label), total=Decimal(str(total))))
    return sorted(points, key=lambda point: period_sort_key(point.label))


def _trend(values: Sequence[float]) -> Tuple[TrendDirection, Union[float, None], bool]:
    if len(values) < 2:
        return TrendDirection.UNKNOWN, None, False
    previous, last = values[-2], values[-1]
    if previous == 0:
        return TrendDirection.UNKNOWN, None, True
    delta = last - previous
    percent = delta / abs(previous) * 100
    direction = TrendDirection.UP if delta >= 0 else TrendDirection.DOWN
    return direction, round(percent, 1), False


def _damped_growth(values: Sequence[float]) -> float:
    previous, last = values[-2], values[-1]
    if previous == 0:
        return last
    ratio = _relative_ratio(last, previous)
    damping = 0.7 if 0.75 <= ratio <= 1.5 else 0.5
    forecast = last + abs(last) * (ratio - 1) * damping
    band = 0.3 * abs(last)
    return _clamp(forecast, last - band, last + band)


def _linear_regression(values: Sequence[float]) -> float:
    n = len(values)
    x = np.arange(n, dtype=float)
    slope, intercept = np.polyfit(x, np.asarray(values, dtype=float), 1)
    forecast = float(intercept + slope * n)

    curvature = values[-1] - 2 * values[-2] + values[-3]
    forecast += 0.3 * curvature

    last = values[-1]
    if last > 0:
        forecast = _clamp(forecast, 0.5 * last, 2 * last)
    return forecast


def _growth_factor(values: Sequence[float]) -> float:
    """Per-month growth between the first and second half, clamped"""
    half = len(values) // 2
    first_mean = float(np.mean(values[:half]))
    second_mean = float(np.mean(values[half:]))
    if first_mean == 0:
        return 1.0
    ratio = _relative_ratio(second_mean, first_mean)
    lower, upper = GROWTH_FACTOR_BOUNDS
    if ratio <= 0:
        return lower
    # Half centres are len/2 months apart
    offset = len(values) / 2
    return _clamp(ratio ** (1 / offset), lower, upper)


def _weighted_average(values: Sequence[float]) -> float:
    recent = list(reversed(values[-len(WEIGHTED_AVERAGE_WEIGHTS):]))
    weights = WEIGHTED_AVERAGE_WEIGHTS[:len(recent)]
    average = sum(w * v for w, v in zip(weights, recent)) / sum(weights)
    return _apply_factor(average, _growth_factor(values))


def _year_ago_factor(points: Sequence[MonthlyPoint]) -> float:
    """
    Seasonal factor of the forecast month's calendar month one year earlier.

    Compares that month against up to three calendar months before it. Months
    are looked up by label, so a gap in the series never shifts the lookup;
    1.0 when the year-ago month or all of its predecessors are missing.
    """
    totals = {}
    for point in points:
        month = parse_period_label(point.label)
        if month is not None:
            totals[month] = totals.get(month, 0.0) + float(point.total)

    last_month = parse_period_label(points[-1].label)
    if last_month is None:
        return 1.0
    # Forecast month is last + 1, so one year before it is last - 11
    target_month = shift_months(last_month, -11)
    if target_month not in totals:
        return 1.0

    preceding = [
        totals[month]
        for month in (shift_months(target_month, -offset) for offset in (1, 2, 3))
        if month in totals
    ]
    if not preceding:
        return 1.0
    base = float(np.mean(preceding))
    if base == 0:
        return 1.0
    lower, upper = SEASONAL_FACTOR_BOUNDS
    return _clamp(_relative_ratio(totals[target_month], base), lower, upper)


def _seasonal_factor(points: Sequence[MonthlyPoint]) -> float:
    values = [float(point.total) for point in points]
    lower, upper = SEASONAL_FACTOR_BOUNDS
    if len(values) >= 13:
        return _year_ago_factor(points)

    first_mean = float(np.mean(values[:6]))
    second_mean = float(np.mean(values[6:12]))
    if first_mean == 0:
        return 1.0
    ratio = _relative_ratio(second_mean, first_mean)
    if ratio <= 0:
        return lower
    return _clamp(ratio ** (1 / 6), lower, upper)


def _ensemble(points: Sequence[MonthlyPoint]) -> float:
    values = [float(point.total) for point in points]
    recent = values[-7:]
    ratios = [
        _relative_ratio(current, previous)
        for previous, current in zip(recent, recent[1:])
        if previous != 0
    ]
    mean_ratio = float(np.mean(ratios)) if ratios else 1.0
    trend_model = _apply_factor(values[-1], mean_ratio)

    moving_average = _apply_factor(float(np.mean(values[-3:])), _seasonal_factor(points))
    return TREND_MODEL_WEIGHT * trend_model + MOVING_AVERAGE_WEIGHT * moving_average


def _select_method(n: int) -> ForecastMethod:
    if n == 0:
        return ForecastMethod.NO_DATA
    if n == 1:
        return ForecastMethod.CARRY_FORWARD
    if n == 2:
        return ForecastMethod.DAMPED_GROWTH
    if n < 6:
        return ForecastMethod.LINEAR_REGRESSION
    if n < 12:
        return ForecastMethod.WEIGHTED_AVERAGE
    return ForecastMethod.ENSEMBLE


def _apply_anomaly_damping(values: Sequence[float], forecast: float) -> Tuple[float, bool]:
    if len(values) < ANOMALY_MIN_POINTS:
        return forecast, False
    last = values[-1]
    median = float(np.median(values))
    trailing = float(np.mean(values[-4:-1]))
    if (_relative_deviation(last, median) > ANOMALY_MEDIAN_THRESHOLD
            and _relative_deviation(last, trailing) > ANOMALY_TRAILING_THRESHOLD):
        anchor = (trailing + median) / 2
        return ANOMALY_KEEP_WEIGHT * forecast + (1 - ANOMALY_KEEP_WEIGHT) * anchor, True
    return forecast, False


def _confidence_percent(values: Sequence[float], method: ForecastMethod) -> int:
    if method in FIXED_CONFIDENCE:
        return FIXED_CONFIDENCE[method]
    lower, upper = CONFIDENCE_BOUNDS[method]
    mean = float(np.mean(values))
    if mean == 0:
        return upper
    variation = float(np.std(values)) / abs(mean) * 100
    return int(round(_clamp(variation, lower, upper)))


def _confidence_label(n: int, method: ForecastMethod, percent: int) -> str:
    if method == ForecastMethod.CARRY_FORWARD:
        text = "Based on carry-forward of 1 month"
    elif method == ForecastMethod.DAMPED_GROWTH:
        text = "Based on damped growth of 2 months"
    elif method == ForecastMethod.LINEAR_REGRESSION:
        text = f"Based on linear trend of last {n} months"
    elif method == ForecastMethod.WEIGHTED_AVERAGE:
        text = "Based on weighted 6-month average"
    else:
        text = f"Based on 12-month ensemble of {n} months"
    return f"{text}, ±{percent}%"


def compute_trend_and_forecast(series: SeriesInput) -> ForecastResult:
    """
    Compute the month-over-month trend and next-month forecast.

    Args:
        series: MonthlyPoint objects or (label, total) pairs; re-sorted
            chronologically before use

    Returns:
        ForecastResult with trend, forecast amount and confidence label
    """
    points = _normalize_series(series)
    values = [float(point.total) for point in points]
    n = len(values)
    method = _select_method(n)

    if method == ForecastMethod.NO_DATA:
        return ForecastResult(
            trend_direction=TrendDirection.UNKNOWN,
            trend_percent=None,
            forecast_amount=0.0,
            confidence_label=NO_DATA_LABEL,
            method=method,
        )

    direction, percent, previous_was_zero = _trend(values)

    if method == ForecastMethod.CARRY_FORWARD:
        forecast = values[-1]
    elif method == ForecastMethod.DAMPED_GROWTH:
        forecast = _damped_growth(values)
    elif method == ForecastMethod.LINEAR_REGRESSION:
        forecast = _linear_regression(values)
    elif method == ForecastMethod.WEIGHTED_AVERAGE:
        forecast = _weighted_average(values)
    else:
        forecast = _ensemble(points)

    forecast, anomaly_adjusted = _apply_anomaly_damping(values, forecast)

    label = _confidence_label(n, method, _confidence_percent(values, method))
    if anomaly_adjusted:
        label += ANOMALY_SUFFIX

    logger.debug(
        "forecast_computed",
        months=n,
        method=method.value,
        forecast=round(forecast, 2),
        anomaly_adjusted=anomaly_adjusted,
    )
    return ForecastResult(
        trend_direction=direction,
        trend_percent=percent,
        forecast_amount=round(forecast, 2),
        confidence_label=label,
        method=method,
        anomaly_adjusted=anomaly_adjusted,
        previous_was_zero=previous_was_zero,
    )


def append_forecast_point(series: SeriesInput, forecast: ForecastResult) -> List[MonthlyPoint]:
    """
    Chart data: the series followed by the forecast as the next period.

    Returns a new list; an empty series stays empty.
    """
    points = _normalize_series(series)
    if not points:
        return []
    next_point = MonthlyPoint(
        label=next_period_label(points[-1].label),
        total=Decimal(str(forecast.forecast_amount)),
    )
    return points + [next_point]
