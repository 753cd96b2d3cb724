# incidentwatch/forecasting.py
"""
Statistical forecasting of incident volume.

Every variant (global, severity, per-category, per-region) goes through the same steps:
incidents -> daily values -> dense daily series over the lookback window -> auto_forecast.
Models assume uniform daily steps, so they only ever see densified series.
"""
from __future__ import annotations

import math
from datetime import date, datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Union

import numpy as np
import pandas as pd

from incidentwatch.schema import AutoForecast, ForecastPoint, ForecastResult, SeriesForecast, TimeSeriesPoint
from incidentwatch.timeutil import as_utc, round_half_up, to_frame, utc_series

Z_95 = 1.96


# ----------------------------
# Helpers
# ----------------------------
def _today(today: Optional[Union[date, datetime, str]] = None) -> date:
    if isinstance(today, date) and not isinstance(today, datetime):
        return today
    return as_utc(today).date()


def fill_daily_series(
    points: Union[Iterable[TimeSeriesPoint], Dict[str, float]],
    days: int,
    today: Optional[Union[date, datetime, str]] = None,
) -> List[TimeSeriesPoint]:
    """Exactly `days` consecutive daily points ending today; missing days are 0."""
    if isinstance(points, dict):
        values = {str(k): float(v) for k, v in points.items()}
    else:
        values = {p.date: float(p.value) for p in points}

    if days <= 0:
        return []
    idx = pd.date_range(end=pd.Timestamp(_today(today)), periods=days, freq="D")
    return [TimeSeriesPoint(date=d.strftime("%Y-%m-%d"), value=values.get(d.strftime("%Y-%m-%d"), 0.0)) for d in idx]


def _stddev(arr) -> float:
    arr = np.asarray(arr, dtype=float)
    if len(arr) < 2:
        return 0.0
    return float(np.std(arr, ddof=1))


def _future_dates(series: List[TimeSeriesPoint], horizon: int, today=None) -> List[str]:
    start = pd.Timestamp(series[-1].date) if series else pd.Timestamp(_today(today))
    return [(start + timedelta(days=i)).strftime("%Y-%m-%d") for i in range(1, horizon + 1)]


def _errors(actual: np.ndarray, predicted: np.ndarray) -> Dict[str, float]:
    err = np.abs(actual - predicted)
    if len(err) == 0:
        return {"mae": 0.0, "rmse": 0.0, "mape": 0.0}
    pct = np.divide(err, actual, out=np.zeros_like(err), where=actual != 0)
    return {
        "mae": float(err.mean()),
        "rmse": float(math.sqrt(float((err ** 2).mean()))),
        "mape": float(pct.mean() * 100),
    }


def _point(date_str: str, predicted: float, spread: float, method: str) -> ForecastPoint:
    return ForecastPoint(
        date=date_str,
        value=max(0.0, round_half_up(predicted, 1)),
        lower=max(0.0, round_half_up(predicted - Z_95 * spread, 1)),
        upper=round_half_up(predicted + Z_95 * spread, 1),
        method=method,
    )


def _empty(method: str) -> ForecastResult:
    return ForecastResult(method=method, forecast=[], mae=math.inf, mape=math.inf, rmse=math.inf)


# ----------------------------
# Models
# ----------------------------
def forecast_sma(series: List[TimeSeriesPoint], horizon: int = 7, window: int = 7) -> ForecastResult:
    values = np.array([p.value for p in series], dtype=float)
    if len(values) < window:
        return _empty("SMA")

    predicted = np.array([values[i - window:i].mean() for i in range(window, len(values))])
    scores = _errors(values[window:], predicted)

    last = values[-window:]
    avg = float(last.mean())
    sd = _stddev(last)
    forecast = [_point(d, avg, sd, "SMA") for d in _future_dates(series, horizon)]
    return ForecastResult(method=f"SMA({window})", forecast=forecast, **scores)


def forecast_ema(series: List[TimeSeriesPoint], horizon: int = 7, alpha: float = 0.3) -> ForecastResult:
    values = np.array([p.value for p in series], dtype=float)
    if len(values) < 3:
        return _empty("EMA")

    smoothed = [values[0]]
    for v in values[1:]:
        smoothed.append(alpha * v + (1 - alpha) * smoothed[-1])
    smoothed = np.array(smoothed)

    # one-step-ahead: yesterday's smoothed value predicts today
    scores = _errors(values[1:], smoothed[:-1])
    sd = _stddev(values - smoothed)
    level = float(smoothed[-1])
    forecast = [_point(d, level, sd, "EMA") for d in _future_dates(series, horizon)]
    return ForecastResult(method=f"EMA(alpha={alpha})", forecast=forecast, **scores)


def forecast_linear(series: List[TimeSeriesPoint], horizon: int = 7) -> ForecastResult:
    values = np.array([p.value for p in series], dtype=float)
    n = len(values)
    if n < 3:
        return _empty("Linear")

    x = np.arange(n, dtype=float)
    x_mean, y_mean = x.mean(), values.mean()
    ss_xx = float(((x - x_mean) ** 2).sum())
    slope = float(((x - x_mean) * (values - y_mean)).sum() / ss_xx) if ss_xx else 0.0
    intercept = float(y_mean - slope * x_mean)

    fitted = intercept + slope * x
    scores = _errors(values, fitted)
    sd = _stddev(values - fitted)

    dates = _future_dates(series, horizon)
    forecast = [_point(d, intercept + slope * (n + i), sd, "Linear") for i, d in enumerate(dates)]
    return ForecastResult(method=f"Linear (slope={slope:.2f}/day)", forecast=forecast, **scores)


def forecast_holt(
    series: List[TimeSeriesPoint],
    horizon: int = 7,
    alpha: float = 0.3,
    beta: float = 0.1,
) -> ForecastResult:
    values = np.array([p.value for p in series], dtype=float)
    n = len(values)
    if n < 4:
        return _empty("Holt")

    level, trend = values[0], values[1] - values[0]
    predicted = []
    for v in values[1:]:
        predicted.append(level + trend)
        new_level = alpha * v + (1 - alpha) * (level + trend)
        trend = beta * (new_level - level) + (1 - beta) * trend
        level = new_level
    predicted = np.array(predicted)

    scores = _errors(values[1:], predicted)
    sd = _stddev(values[1:] - predicted)

    forecast = []
    for step, d in enumerate(_future_dates(series, horizon), start=1):
        forecast.append(_point(d, level + trend * step, sd * math.sqrt(step), "Holt"))
    return ForecastResult(method=f"Holt (alpha={alpha}, beta={beta})", forecast=forecast, **scores)


def _flat(series: List[TimeSeriesPoint], horizon: int, today=None) -> ForecastResult:
    values = [p.value for p in series]
    level = float(np.mean(values)) if values else 0.0
    forecast = [_point(d, level, 0.0, "Insufficient Data") for d in _future_dates(series, horizon, today)]
    return ForecastResult(method="Insufficient Data", forecast=forecast, mae=0.0, mape=0.0, rmse=0.0)


def auto_forecast(series: List[TimeSeriesPoint], horizon: int = 7) -> AutoForecast:
    """Fit every model, keep the lowest backtest RMSE. Ties keep the listed model order."""
    results = [
        forecast_sma(series, horizon, 7),
        forecast_ema(series, horizon, 0.3),
        forecast_linear(series, horizon),
        forecast_holt(series, horizon, 0.3, 0.1),
    ]
    results = [r for r in results if r.forecast and math.isfinite(r.rmse)]
    if not results:
        return AutoForecast(best=_flat(series, horizon), all=[])

    results.sort(key=lambda r: r.rmse)
    return AutoForecast(best=results[0], all=results)


# ----------------------------
# Incident reduction
# ----------------------------
def daily_counts(df: pd.DataFrame) -> Dict[str, float]:
    if df.empty:
        return {}
    day = utc_series(df["datetime"]).dt.strftime("%Y-%m-%d")
    return {k: float(v) for k, v in df.groupby(day).size().items()}


def daily_mean_severity(df: pd.DataFrame) -> Dict[str, float]:
    if df.empty:
        return {}
    day = utc_series(df["datetime"]).dt.strftime("%Y-%m-%d")
    means = df["severity"].astype(float).groupby(day).mean()
    return {k: round_half_up(float(v), 1) for k, v in means.items()}


def build_forecast(
    df: pd.DataFrame,
    key: str,
    reducer: Callable[[pd.DataFrame], Dict[str, float]] = daily_counts,
    lookback_days: int = 60,
    horizon: int = 14,
    today=None,
) -> SeriesForecast:
    series = fill_daily_series(reducer(df), lookback_days, today)
    return SeriesForecast(key=key, series=series, forecast=auto_forecast(series, horizon))


def _incident_frame(incidents) -> pd.DataFrame:
    df = to_frame(incidents)
    if df.empty or "datetime" not in df.columns:
        return pd.DataFrame()
    return df.dropna(subset=["datetime"])


def global_forecast(incidents, lookback_days: int = 60, horizon: int = 14, today=None) -> Optional[SeriesForecast]:
    df = _incident_frame(incidents)
    if df.empty:
        return None
    return build_forecast(df, "all", daily_counts, lookback_days, horizon, today)


def severity_forecast(incidents, lookback_days: int = 60, horizon: int = 14, today=None) -> Optional[SeriesForecast]:
    df = _incident_frame(incidents)
    if df.empty:
        return None
    return build_forecast(df, "severity", daily_mean_severity, lookback_days, horizon, today)


def _grouped_forecasts(df: pd.DataFrame, column: str, lookback_days: int, horizon: int, today) -> List[SeriesForecast]:
    if df.empty or column not in df.columns:
        return []
    keys = [k for k in df[column].drop_duplicates().tolist() if isinstance(k, str) and k]
    out = [build_forecast(df[df[column] == k], str(k), daily_counts, lookback_days, horizon, today) for k in keys]
    # busiest first; sorted() is stable so ties keep first-seen order
    return sorted(out, key=lambda f: sum(p.value for p in f.series), reverse=True)


def category_forecasts(incidents, lookback_days: int = 60, horizon: int = 14, today=None) -> List[SeriesForecast]:
    return _grouped_forecasts(_incident_frame(incidents), "category", lookback_days, horizon, today)


def region_forecasts(incidents, lookback_days: int = 60, horizon: int = 14, today=None) -> List[SeriesForecast]:
    return _grouped_forecasts(_incident_frame(incidents), "region", lookback_days, horizon, today)
