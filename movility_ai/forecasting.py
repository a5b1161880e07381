"""Short-horizon congestion forecasting for the monitored zones."""
from __future__ import annotations

import logging
import math
import zlib
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Protocol, Sequence

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from sklearn.linear_model import LinearRegression

from .config import ForecastConfig
from .data_models import CongestionForecast, TrafficFeatures
from .errors import ForecastModelError

logger = logging.getLogger(__name__)


def zone_hash(zone: str) -> int:
    """Stable non-negative hash of a zone name (independent of PYTHONHASHSEED)."""
    return zlib.crc32(zone.encode("utf-8"))


def intensity_to_level(value: float, thresholds: Sequence[tuple[str, float]]) -> str:
    for level, threshold in thresholds:
        if value >= threshold:
            return level
    return "low"


def _in_hours(hour: int, windows: Sequence[tuple[int, int]]) -> bool:
    return any(start <= hour < end for start, end in windows)


class SeriesSource(Protocol):
    """Provider of the intensity history the forecaster learns from."""

    def history(
        self,
        zone: str,
        base_time: datetime,
        interval_minutes: int,
        features: TrafficFeatures,
        total_days: int,
    ) -> pd.Series:
        ...


class SyntheticSeriesSource:
    """Deterministic congestion intensity series resembling a city's daily rhythm."""

    def __init__(self, config: ForecastConfig) -> None:
        self.config = config

    def history(
        self,
        zone: str,
        base_time: datetime,
        interval_minutes: int,
        features: TrafficFeatures,
        total_days: int,
    ) -> pd.Series:
        points_per_day = round(24 * 60 / interval_minutes)
        total_points = total_days * points_per_day
        index = pd.date_range(
            end=base_time - timedelta(minutes=interval_minutes),
            periods=total_points,
            freq=f"{interval_minutes}min",
        )
        hours = np.asarray(index.hour)
        weekend = np.asarray(index.dayofweek) >= 5

        rush = np.zeros(total_points, dtype=bool)
        for start, end in self.config.rush_hours:
            rush |= (hours >= start) & (hours < end)
        midday_start, midday_end = self.config.midday_hours
        midday = (hours >= midday_start) & (hours < midday_end)

        values = np.full(total_points, 0.2)
        values += np.where(rush, 0.5, np.where(midday, 0.25, 0.0))
        values = np.where(weekend, values * 0.7, values + 0.05)
        values *= 1 + (zone_hash(zone) % 30) / 100

        if features.weather == "rainy":
            values += 0.15
        elif features.weather == "cloudy":
            values += 0.05
        if features.is_holiday:
            values *= 0.6

        rng = np.random.default_rng(zone_hash(zone) or 1)
        values += (rng.random(total_points) - 0.5) * 0.1
        return pd.Series(np.clip(values, 0.0, 1.0), index=index, name=zone)


@dataclass(frozen=True)
class StrategyForecast:
    """Point forecasts and per-step error estimates from one strategy."""

    values: np.ndarray
    errors: np.ndarray
    strategy: str


class ForecastStrategy(Protocol):
    name: str

    def predict(self, series: np.ndarray, steps: int, period: int) -> StrategyForecast:
        ...


class SeasonalAutoregressiveForecaster:
    """Linear autoregression on short lags plus the daily seasonal lag."""

    name = "seasonal_ar"

    def __init__(self, lags: Sequence[int] = (1, 2)) -> None:
        self.lags = tuple(lags)

    def predict(self, series: np.ndarray, steps: int, period: int) -> StrategyForecast:
        lags = sorted(set(self.lags) | {period})
        max_lag = max(lags)
        if len(series) < 2 * period or len(series) - max_lag <= len(lags) + 1:
            raise ForecastModelError(f"Series of {len(series)} points is too short for period {period}")

        X = np.column_stack([series[max_lag - lag : len(series) - lag] for lag in lags])
        y = series[max_lag:]
        model = LinearRegression().fit(X, y)
        residuals = y - model.predict(X)
        sigma = float(np.std(residuals, ddof=1))

        history = list(series)
        values = []
        for _ in range(steps):
            row = np.array([[history[-lag] for lag in lags]])
            next_value = float(model.predict(row)[0])
            history.append(next_value)
            values.append(next_value)

        forecast = np.asarray(values)
        if not np.all(np.isfinite(forecast)) or not math.isfinite(sigma):
            raise ForecastModelError("Seasonal autoregression produced non-finite values")
        errors = sigma * np.sqrt(np.arange(1, steps + 1))
        return StrategyForecast(values=forecast, errors=errors, strategy=self.name)


class SeasonalNaiveForecaster:
    """Repeats the value observed exactly one period earlier."""

    name = "seasonal_naive"

    def __init__(self, error_ratio: float = 0.3) -> None:
        self.error_ratio = error_ratio

    def predict(self, series: np.ndarray, steps: int, period: int) -> StrategyForecast:
        if len(series) == 0:
            return StrategyForecast(values=np.zeros(steps), errors=np.zeros(steps), strategy=self.name)
        values = []
        for step in range(steps):
            index = len(series) - period + (step % period)
            values.append(series[index] if index >= 0 else series[-1])
        std = float(np.std(series, ddof=1)) if len(series) > 1 else 0.0
        return StrategyForecast(
            values=np.asarray(values, dtype=float),
            errors=np.full(steps, self.error_ratio * std),
            strategy=self.name,
        )


class CongestionForecaster:
    """Produces multi-horizon congestion forecasts, falling back to a seasonal-naive model."""

    def __init__(
        self,
        config: ForecastConfig,
        series_source: SeriesSource | None = None,
        primary: ForecastStrategy | None = None,
        fallback: ForecastStrategy | None = None,
    ) -> None:
        self.config = config
        self.series_source = series_source or SyntheticSeriesSource(config)
        self.primary = primary or SeasonalAutoregressiveForecaster(config.ar_lags)
        self.fallback = fallback or SeasonalNaiveForecaster(config.fallback_error_ratio)

    def forecast(
        self,
        zone: str,
        features: TrafficFeatures,
        horizons: Sequence[int] | None = None,
        interval_minutes: int | None = None,
        base_time: datetime | None = None,
    ) -> list[CongestionForecast]:
        horizons = tuple(self.config.horizons if horizons is None else horizons)
        interval = interval_minutes or self.config.interval_minutes
        base_time = base_time or self._base_time_from(features)
        if not horizons:
            return []

        series = self.series_source.history(zone, base_time, interval, features, self.config.history_days)
        values = series.to_numpy(dtype=float)
        last_observed = float(values[-1]) if len(values) else 0.0
        features = self._enrich_features(features, values)

        period = max(1, round(24 * 60 / interval))
        steps = max(max(1, math.ceil(horizon / interval)) for horizon in horizons)
        result, used_fallback = self._run_strategies(zone, values, steps, period)
        series_std = float(np.std(values, ddof=1)) if len(values) > 1 else 0.0

        forecasts: list[CongestionForecast] = []
        for horizon in horizons:
            step_index = max(0, math.ceil(horizon / interval) - 1)
            raw_value = float(result.values[step_index]) if step_index < len(result.values) else last_observed
            error = float(result.errors[step_index]) if step_index < len(result.errors) else 0.0
            value = self._adjust_for_conditions(raw_value, features)
            for_at = base_time + timedelta(minutes=horizon)
            forecasts.append(
                CongestionForecast(
                    zone=zone,
                    horizon_minutes=horizon,
                    predicted_level=intensity_to_level(value, self.config.level_thresholds),
                    confidence=self._confidence(value, error, series_std, used_fallback),
                    contributing_factors=self._factors(value, last_observed, for_at, features),
                    for_at=for_at,
                    raw_intensity=value,
                )
            )
        return forecasts

    def forecast_many(
        self,
        zones: Sequence[str],
        features: TrafficFeatures,
        horizons: Sequence[int] | None = None,
        interval_minutes: int | None = None,
        base_time: datetime | None = None,
    ) -> tuple[list[CongestionForecast], list[str]]:
        """Forecast each zone independently.

        Returns the flattened forecasts in input zone order and the names of the
        zones whose forecast raised (those are logged and left out).
        """
        if not zones:
            return [], []
        base_time = base_time or self._base_time_from(features)
        per_zone = Parallel(n_jobs=min(self.config.n_jobs, len(zones)), prefer="threads")(
            delayed(self._forecast_or_none)(zone, features, horizons, interval_minutes, base_time) for zone in zones
        )
        forecasts = [forecast for batch in per_zone if batch for forecast in batch]
        failures = [zone for zone, batch in zip(zones, per_zone) if batch is None]
        return forecasts, failures

    def _forecast_or_none(
        self,
        zone: str,
        features: TrafficFeatures,
        horizons: Sequence[int] | None,
        interval_minutes: int | None,
        base_time: datetime,
    ) -> list[CongestionForecast] | None:
        try:
            return self.forecast(zone, features, horizons, interval_minutes, base_time)
        except Exception:
            logger.warning("Forecast for zone %s failed", zone, exc_info=True)
            return None

    def _run_strategies(
        self, zone: str, values: np.ndarray, steps: int, period: int
    ) -> tuple[StrategyForecast, bool]:
        try:
            return self.primary.predict(values, steps, period), False
        except Exception as exc:
            logger.warning("%s forecast failed for %s, using %s: %s", self.primary.name, zone, self.fallback.name, exc)
            return self.fallback.predict(values, steps, period), True

    def _enrich_features(self, features: TrafficFeatures, values: np.ndarray) -> TrafficFeatures:
        historical_average = features.historical_average
        if historical_average is None:
            historical_average = float(values.mean()) if len(values) else 0.0
        recent_trend = features.recent_trend
        if recent_trend is None:
            recent_trend = self._recent_trend(values)
        return replace(features, historical_average=historical_average, recent_trend=recent_trend)

    def _recent_trend(self, values: np.ndarray) -> float:
        window = min(self.config.trend_window, len(values))
        if window < 2:
            return 0.0
        recent = values[-window:]
        half = window // 2
        return float(recent[half:].mean() - recent[:half].mean())

    def _adjust_for_conditions(self, value: float, features: TrafficFeatures) -> float:
        adjusted = value
        if features.recent_trend is not None and features.recent_trend > 0:
            adjusted += self.config.trend_nudge
        if features.is_holiday:
            adjusted *= self.config.holiday_dampening
        return float(np.clip(adjusted, 0.0, 1.0))

    def _confidence(self, value: float, error: float, series_std: float, used_fallback: bool) -> float:
        if used_fallback or not error:
            normalized_error = self.config.fallback_confidence_ratio * series_std
        else:
            normalized_error = error / (value + 0.1)
        return float(np.clip(0.95 - normalized_error, 0.6, 0.95))

    def _factors(
        self, value: float, last_observed: float, for_at: datetime, features: TrafficFeatures
    ) -> tuple[str, ...]:
        factors = ["seasonal_forecast"]
        if _in_hours(for_at.hour, self.config.rush_hours):
            factors.append("peak_hour")
        if features.weather == "rainy":
            factors.append("rainy_weather")
        if features.is_holiday:
            factors.append("holiday_adjustment")
        if value > last_observed:
            factors.append("increasing_trend")
        elif value < last_observed:
            factors.append("decreasing_trend")
        return tuple(factors)

    @staticmethod
    def _base_time_from(features: TrafficFeatures) -> datetime:
        base = datetime.now().replace(hour=features.hour_of_day, minute=0, second=0, microsecond=0)
        return base + timedelta(days=features.day_of_week - base.weekday())
