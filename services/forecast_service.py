"""Monthly traffic forecast from cumulative inbound counters.

Snapshots of each inbound's ``up + down`` are stored every few hours. The
forecast sums the growth between adjacent snapshots of the current UTC
month and extrapolates the hourly rate to the end of the month. Counters go
backwards when an inbound's traffic is reset; such a step counts the later
value as the growth since the reset.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple, Union

from config.settings import (
    SNAPSHOT_RETENTION_DAYS,
    TRAFFIC_ALERT_PERCENT,
    TRAFFIC_ALERT_THRESHOLD_GB,
    TRAFFIC_LIMIT_GB,
)
from message_templates import Messages
from vpn.xui_models import XUIError

from .subscription_service import format_bytes

logger = logging.getLogger(__name__)

AGGREGATE = "aggregate"
GB = 1024 ** 3

KIND_PERCENT = "percent"
KIND_THRESHOLD = "threshold"
DEFAULT_ALERT_PERCENT = 90


class InsufficientDataError(Exception):
    """Fewer than two snapshots in the period."""
    pass


@dataclass
class TrafficForecast:
    consumed_bytes: int
    predicted_bytes: int
    bytes_per_hour: float
    hours_observed: float
    hours_remaining: float
    period_start: datetime
    period_end: datetime
    last_sample: datetime

    @property
    def average_per_day(self) -> int:
        return int(self.bytes_per_hour * 24)

    @property
    def days_in_period(self) -> int:
        return int((self.period_end - self.period_start).total_seconds() // 86400)

    @property
    def days_elapsed(self) -> int:
        return int((self.last_sample - self.period_start).total_seconds() // 86400)

    @property
    def days_remaining(self) -> int:
        return int(self.hours_remaining // 24)


def month_bounds(now: datetime) -> Tuple[datetime, datetime]:
    """First instant of ``now``'s month and of the next one (naive UTC)."""
    start = datetime(now.year, now.month, 1)
    if now.month == 12:
        end = datetime(now.year + 1, 1, 1)
    else:
        end = datetime(now.year, now.month + 1, 1)
    return start, end


def consumed_bytes(totals: Sequence[int]) -> int:
    """Sum of growth between adjacent cumulative readings.

    >>> consumed_bytes([100, 40, 90])
    90
    """
    consumed = 0
    for prev, curr in zip(totals, totals[1:]):
        delta = curr - prev
        if delta < 0:
            # Counter reset
            delta = curr
        consumed += delta
    return consumed


def forecast(samples: Sequence, period_end: datetime,
             period_start: Optional[datetime] = None) -> TrafficForecast:
    """Project consumption to ``period_end``.

    Args:
        samples: Snapshots (``timestamp``, ``total_bytes``) sorted oldest first
        period_end: End of the forecast period
        period_start: Start of the period, for display; defaults to the first sample

    Raises:
        InsufficientDataError: Fewer than two samples
    """
    if len(samples) < 2:
        raise InsufficientDataError(f"Need at least 2 samples, got {len(samples)}")

    first, last = samples[0].timestamp, samples[-1].timestamp
    consumed = consumed_bytes([s.total_bytes for s in samples])

    hours_observed = max((last - first).total_seconds() / 3600, 1.0)
    hours_remaining = max((period_end - last).total_seconds() / 3600, 0.0)
    rate = consumed / hours_observed

    return TrafficForecast(
        consumed_bytes=consumed,
        predicted_bytes=consumed + int(rate * hours_remaining),
        bytes_per_hour=rate,
        hours_observed=hours_observed,
        hours_remaining=hours_remaining,
        period_start=period_start or first,
        period_end=period_end,
        last_sample=last,
    )


def combine(forecasts: List[TrafficForecast]) -> TrafficForecast:
    """Cross-inbound forecast: consumption, rates and projections add up."""
    if not forecasts:
        raise InsufficientDataError("No inbound has enough samples")
    return TrafficForecast(
        consumed_bytes=sum(f.consumed_bytes for f in forecasts),
        predicted_bytes=sum(f.predicted_bytes for f in forecasts),
        bytes_per_hour=sum(f.bytes_per_hour for f in forecasts),
        hours_observed=max(f.hours_observed for f in forecasts),
        hours_remaining=min(f.hours_remaining for f in forecasts),
        period_start=min(f.period_start for f in forecasts),
        period_end=max(f.period_end for f in forecasts),
        last_sample=max(f.last_sample for f in forecasts),
    )


class ThresholdAlarm:
    """Fires once when a value reaches ``level``; re-arms after it drops below."""

    def __init__(self, level: float):
        self.level = level
        self.fired = False

    def update(self, value: float) -> bool:
        """Feed a new value. Returns True exactly when an alert is due."""
        if value >= self.level:
            if self.fired:
                return False
            self.fired = True
            return True
        self.fired = False
        return False


class ForecastService:
    """Snapshot collection, forecasts and hysteretic alerts for operators.

    Alarm state lives in memory: after a restart a projection that is
    already above a threshold alerts once more.
    """

    def __init__(
        self,
        gateway,
        store,
        notifier=None,
        threshold_gb: Optional[int] = None,
        alert_percent: int = TRAFFIC_ALERT_PERCENT,
        retention_days: int = SNAPSHOT_RETENTION_DAYS,
    ):
        self.gateway = gateway
        self.store = store
        self.notifier = notifier
        if threshold_gb is None:
            threshold_gb = TRAFFIC_ALERT_THRESHOLD_GB or TRAFFIC_LIMIT_GB
        self.threshold_gb = threshold_gb
        self.alert_percent = alert_percent if alert_percent > 0 else DEFAULT_ALERT_PERCENT
        self.retention_days = retention_days
        self._alarms: Dict[Tuple[Union[int, str], str], ThresholdAlarm] = {}

    # === Forecasts ===

    def compute_forecast(self, target: Union[int, str] = AGGREGATE,
                         now: Optional[datetime] = None) -> TrafficForecast:
        """Forecast for one inbound id, or for all inbounds with AGGREGATE.

        Raises:
            InsufficientDataError: Not enough snapshots this month
        """
        now = now or datetime.utcnow()
        start, end = month_bounds(now)

        if target != AGGREGATE:
            return forecast(self.store.get_snapshots(int(target), start, now), end, start)

        forecasts = []
        for inbound_id in self.store.snapshot_inbound_ids(start, now):
            try:
                forecasts.append(forecast(self.store.get_snapshots(inbound_id, start, now), end, start))
            except InsufficientDataError:
                continue
        return combine(forecasts)

    # === Collection ===

    def collect_snapshots(self, now: Optional[datetime] = None) -> int:
        """Store one snapshot per inbound, then evaluate alerts.

        Returns:
            Number of snapshots stored
        """
        now = now or datetime.utcnow()
        try:
            inbounds = self.gateway.list_inbounds()
        except XUIError as e:
            logger.error(f"Snapshot collection: failed to list inbounds: {e}")
            return 0

        stored = []
        for inbound in inbounds:
            self.store.add_snapshot(inbound.id, now, inbound.up, inbound.down)
            stored.append(inbound.id)

        logger.info(f"Stored {len(stored)} traffic snapshots")

        for inbound_id in stored:
            try:
                self.evaluate_alerts(inbound_id, self.compute_forecast(inbound_id, now))
            except InsufficientDataError:
                continue
        try:
            self.evaluate_alerts(AGGREGATE, self.compute_forecast(AGGREGATE, now))
        except InsufficientDataError:
            pass

        return len(stored)

    def cleanup_snapshots(self, now: Optional[datetime] = None) -> int:
        """Delete snapshots older than the retention window."""
        now = now or datetime.utcnow()
        deleted = self.store.delete_snapshots_before(now - timedelta(days=self.retention_days))
        logger.info(f"Deleted {deleted} traffic snapshots older than {self.retention_days} days")
        return deleted

    # === Alerts ===

    def _alarm(self, key: Union[int, str], kind: str, level: float) -> ThresholdAlarm:
        alarm = self._alarms.get((key, kind))
        if alarm is None:
            alarm = ThresholdAlarm(level)
            self._alarms[(key, kind)] = alarm
        alarm.level = level
        return alarm

    def evaluate_alerts(self, key: Union[int, str], result: TrafficForecast) -> List[str]:
        """Check the percent and absolute thresholds for one key; returns alerts sent."""
        if self.threshold_gb <= 0:
            return []

        threshold_bytes = self.threshold_gb * GB
        report = self.format_forecast(result, key)
        alerts = []

        if 0 < self.alert_percent < 100:
            level = threshold_bytes * self.alert_percent / 100
            if self._alarm(key, KIND_PERCENT, level).update(result.predicted_bytes):
                template = Messages.ALERT_PERCENT_TOTAL if key == AGGREGATE else Messages.ALERT_PERCENT_INBOUND
                alerts.append(template.format(
                    inbound_id=key, percent=self.alert_percent, threshold=self.threshold_gb, forecast=report))

        if self._alarm(key, KIND_THRESHOLD, threshold_bytes).update(result.predicted_bytes):
            template = Messages.ALERT_THRESHOLD_TOTAL if key == AGGREGATE else Messages.ALERT_THRESHOLD_INBOUND
            alerts.append(template.format(inbound_id=key, threshold=self.threshold_gb, forecast=report))

        for alert in alerts:
            logger.warning(f"Traffic alert for {key}: predicted {format_bytes(result.predicted_bytes)}")
            if self.notifier is not None:
                self.notifier.notify_admins(alert)
        return alerts

    @staticmethod
    def format_forecast(result: TrafficForecast, target: Union[int, str] = AGGREGATE) -> str:
        if target == AGGREGATE:
            target_text = Messages.FORECAST_TARGET_TOTAL
        else:
            target_text = Messages.FORECAST_TARGET_INBOUND.format(inbound_id=target)
        return Messages.FORECAST.format(
            target=target_text,
            consumed=format_bytes(result.consumed_bytes),
            predicted=format_bytes(result.predicted_bytes),
            per_day=format_bytes(result.average_per_day),
            days_elapsed=result.days_elapsed,
            days_in_month=result.days_in_period,
            days_remaining=result.days_remaining,
            updated=result.last_sample.strftime('%d.%m.%Y %H:%M') + ' UTC',
        )
