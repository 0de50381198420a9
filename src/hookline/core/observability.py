"""Observability - Structured event logging and delivery metrics.

The dispatcher reports everything worth watching through an
``ObservabilityHook``. The default hook writes JSON events and keeps
per-webhook counters in memory; tests swap in their own hook to assert on
what was reported.
"""

from typing import Optional
from dataclasses import dataclass
from datetime import datetime, timezone
import json
import logging


@dataclass
class DeliveryMetrics:
    """Delivery metrics for one webhook subscription."""

    webhook_id: str
    total_deliveries: int = 0
    successful_deliveries: int = 0
    failed_deliveries: int = 0
    circuit_rejections: int = 0
    bookkeeping_failures: int = 0
    total_attempts: int = 0
    total_duration_ms: float = 0
    last_delivery_time: Optional[datetime] = None

    @property
    def success_rate(self) -> float:
        """Calculate success rate as percentage."""
        if self.total_deliveries == 0:
            return 100.0
        return (self.successful_deliveries / self.total_deliveries) * 100

    @property
    def avg_duration_ms(self) -> float:
        if self.total_deliveries == 0:
            return 0.0
        return self.total_duration_ms / self.total_deliveries

    def record_delivery(self, success: bool, attempts: int, duration_ms: float) -> None:
        """Record a completed attempt sequence."""
        self.total_deliveries += 1
        self.total_attempts += attempts
        self.total_duration_ms += duration_ms
        self.last_delivery_time = datetime.now(timezone.utc)

        if success:
            self.successful_deliveries += 1
        else:
            self.failed_deliveries += 1

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "webhook_id": self.webhook_id,
            "total_deliveries": self.total_deliveries,
            "successful_deliveries": self.successful_deliveries,
            "failed_deliveries": self.failed_deliveries,
            "circuit_rejections": self.circuit_rejections,
            "bookkeeping_failures": self.bookkeeping_failures,
            "success_rate": self.success_rate,
            "avg_duration_ms": self.avg_duration_ms,
            "total_attempts": self.total_attempts,
            "last_delivery_time": self.last_delivery_time.isoformat() if self.last_delivery_time else None,
        }


class MetricsCollector:
    """In-process delivery metrics keyed by webhook id.

    Example:
        >>> collector = MetricsCollector()
        >>> collector.record_delivery("wh_1", True, attempts=1, duration_ms=42.0)
        >>> collector.get_summary()["total_deliveries"]
        1
    """

    def __init__(self):
        self._metrics: dict[str, DeliveryMetrics] = {}

    def _for(self, webhook_id: str) -> DeliveryMetrics:
        if webhook_id not in self._metrics:
            self._metrics[webhook_id] = DeliveryMetrics(webhook_id=webhook_id)
        return self._metrics[webhook_id]

    def record_delivery(
        self,
        webhook_id: str,
        success: bool,
        attempts: int,
        duration_ms: float,
    ) -> None:
        self._for(webhook_id).record_delivery(success, attempts, duration_ms)

    def record_circuit_rejection(self, webhook_id: str) -> None:
        self._for(webhook_id).circuit_rejections += 1

    def record_bookkeeping_failure(self, webhook_id: str) -> None:
        self._for(webhook_id).bookkeeping_failures += 1

    def get(self, webhook_id: str) -> Optional[DeliveryMetrics]:
        """Get metrics for a specific webhook."""
        return self._metrics.get(webhook_id)

    def get_summary(self) -> dict:
        """Get summary across all webhooks."""
        total = sum(m.total_deliveries for m in self._metrics.values())
        succeeded = sum(m.successful_deliveries for m in self._metrics.values())

        return {
            "total_webhooks": len(self._metrics),
            "total_deliveries": total,
            "overall_success_rate": (succeeded / total * 100) if total > 0 else 100.0,
            "webhooks": {wid: m.to_dict() for wid, m in self._metrics.items()},
        }

    def reset(self) -> None:
        """Reset all metrics."""
        self._metrics.clear()


class EventLogger:
    """Structured event logging for observability.

    Outputs JSON-formatted logs for easy parsing and analysis.

    Example:
        >>> EventLogger.info("webhook.delivered", webhook_id="wh_1", attempts=1)
        >>> EventLogger.error("webhook.bookkeeping_failed", error="db down")
    """

    _logger = logging.getLogger("hookline.events")

    @classmethod
    def _log(cls, level: str, event: str, **kwargs) -> None:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "event": event,
            **kwargs,
        }

        log_method = getattr(cls._logger, level.lower(), cls._logger.info)
        log_method(json.dumps(log_data, default=str))

    @classmethod
    def debug(cls, event: str, **kwargs) -> None:
        cls._log("DEBUG", event, **kwargs)

    @classmethod
    def info(cls, event: str, **kwargs) -> None:
        cls._log("INFO", event, **kwargs)

    @classmethod
    def warning(cls, event: str, **kwargs) -> None:
        cls._log("WARNING", event, **kwargs)

    @classmethod
    def error(cls, event: str, **kwargs) -> None:
        cls._log("ERROR", event, **kwargs)


class ObservabilityHook:
    """Sink for delivery-side signals. The base class ignores everything."""

    def delivery_completed(
        self,
        webhook_id: str,
        delivery_id: str,
        event_type: str,
        success: bool,
        attempts: int,
        duration_ms: float,
    ) -> None:
        pass

    def circuit_rejected(self, webhook_id: str, key: str, reason: str) -> None:
        pass

    def bookkeeping_failed(
        self,
        operation: str,
        webhook_id: str,
        delivery_id: str,
        error: BaseException,
    ) -> None:
        pass


class LoggingObservabilityHook(ObservabilityHook):
    """Default hook: JSON events plus in-memory metrics."""

    def __init__(self, metrics: Optional[MetricsCollector] = None):
        self.metrics = metrics or MetricsCollector()

    def delivery_completed(
        self,
        webhook_id: str,
        delivery_id: str,
        event_type: str,
        success: bool,
        attempts: int,
        duration_ms: float,
    ) -> None:
        self.metrics.record_delivery(webhook_id, success, attempts, duration_ms)
        log = EventLogger.info if success else EventLogger.warning
        log(
            "webhook.delivery.completed",
            webhook_id=webhook_id,
            delivery_id=delivery_id,
            event_type=event_type,
            success=success,
            attempts=attempts,
            duration_ms=round(duration_ms),
        )

    def circuit_rejected(self, webhook_id: str, key: str, reason: str) -> None:
        self.metrics.record_circuit_rejection(webhook_id)
        EventLogger.warning(
            "webhook.delivery.circuit_open",
            webhook_id=webhook_id,
            breaker_key=key,
            reason=reason,
        )

    def bookkeeping_failed(
        self,
        operation: str,
        webhook_id: str,
        delivery_id: str,
        error: BaseException,
    ) -> None:
        self.metrics.record_bookkeeping_failure(webhook_id)
        EventLogger.error(
            "webhook.bookkeeping.failed",
            operation=operation,
            webhook_id=webhook_id,
            delivery_id=delivery_id,
            error_type=type(error).__name__,
            error=str(error),
        )
