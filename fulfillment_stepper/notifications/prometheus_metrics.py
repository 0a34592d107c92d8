from __future__ import annotations

import json
import logging
import os

from prometheus_client import CollectorRegistry, Gauge, push_to_gateway

LOGGER = logging.getLogger(__name__)

DEFAULT_JOB = "fulfillment_stepper"


class PrometheusMetricsClient:
    """Best-effort Prometheus Pushgateway client for notification outcomes.

    Expected environment:
    - PROMETHEUS_PUSHGATEWAY_URL: URL to the Pushgateway. Unset disables pushes.

    Optional:
    - PROMETHEUS_PUSHGATEWAY_GROUPING_KEY_JSON: JSON object used as grouping key,
      e.g. {"instance": "stepper-web-1"}.

    Metrics delivery never fails a save; push errors are logged and dropped.
    """

    def __init__(self, pushgateway_url: str | None = None, *, job: str = DEFAULT_JOB) -> None:
        self._pushgateway_url = pushgateway_url or os.environ.get("PROMETHEUS_PUSHGATEWAY_URL")
        self._grouping_key = self._load_grouping_key()
        self._registry = CollectorRegistry()
        self._gauges: dict[tuple[str, tuple[str, ...]], Gauge] = {}
        self._job = job

    def is_enabled(self) -> bool:
        return self._pushgateway_url is not None

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    @staticmethod
    def _load_grouping_key() -> dict[str, str]:
        raw = os.environ.get("PROMETHEUS_PUSHGATEWAY_GROUPING_KEY_JSON")
        if not raw:
            return {}

        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            LOGGER.warning("Invalid PROMETHEUS_PUSHGATEWAY_GROUPING_KEY_JSON; ignoring")
            return {}

        if not isinstance(data, dict):
            return {}

        return {k: v for k, v in data.items() if isinstance(k, str) and isinstance(v, str)}

    def _gauge(self, name: str, labelnames: tuple[str, ...]) -> Gauge:
        key = (name, labelnames)
        gauge = self._gauges.get(key)
        if gauge is None:
            gauge = Gauge(name, documentation=name, labelnames=list(labelnames), registry=self._registry)
            self._gauges[key] = gauge
        return gauge

    def set_gauge(self, *, name: str, value: float, labels: dict[str, str]) -> None:
        """Set a labelled gauge in the local registry (always, even when pushes are off)."""
        labelnames = tuple(sorted(labels))
        self._gauge(name, labelnames).labels(**labels).set(value)

    def push_all(self) -> None:
        if not self._pushgateway_url:
            return

        push_to_gateway(
            gateway=self._pushgateway_url,
            job=self._job,
            registry=self._registry,
            grouping_key=self._grouping_key,
        )

        LOGGER.info(
            "Prometheus metrics pushed",
            extra={"job": self._job, "grouping_key": self._grouping_key},
        )

    def record_notification_wave(self, *, stage_id: str, wave: str, delivered: int, failed: int) -> None:
        """Record one wave's outcome and push it; errors are logged, never raised."""
        labels = {"stage_id": stage_id, "wave": wave}
        try:
            self.set_gauge(name="stepper_notifications_delivered", value=delivered, labels=labels)
            self.set_gauge(name="stepper_notifications_failed", value=failed, labels=labels)
            self.push_all()
        except Exception:  # pylint: disable=broad-exception-caught
            LOGGER.exception("Metrics push failed", extra={"stage_id": stage_id, "wave": wave})
