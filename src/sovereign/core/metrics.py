"""OpenTelemetry metrics instruments for the sovereign filter.

Instruments are created lazily from the global MeterProvider, so callers do
not need to pass a Meter instance around.

Call ``init_metrics(service_name)`` once during startup.  When
OTEL_EXPORTER_OTLP_ENDPOINT is not set, the SDK falls back to a no-op
MeterProvider and all recordings are silent no-ops.

Instruments
-----------
  sovereign.filter.classified_total     Counter  (label: classification)
      Inbound messages classified by the filter.

  sovereign.filter.archived_total       Counter
      System-noise messages written to the archive.

  sovereign.filter.touch_failures_total Counter
      Best-effort last-message touches that failed.

  sovereign.batch.queue_depth           UpDownCounter (gauge semantics)
      Messages currently held in the in-memory batch queue.
"""

from __future__ import annotations

import logging
import os

from opentelemetry import metrics

logger = logging.getLogger(__name__)

_METER_NAME = "sovereign"


def init_metrics(service_name: str) -> metrics.Meter:
    """Initialize OpenTelemetry metrics.

    When OTEL_EXPORTER_OTLP_ENDPOINT is set, configures a real MeterProvider
    with a periodic OTLP gRPC exporter.  Otherwise, the global no-op
    MeterProvider is used and all recordings are silent.
    """
    endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT")

    if not endpoint:
        logger.info("OTEL_EXPORTER_OTLP_ENDPOINT not set, using no-op meter")
        return metrics.get_meter(_METER_NAME)

    # Import SDK/exporter only when needed to avoid hard dependency at import time
    from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
    from opentelemetry.sdk.metrics import MeterProvider
    from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
    from opentelemetry.sdk.resources import Resource

    resource = Resource.create({"service.name": service_name})
    exporter = OTLPMetricExporter(endpoint=endpoint)
    reader = PeriodicExportingMetricReader(exporter, export_interval_millis=15_000)
    provider = MeterProvider(resource=resource, metric_readers=[reader])

    metrics.set_meter_provider(provider)
    logger.info("Metrics initialized: service=%s, endpoint=%s", service_name, endpoint)

    return metrics.get_meter(_METER_NAME)


def get_meter() -> metrics.Meter:
    """Return a Meter from the current global provider (no-op before init)."""
    return metrics.get_meter(_METER_NAME)


class FilterMetrics:
    """Convenience wrapper around the sovereign filter instruments.

    Instruments are lazily created from the global MeterProvider on first use,
    so it is safe to construct this object before ``init_metrics`` is called.
    """

    def __init__(self, service_name: str = "sovereign") -> None:
        self._attrs = {"service": service_name}
        self.__classified: metrics.Counter | None = None
        self.__archived: metrics.Counter | None = None
        self.__touch_failures: metrics.Counter | None = None
        self.__queue_depth: metrics.UpDownCounter | None = None

    @property
    def _classified(self) -> metrics.Counter:
        if self.__classified is None:
            self.__classified = get_meter().create_counter(
                name="sovereign.filter.classified_total",
                description="Inbound messages classified by the sovereign filter",
                unit="messages",
            )
        return self.__classified

    @property
    def _archived(self) -> metrics.Counter:
        if self.__archived is None:
            self.__archived = get_meter().create_counter(
                name="sovereign.filter.archived_total",
                description="System-noise messages written to the silent archive",
                unit="messages",
            )
        return self.__archived

    @property
    def _touch_failures(self) -> metrics.Counter:
        if self.__touch_failures is None:
            self.__touch_failures = get_meter().create_counter(
                name="sovereign.filter.touch_failures_total",
                description="Failed best-effort last-message timestamp updates",
                unit="events",
            )
        return self.__touch_failures

    @property
    def _queue_depth(self) -> metrics.UpDownCounter:
        if self.__queue_depth is None:
            self.__queue_depth = get_meter().create_up_down_counter(
                name="sovereign.batch.queue_depth",
                description="Messages currently held in the in-memory batch queue",
                unit="messages",
            )
        return self.__queue_depth

    def record_classification(self, classification: str) -> None:
        """Record one classified inbound message."""
        self._classified.add(1, {**self._attrs, "classification": str(classification)})

    def record_archived(self) -> None:
        self._archived.add(1, self._attrs)

    def record_touch_failure(self) -> None:
        self._touch_failures.add(1, self._attrs)

    def batch_queue_depth_add(self, delta: int) -> None:
        """Adjust the batch queue depth gauge by *delta* (negative on drain)."""
        if delta:
            self._queue_depth.add(delta, self._attrs)
