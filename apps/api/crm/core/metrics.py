"""OpenTelemetry metrics helpers.

Instruments are created lazily against the global meter provider, so every
helper is a no-op until `setup_opentelemetry` installs an SDK provider.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from opentelemetry import metrics
from opentelemetry.metrics import Counter, Histogram, Meter

from crm.core.config import settings

logger = logging.getLogger(__name__)

_meter: Meter | None = None

_http_request_counter: Counter | None = None
_http_request_duration: Histogram | None = None
_error_counter: Counter | None = None
_business_metric_counter: Counter | None = None


def get_meter() -> Meter:
    """Get or create the global OpenTelemetry meter instance."""
    global _meter
    if _meter is None:
        meter_provider = metrics.get_meter_provider()
        _meter = meter_provider.get_meter(
            name=settings.metrics_namespace or settings.workspace_name.replace(" ", "/"),
            version="1.0.0",
        )
    return _meter


def _get_http_request_counter() -> Counter:
    global _http_request_counter
    if _http_request_counter is None:
        _http_request_counter = get_meter().create_counter(
            name="http_requests_total",
            description="Total number of HTTP requests",
            unit="1",
        )
    return _http_request_counter


def _get_http_request_duration() -> Histogram:
    global _http_request_duration
    if _http_request_duration is None:
        _http_request_duration = get_meter().create_histogram(
            name="http_request_duration_ms",
            description="HTTP request duration in milliseconds",
            unit="ms",
        )
    return _http_request_duration


def _get_error_counter() -> Counter:
    global _error_counter
    if _error_counter is None:
        _error_counter = get_meter().create_counter(
            name="errors_total",
            description="Total number of errors",
            unit="1",
        )
    return _error_counter


def _get_business_metric_counter() -> Counter:
    global _business_metric_counter
    if _business_metric_counter is None:
        _business_metric_counter = get_meter().create_counter(
            name="business_metrics_total",
            description="Total number of business metric events",
            unit="1",
        )
    return _business_metric_counter


def _normalize_path(path: str) -> str:
    """Replace UUIDs and numeric IDs with placeholders to bound cardinality."""
    path = re.sub(
        r"/[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}",
        "/{id}",
        path,
        flags=re.IGNORECASE,
    )
    return re.sub(r"/\d+", "/{id}", path)


def emit_http_request(
    method: str,
    path: str,
    status_code: int,
    duration_ms: float,
) -> None:
    """Emit HTTP request count and latency."""
    if not settings.enable_metrics:
        return

    try:
        attributes = {
            "http.method": method,
            "http.route": _normalize_path(path),
            "http.status_code": status_code,
        }
        _get_http_request_counter().add(1, attributes=attributes)
        _get_http_request_duration().record(duration_ms, attributes=attributes)
    except Exception as e:
        logger.warning(f"Failed to emit HTTP metrics: {e}", exc_info=True)


def emit_error(
    error_code: str,
    status_code: int,
    path: str,
    method: str,
) -> None:
    """Emit error metrics.

    Args:
        error_code: Application error code
        status_code: HTTP status code
        path: Request path
        method: HTTP method
    """
    if not settings.enable_metrics:
        return

    if status_code >= 500:
        severity = "server_error"
    elif status_code >= 400:
        severity = "client_error"
    else:
        severity = "unknown"

    try:
        _get_error_counter().add(
            1,
            attributes={
                "error.code": error_code,
                "error.severity": severity,
                "http.status_code": status_code,
                "http.method": method,
                "http.route": _normalize_path(path),
            },
        )
    except Exception as e:
        logger.warning(f"Failed to emit error metric: {e}", exc_info=True)


def emit_business_metric(
    metric_name: str,
    value: float,
    unit: str = "Count",
    category: str | None = None,
    **metadata: Any,
) -> None:
    """Emit business metric using OpenTelemetry.

    Args:
        metric_name: Name of the business metric
        value: Metric value
        unit: Unit of measurement (default: Count)
        category: Optional category for grouping (e.g., "import")
        **metadata: Additional metadata
    """
    if not settings.enable_metrics:
        return

    try:
        attributes = {
            "metric.name": metric_name,
            "metric.unit": unit,
        }

        if category:
            attributes["metric.category"] = category

        for key, meta_value in metadata.items():
            if meta_value is not None:
                attributes[key] = str(meta_value)

        # Counters only accept integers
        _get_business_metric_counter().add(int(value), attributes=attributes)

    except Exception as e:
        logger.warning(f"Failed to emit business metric: {e}", exc_info=True)
