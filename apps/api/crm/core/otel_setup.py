"""OpenTelemetry SDK setup and configuration.

This module initializes the OpenTelemetry meter provider with an OTLP
exporter when an endpoint is configured.
"""

from __future__ import annotations

import logging

from opentelemetry import metrics
from opentelemetry.exporter.otlp.proto.http.metric_exporter import (
    OTLPMetricExporter,
)
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource

from crm.core.config import settings

logger = logging.getLogger(__name__)

_initialized = False


def setup_opentelemetry() -> None:
    """Initialize OpenTelemetry SDK with appropriate configuration."""
    global _initialized

    if _initialized:
        return

    if not settings.enable_metrics:
        logger.info("OpenTelemetry metrics disabled via configuration")
        return

    try:
        service_name = settings.otel_service_name or settings.workspace_name
        namespace = (
            settings.metrics_namespace
            or settings.workspace_name.replace(" ", "/")
        )
        resource = Resource.create(
            {
                "service.name": service_name,
                "service.namespace": namespace,
            }
        )

        if settings.otel_exporter_otlp_endpoint:
            metrics_endpoint = settings.otel_exporter_otlp_endpoint + "/v1/metrics"
            metric_reader = PeriodicExportingMetricReader(
                OTLPMetricExporter(endpoint=metrics_endpoint),
                export_interval_millis=60000,
            )
            meter_provider = MeterProvider(
                resource=resource,
                metric_readers=[metric_reader],
            )
            logger.info(f"OpenTelemetry metrics exporter configured: {metrics_endpoint}")
        else:
            meter_provider = MeterProvider(resource=resource)
            logger.info(
                "OpenTelemetry metrics exporter not configured "
                "(no endpoint specified)"
            )

        metrics.set_meter_provider(meter_provider)

        _initialized = True
        logger.info("OpenTelemetry SDK initialized successfully")

    except Exception as e:
        logger.warning(
            "Failed to initialize OpenTelemetry SDK: %s", e, exc_info=True
        )
