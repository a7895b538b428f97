"""Centralized service for emitting business metrics.

This service provides helper methods for emitting business metrics with
consistent structure and metadata.
"""

from typing import Optional
from uuid import UUID

from crm.core.metrics import emit_business_metric
from crm.core.business_metrics import MetricCategory


class MetricsService:
    """Centralized service for emitting business metrics."""

    @staticmethod
    def emit_import_metric(
        metric_name: str,
        workspace_id: UUID,
        user_id: Optional[UUID] = None,
        destination_type: Optional[str] = None,
        rows_processed: Optional[int] = None,
        **extra_metadata,
    ) -> None:
        """Emit an import-related metric.

        Args:
            metric_name: Metric name from BusinessMetric
            workspace_id: Workspace ID
            user_id: ID of the user performing the import
            destination_type: "call_list" or "group"
            rows_processed: Number of rows processed (for ImportRowsProcessed)
            **extra_metadata: Additional metadata to include
        """
        metadata = {
            "workspace_id": str(workspace_id),
        }
        if user_id:
            metadata["user_id"] = str(user_id)
        if destination_type:
            metadata["destination_type"] = destination_type
        if rows_processed is not None:
            metadata["rows_processed"] = rows_processed
        metadata.update(extra_metadata)

        emit_business_metric(
            metric_name=metric_name,
            value=rows_processed if rows_processed is not None else 1,
            category=MetricCategory.IMPORT.value,
            **metadata,
        )

    @staticmethod
    def emit_data_quality_metric(
        metric_name: str,
        workspace_id: UUID,
        count: int = 1,
        **extra_metadata,
    ) -> None:
        """Emit a data quality-related metric.

        Args:
            metric_name: Metric name from BusinessMetric
            workspace_id: Workspace ID
            count: Number of occurrences
            **extra_metadata: Additional metadata to include
        """
        if count <= 0:
            return

        emit_business_metric(
            metric_name=metric_name,
            value=count,
            category=MetricCategory.DATA_QUALITY.value,
            workspace_id=str(workspace_id),
            **extra_metadata,
        )
