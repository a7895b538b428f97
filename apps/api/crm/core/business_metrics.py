"""Business metrics catalog with standardized naming.

Use these names to keep metric naming consistent across the codebase.
"""

from enum import Enum


class MetricCategory(str, Enum):
    """Categories for grouping business metrics."""

    IMPORT = "import"
    DATA_QUALITY = "data_quality"


class BusinessMetric:
    """Catalog of all business metrics with standardized naming."""

    # Import metrics
    IMPORT_PREVIEWED = "ImportPreviewed"
    IMPORT_STARTED = "ImportStarted"
    IMPORT_COMPLETED = "ImportCompleted"
    IMPORT_FAILED = "ImportFailed"
    IMPORT_ROWS_PROCESSED = "ImportRowsProcessed"
    IMPORT_VALIDATION_ERROR = "ImportValidationError"

    # Data Quality metrics
    DUPLICATE_DETECTED = "DuplicateDetected"
