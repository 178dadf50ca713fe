"""
Exception hierarchy for the layered analytics ETL.

Validation problems are never raised from a layer; they are reported as
ValidationIssue models. The exceptions below cover configuration mistakes,
collaborator failures and structurally malformed records.
"""

from typing import Any


class AnalyticsETLError(Exception):
    """Base exception for all analytics ETL errors."""


class ConfigError(AnalyticsETLError):
    """Raised when pipeline configuration cannot be loaded or is invalid."""


class ExtractionError(AnalyticsETLError):
    """Raised when a source extractor fails to read a source."""

    def __init__(self, source_name: str, message: str):
        self.source_name = source_name
        self.message = message
        super().__init__(f"Extraction from '{source_name}' failed: {message}")

    def __reduce__(self):
        return (self.__class__, (self.source_name, self.message))


class RecordTransformError(AnalyticsETLError):
    """
    Raised when a single record cannot be transformed.

    Carries enough context for the orchestrator to skip the record and
    continue with the rest of the batch.
    """

    def __init__(self, record_id: Any, field: str | None, message: str, layer: str | None = None):
        self.record_id = record_id
        self.field = field
        self.message = message
        self.layer = layer
        location = f"{field}" if field else "<record>"
        prefix = f"[{layer}] " if layer else ""
        super().__init__(f"{prefix}record {record_id}, field {location}: {message}")

    def __reduce__(self):
        # Rebuild from fields so the error survives pickling between Spark workers
        return (self.__class__, (self.record_id, self.field, self.message, self.layer))

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error for run summaries and logs."""
        return {
            "layer": self.layer,
            "record_id": self.record_id,
            "field": self.field,
            "message": self.message,
        }
