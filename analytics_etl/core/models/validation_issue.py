"""
ValidationIssue model representing one failed rule token on one record (ephemeral).
"""

from typing import Any

from pydantic import BaseModel, Field


class ValidationIssue(BaseModel):
    """
    A single data-quality finding produced by validate_data_quality.

    Issues are collected, never raised. A batch may carry any number of them
    without aborting; callers decide whether to block persistence.

    Attributes:
        record_id: The record's "id" field, or "unknown" when absent
        field: Field the rule is declared on
        value: Offending value (None when the field is missing)
        rule: The single failing rule token, e.g. "positive" or "min:1"
        message: Human-readable description
        layer: Layer that reported the issue
    """

    record_id: Any = "unknown"
    field: str = Field(..., min_length=1)
    value: Any = None
    rule: str = Field(..., min_length=1)
    message: str
    layer: str | None = None

    class Config:
        json_schema_extra = {
            "example": {
                "record_id": 42,
                "field": "total_amount",
                "value": -10,
                "rule": "positive",
                "message": "Field total_amount validation failed: Value -10 must be greater than 0",
                "layer": "ODS"
            }
        }
