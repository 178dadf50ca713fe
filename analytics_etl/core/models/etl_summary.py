"""
ETLRunSummary model reported to monitoring after a full pipeline run.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


class ETLRunSummary(BaseModel):
    """
    Summary of one run_full_etl invocation.

    Attributes:
        batch_id: Run-level batch identifier
        records_processed: Records extracted from sources into the raw layer
        errors: Extraction failures and skipped-record errors
        warnings: Data-quality findings
        duration: Wall-clock duration in seconds
        status: "running", "completed" or "failed"
        stage_counts: Records written per table
        started_at: Run start time
        finished_at: Run end time
    """

    batch_id: str
    records_processed: int = 0
    errors: list[dict[str, Any]] = Field(default_factory=list)
    warnings: list[dict[str, Any]] = Field(default_factory=list)
    duration: float = 0.0
    status: Literal["running", "completed", "failed"] = "running"
    stage_counts: dict[str, int] = Field(default_factory=dict)
    started_at: datetime | None = None
    finished_at: datetime | None = None

    class Config:
        json_schema_extra = {
            "example": {
                "batch_id": "BATCH_20240115_103000_65a4f1c2b3d4e",
                "records_processed": 1250,
                "errors": [],
                "warnings": [
                    {
                        "type": "accuracy",
                        "table": "dwd_fact_orders",
                        "issue": "Found 2 records with negative amounts",
                        "severity": "high"
                    }
                ],
                "duration": 3.42,
                "status": "completed",
                "stage_counts": {"ods_orders": 120, "dwd_fact_orders": 340}
            }
        }
