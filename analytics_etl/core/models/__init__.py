"""
Core data models for the layered analytics pipeline.

All models use Pydantic for runtime validation and type safety.
Records flowing between layers stay plain dicts; these models describe
the structured values attached to them and the reports around them.
"""

from .etl_summary import ETLRunSummary
from .extract_query import ExtractQuery
from .insights import ActionPlan, Alert, Recommendation
from .rfm_score import RFMScore
from .validation_issue import ValidationIssue

__all__ = [
    "ValidationIssue",
    "ExtractQuery",
    "Alert",
    "Recommendation",
    "ActionPlan",
    "RFMScore",
    "ETLRunSummary",
]
