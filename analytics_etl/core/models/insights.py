"""
Alert, recommendation and action-plan models emitted by the application layer.
"""

from typing import Any, Literal

from pydantic import BaseModel, Field


class Alert(BaseModel):
    """
    A triggered business alert.

    Attributes:
        type: "warning", "critical" or "urgent"
        message: Human-readable description
        severity: "high", "critical" or "urgent"
        metric: Name of the metric that triggered the alert
        value: Metric value at trigger time
    """

    type: Literal["warning", "critical", "urgent"]
    message: str
    severity: Literal["high", "critical", "urgent"]
    metric: str
    value: Any = None


class Recommendation(BaseModel):
    """
    A suggested business action.

    Attributes:
        category: "growth", "retention" or "inventory"
        priority: "high", "medium" or "low"
        action: Short action title
        description: What to do
        expected_impact: Expected effect of the action
    """

    category: Literal["growth", "retention", "inventory"]
    priority: Literal["high", "medium", "low"]
    action: str
    description: str
    expected_impact: str


class ActionPlan(BaseModel):
    """Actions tiered by urgency."""

    immediate_actions: list[str] = Field(default_factory=list)
    short_term_actions: list[str] = Field(default_factory=list)
    long_term_actions: list[str] = Field(default_factory=list)
