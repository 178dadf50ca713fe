"""
RFMScore model representing a customer's Recency/Frequency/Monetary scoring.
"""

from typing import Literal

from pydantic import BaseModel, Field, field_validator

CustomerSegment = Literal[
    "Champions",
    "Loyal Customers",
    "New Customers",
    "At Risk",
    "Lost",
    "Potential",
]


class RFMScore(BaseModel):
    """
    Outcome of RFM scoring for one customer.

    Attributes:
        recency_score: 1-5, higher means a more recent order
        frequency_score: 1-5, higher means more orders
        monetary_score: 1-5, higher means more revenue
        rfm_score: The three digits concatenated, e.g. "541"
        customer_segment: Priority-ordered segment derived from the scores
    """

    recency_score: int = Field(..., ge=1, le=5)
    frequency_score: int = Field(..., ge=1, le=5)
    monetary_score: int = Field(..., ge=1, le=5)
    rfm_score: str = Field(..., min_length=3, max_length=3)
    customer_segment: CustomerSegment

    @field_validator("rfm_score")
    @classmethod
    def check_digits_match_scores(cls, v, info):
        """Validate that rfm_score is the concatenation of the three scores."""
        expected = "".join(
            str(info.data.get(name, ""))
            for name in ("recency_score", "frequency_score", "monetary_score")
        )
        if v != expected:
            raise ValueError(f"rfm_score {v!r} does not match sub-scores {expected!r}")
        return v
