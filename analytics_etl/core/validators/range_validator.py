"""
RangeValidator - bounds on numeric values ("positive", "min:n", "max:n").
"""

from typing import Any

from .base_validator import BaseValidator
from .type_validator import coerce_number


class RangeValidator(BaseValidator):
    """
    Validates that a numeric field lies within bounds.

    Parameters:
    - min: Inclusive lower bound
    - max: Inclusive upper bound
    - min_exclusive: Exclusive lower bound; "positive" is min_exclusive=0
    - rule_name: Token reported on failure (defaults to "range")

    Non-numeric values fail as well; None is left to the required token.
    """

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)

        self.min_value = self.parameters.get("min")
        self.max_value = self.parameters.get("max")
        self.min_exclusive = self.parameters.get("min_exclusive")
        self.rule_name = self.parameters.get("rule_name", "range")

        if self.min_value is None and self.max_value is None and self.min_exclusive is None:
            raise ValueError("RangeValidator requires at least one of: min, max, min_exclusive")

    def validate(self, value: Any, record: dict[str, Any]) -> None:
        if value is None:
            return

        number = coerce_number(value)
        if number is None:
            self.fail(f"Value must be numeric, got {type(value).__name__}")
        if self.min_value is not None and number < self.min_value:
            self.fail(f"Value {value} is less than minimum {self.min_value}")
        if self.min_exclusive is not None and number <= self.min_exclusive:
            self.fail(f"Value {value} must be greater than {self.min_exclusive}")
        if self.max_value is not None and number > self.max_value:
            self.fail(f"Value {value} exceeds maximum {self.max_value}")

    @property
    def rule_type(self) -> str:
        return self.rule_name
