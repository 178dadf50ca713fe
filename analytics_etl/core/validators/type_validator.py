"""
TypeValidator - validates that a field holds a numeric, string or date value.
"""

import math
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from .base_validator import BaseValidator


def coerce_number(value: Any) -> float | None:
    """
    Interpret a value as a finite number.

    Accepts int, float and Decimal (but not bool) and strings holding a
    number, e.g. "99.99" or " 12 ".

    Returns:
        The numeric value as float, or None if the value is not numeric
    """
    if isinstance(value, bool):
        return None

    if isinstance(value, (int, float, Decimal)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None

    if not math.isfinite(number):
        return None
    return number


def parse_date(value: Any) -> date | None:
    """
    Interpret a value as a calendar date.

    Accepts date/datetime instances and ISO-8601 strings
    ("2024-01-15", "2024-01-15 10:30:00", "2024-01-15T10:30:00").
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return datetime.fromisoformat(value.strip()).date()
        except ValueError:
            return None
    return None


class TypeValidator(BaseValidator):
    """
    Validates that a field matches the expected kind of value.

    Supported types:
    - numeric: int/float/Decimal or a numeric string (bool is rejected)
    - string: str
    - date: date/datetime or ISO-8601 date string
    """

    SUPPORTED_TYPES = ("numeric", "string", "date")

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)

        # Get expected type from parameters
        expected_type = self.parameters.get("expected_type")
        if not expected_type:
            raise ValueError("TypeValidator requires 'expected_type' parameter")

        expected_type = str(expected_type).lower()
        if expected_type not in self.SUPPORTED_TYPES:
            raise ValueError(f"Unsupported type: {expected_type}")
        self.expected_type = expected_type

    def validate(self, value: Any, record: dict[str, Any]) -> None:
        """
        Validate that the value matches the expected type.

        Args:
            value: The field value to validate
            record: The entire record

        Raises:
            ValidationError: If type validation fails
        """
        # Skip validation for None (handled by required validator)
        if value is None:
            return

        if self.expected_type == "numeric":
            valid = coerce_number(value) is not None
        elif self.expected_type == "string":
            valid = isinstance(value, str)
        else:
            valid = parse_date(value) is not None

        if not valid:
            self.fail(f"Expected {self.expected_type} value, got {type(value).__name__} {value!r}")

    @property
    def rule_type(self) -> str:
        return self.expected_type
