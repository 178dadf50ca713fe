"""
Pattern validators: RegexValidator and the "email" rule token.
"""

import re
from typing import Any

from .base_validator import BaseValidator

EMAIL_PATTERN = r"^[A-Za-z0-9._%+\-]+@[A-Za-z0-9\-]+(\.[A-Za-z0-9\-]+)*\.[A-Za-z]{2,}$"


class RegexValidator(BaseValidator):
    """
    Validates that the text form of a value matches a pattern.

    Parameters:
    - pattern: Regular expression (string or compiled)
    - flags: Regex flags applied when compiling a string pattern
    - rule_name: Token reported on failure (defaults to "regex")
    """

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)

        pattern = self.parameters.get("pattern")
        if not pattern:
            raise ValueError("RegexValidator requires 'pattern' parameter")
        if not isinstance(pattern, (str, re.Pattern)):
            raise ValueError(f"Pattern must be string or compiled Pattern, got {type(pattern)}")

        self.rule_name = self.parameters.get("rule_name", "regex")
        try:
            self.pattern = re.compile(pattern, self.parameters.get("flags", 0)) if isinstance(pattern, str) else pattern
        except re.error as e:
            raise ValueError(f"Invalid regex pattern: {e}") from e

    def validate(self, value: Any, record: dict[str, Any]) -> None:
        if value is None:
            return

        text = value if isinstance(value, str) else str(value)
        if not self.pattern.match(text):
            self.fail(f"Value '{text}' does not match pattern '{self.pattern.pattern}'")

    @property
    def rule_type(self) -> str:
        return self.rule_name


class EmailValidator(RegexValidator):
    """RegexValidator preconfigured for e-mail addresses."""

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, {"pattern": EMAIL_PATTERN, "rule_name": "email", **(parameters or {})})
