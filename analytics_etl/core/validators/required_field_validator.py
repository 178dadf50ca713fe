"""
RequiredFieldValidator - the "required" rule token.
"""

from typing import Any

from .base_validator import BaseValidator


class RequiredFieldValidator(BaseValidator):
    """
    Fails when the field is missing, null, a blank string or an empty list/dict.

    Parameters:
    - allow_empty_string: Accept "" and whitespace-only strings
    """

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)
        self.allow_empty_string = self.parameters.get("allow_empty_string", False)

    def validate(self, value: Any, record: dict[str, Any]) -> None:
        if self.field_name not in record:
            self.fail("Field is missing from record")
        if value is None:
            self.fail("Field value is null")
        if isinstance(value, str) and not value.strip() and not self.allow_empty_string:
            self.fail("Field value is empty string")
        if isinstance(value, (list, dict)) and not value:
            self.fail("Field value is an empty collection")

    @property
    def rule_type(self) -> str:
        return "required"
