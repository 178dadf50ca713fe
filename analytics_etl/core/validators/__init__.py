"""
Validation rule implementations.

Provides validators for the layer rule tokens: required fields, value kinds
(numeric, string, date), numeric ranges (positive, min, max) and e-mail
patterns.
"""

from .base_validator import BaseValidator, ValidationError
from .range_validator import RangeValidator
from .regex_validator import EmailValidator, RegexValidator
from .required_field_validator import RequiredFieldValidator
from .type_validator import TypeValidator, coerce_number, parse_date

__all__ = [
    "BaseValidator",
    "ValidationError",
    "RequiredFieldValidator",
    "TypeValidator",
    "RangeValidator",
    "RegexValidator",
    "EmailValidator",
    "coerce_number",
    "parse_date",
]
