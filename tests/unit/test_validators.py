"""
Unit tests for validation rule tokens.

Includes property-based testing with hypothesis for validators.
"""

from datetime import date, datetime
from decimal import Decimal

import pytest
from hypothesis import given
from hypothesis import strategies as st

from analytics_etl.core.validators import (
    EmailValidator,
    RangeValidator,
    RegexValidator,
    RequiredFieldValidator,
    TypeValidator,
    ValidationError,
    coerce_number,
    parse_date,
)


class TestRequiredFieldValidator:
    """Tests for RequiredFieldValidator"""

    def test_valid_required_field(self):
        """Test validation passes for present field"""
        validator = RequiredFieldValidator("name")
        record = {"name": "Alice Smith"}
        validator.validate(record["name"], record)  # Should not raise

    def test_missing_field_raises_error(self):
        """Test validation fails for missing field"""
        validator = RequiredFieldValidator("name")
        record = {"age": 30}

        with pytest.raises(ValidationError) as exc_info:
            validator.validate(None, record)

        assert "missing" in str(exc_info.value).lower()
        assert exc_info.value.field_name == "name"
        assert exc_info.value.rule_name == "required"

    def test_null_field_raises_error(self):
        """Test validation fails for null field"""
        validator = RequiredFieldValidator("name")
        record = {"name": None}

        with pytest.raises(ValidationError) as exc_info:
            validator.validate(record["name"], record)

        assert "null" in str(exc_info.value).lower()

    def test_blank_string_raises_error(self):
        """Test validation fails for whitespace-only string"""
        validator = RequiredFieldValidator("name")
        record = {"name": "   "}

        with pytest.raises(ValidationError):
            validator.validate(record["name"], record)

    def test_empty_collection_raises_error(self):
        """Test validation fails for an empty list"""
        validator = RequiredFieldValidator("tags")
        record = {"tags": []}

        with pytest.raises(ValidationError):
            validator.validate(record["tags"], record)

    def test_zero_is_present(self):
        """Test zero counts as a present value"""
        validator = RequiredFieldValidator("quantity")
        validator.validate(0, {"quantity": 0})

    @given(st.text(min_size=1).filter(lambda s: s.strip() != ""))
    def test_non_blank_strings_pass(self, value):
        """Property: any non-blank string satisfies required"""
        validator = RequiredFieldValidator("name")
        validator.validate(value, {"name": value})


class TestTypeValidator:
    """Tests for TypeValidator"""

    def test_requires_expected_type(self):
        """Test constructor rejects missing expected_type"""
        with pytest.raises(ValueError):
            TypeValidator("amount")

    def test_rejects_unsupported_type(self):
        """Test constructor rejects unknown types"""
        with pytest.raises(ValueError):
            TypeValidator("amount", {"expected_type": "uuid"})

    @pytest.mark.parametrize("value", [1, 2.5, Decimal("9.99"), "99.99", " 12 "])
    def test_numeric_accepts_numbers_and_numeric_strings(self, value):
        """Test numeric accepts numbers and numeric strings"""
        TypeValidator("amount", {"expected_type": "numeric"}).validate(value, {"amount": value})

    @pytest.mark.parametrize("value", ["abc", True, [1], "nan"])
    def test_numeric_rejects_non_numbers(self, value):
        """Test numeric rejects text, booleans, lists and NaN"""
        validator = TypeValidator("amount", {"expected_type": "numeric"})

        with pytest.raises(ValidationError) as exc_info:
            validator.validate(value, {"amount": value})

        assert exc_info.value.rule_name == "numeric"

    def test_string_rejects_numbers(self):
        """Test string rejects non-str values"""
        validator = TypeValidator("status", {"expected_type": "string"})

        with pytest.raises(ValidationError):
            validator.validate(42, {"status": 42})

    @pytest.mark.parametrize("value", [date(2024, 1, 15), datetime(2024, 1, 15, 10, 30), "2024-01-15", "2024-01-15 10:30:00"])
    def test_date_accepts_dates_and_iso_strings(self, value):
        """Test date accepts date objects and ISO strings"""
        TypeValidator("order_date", {"expected_type": "date"}).validate(value, {"order_date": value})

    def test_date_rejects_garbage(self):
        """Test date rejects unparsable strings"""
        validator = TypeValidator("order_date", {"expected_type": "date"})

        with pytest.raises(ValidationError):
            validator.validate("15/01/2024", {"order_date": "15/01/2024"})

    def test_none_is_skipped(self):
        """Test None is left to the required validator"""
        TypeValidator("amount", {"expected_type": "numeric"}).validate(None, {})

    @given(st.integers())
    def test_numeric_accepts_all_integers(self, value):
        """Property: every integer is numeric"""
        TypeValidator("amount", {"expected_type": "numeric"}).validate(value, {"amount": value})

    @given(st.floats(allow_nan=False, allow_infinity=False))
    def test_numeric_accepts_finite_float_strings(self, value):
        """Property: the string form of a finite float is numeric"""
        TypeValidator("amount", {"expected_type": "numeric"}).validate(str(value), {"amount": str(value)})


class TestRangeValidator:
    """Tests for RangeValidator"""

    def test_requires_a_boundary(self):
        """Test constructor rejects a validator without bounds"""
        with pytest.raises(ValueError):
            RangeValidator("amount")

    def test_min_is_inclusive(self):
        """Test min boundary value passes"""
        validator = RangeValidator("score", {"min": 1})
        validator.validate(1, {"score": 1})

        with pytest.raises(ValidationError):
            validator.validate(0.99, {"score": 0.99})

    def test_max_is_inclusive(self):
        """Test max boundary value passes"""
        validator = RangeValidator("score", {"max": 5})
        validator.validate(5, {"score": 5})

        with pytest.raises(ValidationError):
            validator.validate(5.01, {"score": 5.01})

    def test_positive_excludes_zero(self):
        """Test min_exclusive rejects the boundary"""
        validator = RangeValidator("amount", {"min_exclusive": 0, "rule_name": "positive"})

        with pytest.raises(ValidationError) as exc_info:
            validator.validate(0, {"amount": 0})

        assert exc_info.value.rule_name == "positive"

    def test_non_numeric_fails(self):
        """Test non-numeric values fail range checks"""
        validator = RangeValidator("amount", {"min": 0})

        with pytest.raises(ValidationError):
            validator.validate("lots", {"amount": "lots"})

    @given(st.floats(min_value=0, max_value=100, allow_nan=False, allow_infinity=False))
    def test_values_inside_range_pass(self, value):
        """Property: values within [0, 100] pass"""
        RangeValidator("pct", {"min": 0, "max": 100}).validate(value, {"pct": value})

    @given(st.floats(max_value=-0.01, allow_nan=False, allow_infinity=False))
    def test_negative_values_fail_positive(self, value):
        """Property: negative values never satisfy positive"""
        validator = RangeValidator("amount", {"min_exclusive": 0})

        with pytest.raises(ValidationError):
            validator.validate(value, {"amount": value})


class TestRegexValidator:
    """Tests for RegexValidator and EmailValidator"""

    def test_requires_pattern(self):
        """Test constructor rejects a missing pattern"""
        with pytest.raises(ValueError):
            RegexValidator("code")

    def test_invalid_pattern(self):
        """Test constructor rejects an invalid regex"""
        with pytest.raises(ValueError):
            RegexValidator("code", {"pattern": "([a-z"})

    @pytest.mark.parametrize("email", ["alice@example.com", "first.last+tag@mail.example.co"])
    def test_valid_emails(self, email):
        """Test well-formed addresses pass"""
        EmailValidator("email").validate(email, {"email": email})

    @pytest.mark.parametrize("email", ["not-an-email", "alice@", "@example.com", "alice@example"])
    def test_invalid_emails(self, email):
        """Test malformed addresses fail with the email token"""
        with pytest.raises(ValidationError) as exc_info:
            EmailValidator("email").validate(email, {"email": email})

        assert exc_info.value.rule_name == "email"

    @given(st.from_regex(r"^ORD-[0-9]{4}$", fullmatch=True))
    def test_generated_order_numbers_match(self, value):
        """Property: generated order numbers match their pattern"""
        RegexValidator("order_number", {"pattern": r"^ORD-[0-9]{4}$"}).validate(value, {"order_number": value})


class TestCoercionHelpers:
    """Tests for coerce_number and parse_date"""

    def test_coerce_number(self):
        assert coerce_number("12.5") == 12.5
        assert coerce_number(Decimal("3")) == 3.0
        assert coerce_number(True) is None
        assert coerce_number("inf") is None
        assert coerce_number(None) is None

    def test_parse_date(self):
        assert parse_date("2024-01-15T10:30:00") == date(2024, 1, 15)
        assert parse_date(datetime(2024, 1, 15, 23, 59)) == date(2024, 1, 15)
        assert parse_date("") is None
        assert parse_date(20240115) is None
