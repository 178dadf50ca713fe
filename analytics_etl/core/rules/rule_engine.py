"""
Rule engine for evaluating layer validation rules on records.

The rule engine parses the rule set once, builds one validator per rule
token, applies them to records and collects ValidationIssue models. It is a
quality-reporting pass: a failing rule never stops evaluation.
"""

from collections.abc import Iterable, Mapping
from typing import Any

from analytics_etl.core.models import ValidationIssue
from analytics_etl.core.rules.rule_parser import RuleKind, RuleToken, parse_rule_expression
from analytics_etl.core.validators import (
    BaseValidator,
    EmailValidator,
    RangeValidator,
    RequiredFieldValidator,
    TypeValidator,
    ValidationError,
)


def build_validator(field_name: str, token: RuleToken) -> BaseValidator:
    """
    Instantiate the validator implementing a rule token.

    Args:
        field_name: Field the rule applies to
        token: Parsed rule token

    Returns:
        Validator instance
    """
    kind = token.kind
    if kind is RuleKind.REQUIRED:
        return RequiredFieldValidator(field_name)
    if kind in (RuleKind.NUMERIC, RuleKind.STRING, RuleKind.DATE):
        return TypeValidator(field_name, {"expected_type": kind.value})
    if kind is RuleKind.EMAIL:
        return EmailValidator(field_name)
    if kind is RuleKind.POSITIVE:
        return RangeValidator(field_name, {"min_exclusive": 0, "rule_name": token.text})
    if kind is RuleKind.MIN:
        return RangeValidator(field_name, {"min": token.argument, "rule_name": token.text})
    if kind is RuleKind.MAX:
        return RangeValidator(field_name, {"max": token.argument, "rule_name": token.text})
    raise ValueError(f"Unknown rule type: {kind}")


class RuleEngine:
    """
    Evaluates a rule set (field -> rule expression) against records.

    Usage:
        engine = RuleEngine({"id": "required|numeric|positive"}, layer="ODS")
        issues = engine.validate_batch(records)
    """

    def __init__(self, rules: Mapping[str, str], layer: str | None = None):
        """
        Initialize the rule engine with validation rules.

        Args:
            rules: Mapping of field name to pipe-delimited rule expression
            layer: Layer name attached to reported issues

        Raises:
            ValueError: If any expression contains an unknown or malformed token
        """
        self.rules = dict(rules)
        self.layer = layer
        self.validators: list[tuple[RuleToken, BaseValidator]] = []
        self._build_validators()

    def _build_validators(self) -> None:
        """Parse every expression and build validator instances."""
        for field_name, expression in self.rules.items():
            try:
                tokens = parse_rule_expression(expression)
            except ValueError as e:
                raise ValueError(f"Invalid rule for field '{field_name}': {e}") from e

            for token in tokens:
                self.validators.append((token, build_validator(field_name, token)))

    @property
    def fields(self) -> set[str]:
        """Fields covered by at least one rule."""
        return set(self.rules)

    def validate_record(
        self,
        record: Mapping[str, Any],
        fields: Iterable[str] | None = None,
    ) -> list[ValidationIssue]:
        """
        Validate one record against all rules.

        Args:
            record: The record to validate
            fields: Restrict evaluation to these fields (all rules when None)

        Returns:
            One ValidationIssue per failing rule token, empty when all pass
        """
        selected = set(fields) if fields is not None else None
        record_id = record.get("id", "unknown")
        issues = []

        for token, validator in self.validators:
            field_name = validator.field_name
            if selected is not None and field_name not in selected:
                continue

            # Get field value (None if missing)
            value = record.get(field_name)

            try:
                validator.validate(value, record)
            except ValidationError as e:
                issues.append(
                    ValidationIssue(
                        record_id=record_id,
                        field=field_name,
                        value=value,
                        rule=token.text,
                        message=f"Field {field_name} validation failed: {e.message}",
                        layer=self.layer,
                    )
                )

        return issues

    def validate_batch(
        self,
        records: Iterable[Mapping[str, Any]],
        fields: Iterable[str] | None = None,
    ) -> list[ValidationIssue]:
        """
        Validate a batch of records.

        Args:
            records: Records to validate
            fields: Restrict evaluation to these fields (all rules when None)

        Returns:
            Flat list of issues across the batch, in record order
        """
        selected = list(fields) if fields is not None else None
        issues: list[ValidationIssue] = []
        for record in records:
            issues.extend(self.validate_record(record, selected))
        return issues

    def get_rule_summary(self) -> dict[str, Any]:
        """
        Get summary of loaded rules.

        Returns:
            Dictionary with rule counts and types
        """
        return {
            "total_rules": len(self.validators),
            "fields": sorted(self.fields),
            "rules_by_type": self._count_by_type(),
        }

    def _count_by_type(self) -> dict[str, int]:
        """Count validators by rule kind."""
        counts: dict[str, int] = {}
        for token, _ in self.validators:
            counts[token.kind.value] = counts.get(token.kind.value, 0) + 1
        return counts
