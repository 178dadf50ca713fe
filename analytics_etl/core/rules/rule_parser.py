"""
Parser for the pipe-delimited rule DSL used by layer validation rules.

An expression such as "required|numeric|min:1|max:5" is parsed once into a
tuple of RuleToken values; evaluation dispatches on RuleKind instead of
re-reading strings per record.
"""

from dataclasses import dataclass
from enum import Enum


class RuleKind(str, Enum):
    """Supported rule tokens."""

    REQUIRED = "required"
    NUMERIC = "numeric"
    STRING = "string"
    DATE = "date"
    EMAIL = "email"
    POSITIVE = "positive"
    MIN = "min"
    MAX = "max"


# Tokens that take a numeric argument ("min:0")
PARAMETERISED_KINDS = {RuleKind.MIN, RuleKind.MAX}


@dataclass(frozen=True)
class RuleToken:
    """One parsed rule token, e.g. RuleToken(RuleKind.MIN, 1.0)."""

    kind: RuleKind
    argument: float | None = None

    @property
    def text(self) -> str:
        """Render the token back to DSL form ("min:1")."""
        if self.argument is None:
            return self.kind.value
        argument = int(self.argument) if self.argument.is_integer() else self.argument
        return f"{self.kind.value}:{argument}"


def parse_rule_token(token: str) -> RuleToken:
    """
    Parse a single rule token.

    Args:
        token: Token text such as "required" or "max:5"

    Returns:
        Parsed RuleToken

    Raises:
        ValueError: If the token is unknown or its argument is malformed
    """
    name, _, raw_argument = token.strip().partition(":")
    try:
        kind = RuleKind(name.strip().lower())
    except ValueError:
        raise ValueError(f"Unknown rule type: {name!r}") from None

    if kind in PARAMETERISED_KINDS:
        if not raw_argument.strip():
            raise ValueError(f"Rule '{kind.value}' requires an argument, e.g. '{kind.value}:0'")
        try:
            argument = float(raw_argument)
        except ValueError:
            raise ValueError(f"Rule '{kind.value}' argument must be numeric, got {raw_argument!r}") from None
        return RuleToken(kind, argument)

    if raw_argument:
        raise ValueError(f"Rule '{kind.value}' does not take an argument")
    return RuleToken(kind)


def parse_rule_expression(expression: str) -> tuple[RuleToken, ...]:
    """
    Parse a pipe-delimited rule expression.

    Args:
        expression: e.g. "required|numeric|positive"

    Returns:
        Tuple of RuleToken in declaration order

    Raises:
        ValueError: If the expression is empty or contains an unknown token
    """
    tokens = [part for part in expression.split("|") if part.strip()]
    if not tokens:
        raise ValueError("Rule expression must contain at least one rule")
    return tuple(parse_rule_token(token) for token in tokens)
