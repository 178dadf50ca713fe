"""
Rule configuration management.

Loads per-layer validation rule overrides from YAML files and provides a
builder for composing rule expressions programmatically.
"""

from pathlib import Path
from typing import Any

import yaml

from analytics_etl.core.rules.rule_parser import parse_rule_expression


class RuleConfigLoader:
    """
    Loads validation rule overrides from YAML configuration files.

    Expected YAML format:
    ```yaml
    layers:
      ODS:
        total_amount: "required|numeric|min:0"
      DWS:
        conversion_rate: "numeric|min:0|max:1"
    ```

    An override replaces the layer's built-in expression for that field or
    adds a new field.
    """

    def __init__(self, config_path: str | Path):
        """
        Initialize the rule config loader.

        Args:
            config_path: Path to the YAML configuration file
        """
        self.config_path = Path(config_path)
        if not self.config_path.exists():
            raise FileNotFoundError(f"Rule configuration file not found: {config_path}")

    def load_rules(self) -> dict[str, dict[str, str]]:
        """
        Load and parse rule overrides for every layer.

        Returns:
            Mapping of upper-cased layer name to {field: expression}

        Raises:
            ValueError: If YAML is invalid or an expression is malformed
        """
        with open(self.config_path) as f:
            config = yaml.safe_load(f)

        if not config or "layers" not in config:
            raise ValueError("Configuration file must contain 'layers' section")

        layers = config["layers"] or {}
        if not isinstance(layers, dict):
            raise ValueError("'layers' section must be a mapping of layer name to rules")

        return {
            str(layer_name).upper(): self._parse_layer(str(layer_name), field_rules)
            for layer_name, field_rules in layers.items()
        }

    def load_layer_rules(self, layer_name: str) -> dict[str, str]:
        """Load the overrides for a single layer (empty when absent)."""
        return self.load_rules().get(layer_name.upper(), {})

    def _parse_layer(self, layer_name: str, field_rules: Any) -> dict[str, str]:
        """
        Parse the rule mapping of one layer.

        Args:
            layer_name: Layer the rules belong to (for error messages)
            field_rules: Raw YAML value

        Returns:
            Validated {field: expression} mapping

        Raises:
            ValueError: If the mapping or any expression is invalid
        """
        if field_rules is None:
            return {}
        if not isinstance(field_rules, dict):
            raise ValueError(f"Rules for layer '{layer_name}' must be a mapping")

        parsed = {}
        for field_name, expression in field_rules.items():
            if not isinstance(expression, str):
                raise ValueError(f"Rule for '{layer_name}.{field_name}' must be a string expression")
            try:
                parse_rule_expression(expression)
            except ValueError as e:
                raise ValueError(f"Invalid rule for '{layer_name}.{field_name}': {e}") from e
            parsed[str(field_name)] = expression
        return parsed


class RuleConfigBuilder:
    """
    Programmatically build rule sets (for testing or dynamic rules).
    """

    def __init__(self):
        """Initialize empty rule configuration."""
        self.rules: dict[str, list[str]] = {}

    def _add(self, field_name: str, token: str) -> "RuleConfigBuilder":
        self.rules.setdefault(field_name, []).append(token)
        return self

    def add_required_field(self, field_name: str) -> "RuleConfigBuilder":
        """Add a required field rule."""
        return self._add(field_name, "required")

    def add_type_check(self, field_name: str, expected_type: str) -> "RuleConfigBuilder":
        """Add a numeric, string or date rule."""
        return self._add(field_name, expected_type)

    def add_positive(self, field_name: str) -> "RuleConfigBuilder":
        """Add a strictly-positive rule."""
        return self._add(field_name, "positive")

    def add_range(
        self,
        field_name: str,
        min_value: float | None = None,
        max_value: float | None = None
    ) -> "RuleConfigBuilder":
        """Add min and/or max rules."""
        if min_value is not None:
            self._add(field_name, f"min:{min_value}")
        if max_value is not None:
            self._add(field_name, f"max:{max_value}")
        return self

    def add_email(self, field_name: str) -> "RuleConfigBuilder":
        """Add an e-mail format rule."""
        return self._add(field_name, "email")

    def build(self) -> dict[str, str]:
        """Build and return the {field: expression} rule set."""
        return {field_name: "|".join(tokens) for field_name, tokens in self.rules.items()}
