"""
Unit tests for the rule DSL parser, rule engine and rule configuration.
"""

from pathlib import Path

import pytest
from hypothesis import given
from hypothesis import strategies as st

from analytics_etl.core.rules import (
    RuleConfigBuilder,
    RuleConfigLoader,
    RuleEngine,
    RuleKind,
    RuleToken,
    parse_rule_expression,
)


class TestRuleParser:
    """Tests for parse_rule_expression"""

    def test_parses_tokens_in_order(self):
        """Test tokens keep declaration order"""
        tokens = parse_rule_expression("required|numeric|min:1|max:5")

        assert [token.kind for token in tokens] == [RuleKind.REQUIRED, RuleKind.NUMERIC, RuleKind.MIN, RuleKind.MAX]
        assert tokens[2].argument == 1.0
        assert tokens[3].text == "max:5"

    def test_fractional_argument_text(self):
        """Test fractional arguments render unchanged"""
        (token,) = parse_rule_expression("min:0.5")
        assert token.text == "min:0.5"

    @pytest.mark.parametrize("expression", ["", "|", "unique", "min", "min:abc", "positive:1"])
    def test_rejects_malformed_expressions(self, expression):
        """Test unknown tokens and bad arguments are rejected"""
        with pytest.raises(ValueError):
            parse_rule_expression(expression)

    @given(st.integers(min_value=-10_000, max_value=10_000))
    def test_min_argument_round_trips_through_text(self, bound):
        """Property: integer bounds render back to the same token"""
        (token,) = parse_rule_expression(f"min:{bound}")
        assert token == RuleToken(RuleKind.MIN, float(bound))
        assert token.text == f"min:{bound}"


class TestRuleEngine:
    """Tests for RuleEngine"""

    def test_validate_record_all_pass(self):
        """Test no issues when every rule passes"""
        engine = RuleEngine({"id": "required|numeric|positive", "email": "required|email"}, layer="ODS")

        issues = engine.validate_record({"id": 7, "email": "alice@example.com"})

        assert issues == []

    def test_every_failing_token_is_reported(self):
        """Test each failing token yields its own issue"""
        engine = RuleEngine({"rating": "required|numeric|min:1|max:5"}, layer="DWS")

        issues = engine.validate_record({"id": 3, "rating": 9})

        assert [issue.rule for issue in issues] == ["max:5"]
        assert issues[0].record_id == 3
        assert issues[0].value == 9
        assert issues[0].layer == "DWS"

    def test_missing_field_reports_required_only(self):
        """Test type and range tokens skip a missing value"""
        engine = RuleEngine({"total_amount": "required|numeric|positive"})

        issues = engine.validate_record({"id": 1})

        assert [issue.rule for issue in issues] == ["required"]

    def test_record_without_id(self):
        """Test issues on records without an id use 'unknown'"""
        engine = RuleEngine({"quantity": "positive"})

        (issue,) = engine.validate_record({"quantity": -1})

        assert issue.record_id == "unknown"
        assert issue.field == "quantity"

    def test_field_restriction(self):
        """Test only selected fields are evaluated"""
        engine = RuleEngine({"a": "required", "b": "required"})

        issues = engine.validate_record({}, fields=["b"])

        assert [issue.field for issue in issues] == ["b"]

    def test_validate_batch_flattens_issues(self):
        """Test batch validation collects issues across records"""
        engine = RuleEngine({"quantity": "required|positive"})

        issues = engine.validate_batch([{"id": 1, "quantity": 0}, {"id": 2, "quantity": 3}, {"id": 3}])

        assert [(issue.record_id, issue.rule) for issue in issues] == [(1, "positive"), (3, "required")]

    def test_invalid_rule_raises_at_construction(self):
        """Test malformed rules fail fast with the field name"""
        with pytest.raises(ValueError, match="quantity"):
            RuleEngine({"quantity": "required|between:1"})

    def test_rule_summary(self):
        """Test summary counts tokens by kind"""
        engine = RuleEngine({"a": "required|numeric", "b": "required|min:0"})

        summary = engine.get_rule_summary()

        assert summary["total_rules"] == 4
        assert summary["fields"] == ["a", "b"]
        assert summary["rules_by_type"] == {"required": 2, "numeric": 1, "min": 1}

    @given(st.floats(min_value=1, max_value=5, allow_nan=False))
    def test_in_range_scores_pass(self, score):
        """Property: scores in [1, 5] satisfy min:1|max:5"""
        engine = RuleEngine({"score": "numeric|min:1|max:5"})
        assert engine.validate_record({"score": score}) == []


class TestRuleConfigBuilder:
    """Tests for RuleConfigBuilder"""

    def test_build_expressions(self):
        """Test builder composes pipe-delimited expressions"""
        rules = RuleConfigBuilder() \
            .add_required_field("order_id") \
            .add_type_check("order_id", "numeric") \
            .add_positive("order_id") \
            .add_range("discount", min_value=0, max_value=1) \
            .add_email("email") \
            .build()

        assert rules == {
            "order_id": "required|numeric|positive",
            "discount": "min:0|max:1",
            "email": "email",
        }
        RuleEngine(rules)  # Should parse


class TestRuleConfigLoader:
    """Tests for RuleConfigLoader"""

    def test_load_rules(self, tmp_path):
        """Test loading per-layer overrides"""
        config_file = tmp_path / "rules.yaml"
        config_file.write_text(
            "layers:\n"
            "  ods:\n"
            "    total_amount: \"required|numeric|min:0\"\n"
            "  DWS:\n"
            "    conversion_rate: \"numeric|min:0|max:1\"\n"
        )

        rules = RuleConfigLoader(config_file).load_rules()

        assert rules == {
            "ODS": {"total_amount": "required|numeric|min:0"},
            "DWS": {"conversion_rate": "numeric|min:0|max:1"},
        }
        assert RuleConfigLoader(config_file).load_layer_rules("dws") == {"conversion_rate": "numeric|min:0|max:1"}
        assert RuleConfigLoader(config_file).load_layer_rules("ADS") == {}

    def test_missing_file(self, tmp_path):
        """Test a missing file raises FileNotFoundError"""
        with pytest.raises(FileNotFoundError):
            RuleConfigLoader(tmp_path / "absent.yaml")

    def test_missing_layers_section(self, tmp_path):
        """Test a file without 'layers' is rejected"""
        config_file = tmp_path / "rules.yaml"
        config_file.write_text("rules: []\n")

        with pytest.raises(ValueError, match="layers"):
            RuleConfigLoader(config_file).load_rules()

    def test_invalid_expression(self, tmp_path):
        """Test malformed expressions name the offending field"""
        config_file = tmp_path / "rules.yaml"
        config_file.write_text("layers:\n  ODS:\n    quantity: \"required|huge\"\n")

        with pytest.raises(ValueError, match="ODS.quantity"):
            RuleConfigLoader(config_file).load_rules()

    def test_shipped_rule_file_is_valid(self):
        """Test the rule file under config/ loads"""
        rules = RuleConfigLoader(Path(__file__).parents[2] / "config" / "validation_rules.yaml").load_rules()
        assert set(rules) == {"ODS", "DWD", "DWS", "ADS"}
