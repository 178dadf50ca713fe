"""
Validation rule DSL, rule engine and configuration management.
"""

from .rule_config import RuleConfigBuilder, RuleConfigLoader
from .rule_engine import RuleEngine
from .rule_parser import RuleKind, RuleToken, parse_rule_expression

__all__ = [
    "RuleEngine",
    "RuleConfigLoader",
    "RuleConfigBuilder",
    "RuleKind",
    "RuleToken",
    "parse_rule_expression",
]
