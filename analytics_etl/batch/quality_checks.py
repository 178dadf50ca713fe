"""
Post-run data-quality pass.

Runs each layer's rule-based validate_data_quality over the tables it
produced and adds cross-table checks on the order facts: completeness
(null key fields), consistency (facts pointing at unknown users) and
accuracy (negative amounts). Findings are reported, never raised.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from analytics_etl.core.layers.base import DataWarehouseLayer
from analytics_etl.core.models import ValidationIssue
from analytics_etl.core.validators import coerce_number
from analytics_etl.observability.logger import get_logger

logger = get_logger(__name__)

ORDER_FACTS_TABLE = "dwd_fact_orders"
USER_DIMENSION_TABLE = "dwd_dim_user"


@dataclass
class QualityReport:
    """
    Outcome of the data-quality pass.

    Attributes:
        issues: Rule violations from validate_data_quality, all tables
        issue_counts: Violation count per table
        warnings: Cross-table findings as {type, table, issue, severity}
    """

    issues: list[ValidationIssue] = field(default_factory=list)
    issue_counts: dict[str, int] = field(default_factory=dict)
    warnings: list[dict[str, Any]] = field(default_factory=list)

    @property
    def total_issues(self) -> int:
        return len(self.issues)


def check_completeness(order_facts: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
    missing = sum(1 for fact in order_facts if fact.get("order_amount") is None or fact.get("user_key") is None)
    if not missing:
        return []
    return [{
        "type": "completeness",
        "table": ORDER_FACTS_TABLE,
        "issue": f"Found {missing} records with null key fields",
        "severity": "high",
    }]


def check_consistency(
    order_facts: Iterable[Mapping[str, Any]],
    user_dimensions: Iterable[Mapping[str, Any]],
) -> list[dict[str, Any]]:
    known_users = {row.get("user_key") for row in user_dimensions}
    orphaned = sum(
        1 for fact in order_facts
        if fact.get("user_key") is not None and fact.get("user_key") not in known_users
    )
    if not orphaned:
        return []
    return [{
        "type": "consistency",
        "table": ORDER_FACTS_TABLE,
        "issue": f"Found {orphaned} orphaned order records",
        "severity": "medium",
    }]


def check_accuracy(order_facts: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
    negative = 0
    for fact in order_facts:
        amount = coerce_number(fact.get("order_amount"))
        if amount is not None and amount < 0:
            negative += 1
    if not negative:
        return []
    return [{
        "type": "accuracy",
        "table": ORDER_FACTS_TABLE,
        "issue": f"Found {negative} records with negative amounts",
        "severity": "high",
    }]


def run_quality_checks(
    outputs: Iterable[tuple[DataWarehouseLayer, Mapping[str, list[dict[str, Any]]]]],
) -> QualityReport:
    """
    Validate every produced table and run the cross-table checks.

    Args:
        outputs: (layer, {table: rows}) pairs for each stage of the run

    Returns:
        QualityReport
    """
    report = QualityReport()
    tables: dict[str, list[dict[str, Any]]] = {}

    for layer, produced in outputs:
        for table, rows in produced.items():
            tables[table] = rows
            issues = layer.validate_data_quality(rows, table=table)
            report.issues.extend(issues)
            report.issue_counts[table] = len(issues)

    facts = tables.get(ORDER_FACTS_TABLE, [])
    report.warnings.extend(check_completeness(facts))
    report.warnings.extend(check_consistency(facts, tables.get(USER_DIMENSION_TABLE, [])))
    report.warnings.extend(check_accuracy(facts))

    if report.warnings:
        logger.warning(
            "Data quality issues found",
            extra={"warning_count": len(report.warnings), "warnings": report.warnings},
        )
    return report
