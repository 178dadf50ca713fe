"""
Unit tests for the post-run data-quality pass.
"""

from analytics_etl.batch.quality_checks import (
    check_accuracy,
    check_completeness,
    check_consistency,
    run_quality_checks,
)
from analytics_etl.core.layers import DWDLayer, DWSLayer


class TestCrossTableChecks:
    """Tests for completeness, consistency and accuracy"""

    def test_completeness(self):
        facts = [{"order_amount": 10, "user_key": 1}, {"order_amount": None, "user_key": 1}, {"order_amount": 5}]

        (warning,) = check_completeness(facts)

        assert warning["type"] == "completeness"
        assert warning["issue"] == "Found 2 records with null key fields"
        assert warning["severity"] == "high"

    def test_consistency(self):
        facts = [{"user_key": 1}, {"user_key": 2}, {"user_key": None}]

        (warning,) = check_consistency(facts, [{"user_key": 1}])

        assert warning["issue"] == "Found 1 orphaned order records"
        assert warning["severity"] == "medium"

    def test_accuracy(self):
        (warning,) = check_accuracy([{"order_amount": -1}, {"order_amount": "3.5"}, {"order_amount": None}])
        assert warning["issue"] == "Found 1 records with negative amounts"

    def test_clean_facts(self):
        facts = [{"order_amount": 10, "user_key": 1}]

        assert check_completeness(facts) == []
        assert check_consistency(facts, [{"user_key": 1}]) == []
        assert check_accuracy(facts) == []


class TestRunQualityChecks:
    """Tests for run_quality_checks"""

    def test_counts_issues_per_table(self):
        dwd = DWDLayer()
        dws = DWSLayer()
        outputs = [
            (dwd, {
                "dwd_fact_orders": [{"fact_id": 1, "order_id": 1, "user_key": 9, "product_key": 1,
                                     "order_date_key": 20240110, "order_amount": -5, "quantity": 1}],
                "dwd_dim_user": [],
            }),
            (dws, {"dws_customer_rfm": [{"id": 1, "user_key": 1, "recency_score": 9,
                                         "frequency_score": 1, "monetary_score": 1}]}),
        ]

        report = run_quality_checks(outputs)

        assert report.issue_counts["dwd_dim_user"] == 0
        assert report.issue_counts["dwd_fact_orders"] >= 1
        assert any(issue.rule == "max:5" for issue in report.issues)
        assert {warning["type"] for warning in report.warnings} == {"consistency", "accuracy"}
        assert report.total_issues == len(report.issues)

    def test_no_outputs(self):
        report = run_quality_checks([])

        assert report.issues == []
        assert report.warnings == []
