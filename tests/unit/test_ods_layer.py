"""
Unit tests for the layer contract and the raw (ODS) layer.
"""

import json
from datetime import datetime
from decimal import Decimal

import pytest

from analytics_etl.batch.readers import InMemorySourceExtractor
from analytics_etl.core.clock import FrozenClock
from analytics_etl.core.layers import ODSLayer
from analytics_etl.core.layers.base import generate_batch_id, read_number, record_identity, safe_divide
from analytics_etl.core.errors import RecordTransformError


class TestLayerContract:
    """Tests for behaviour shared by every layer"""

    def test_schema_is_read_only(self):
        """Test schema descriptors cannot be mutated"""
        schema = ODSLayer().schema()

        with pytest.raises(TypeError):
            schema["ods_orders"] = {}
        with pytest.raises(TypeError):
            schema["ods_orders"]["extra"] = "TEXT"

    def test_indexes_describe_declared_tables(self):
        layer = ODSLayer()
        assert set(layer.indexes()) <= set(layer.schema())

    def test_rule_overrides_replace_and_extend(self):
        """Test overrides replace built-in rules and add new ones"""
        layer = ODSLayer(rule_overrides={"total_amount": "required|numeric|min:0", "phone": "string"})
        rules = layer.validation_rules()

        assert rules["total_amount"] == "required|numeric|min:0"
        assert rules["phone"] == "string"
        assert rules["id"] == "required|numeric|positive"

    def test_invalid_override_rejected_at_construction(self):
        with pytest.raises(ValueError):
            ODSLayer(rule_overrides={"total_amount": "required|big"})

    def test_columns_of_unknown_table(self):
        with pytest.raises(ValueError):
            ODSLayer().columns("dwd_fact_orders")

    def test_batch_id_format(self):
        batch_id = generate_batch_id(datetime(2024, 1, 15, 10, 30, 5))

        prefix, day, time_part, suffix = batch_id.split("_")
        assert (prefix, day, time_part) == ("BATCH", "20240115", "103005")
        assert len(suffix) == 13
        int(suffix, 16)  # hex

    def test_record_identity_prefers_id(self):
        assert record_identity({"id": 5, "order_id": 9}) == 5
        assert record_identity({"fact_id": 3}) == 3
        assert record_identity({}) == "unknown"

    def test_read_number(self):
        assert read_number({"a": "2.5"}, "a") == 2.5
        assert read_number({}, "a", 7.0) == 7.0
        assert read_number({"a": None}, "a", 1.0) == 1.0

        with pytest.raises(RecordTransformError) as exc_info:
            read_number({"id": 4, "a": "many"}, "a")
        assert exc_info.value.record_id == 4
        assert exc_info.value.field == "a"

    def test_safe_divide_treats_zero_as_one(self):
        assert safe_divide(5, 0) == 5
        assert safe_divide(5, 2) == 2.5


class TestODSTransform:
    """Tests for ODSLayer.transform"""

    def test_stamps_audit_fields_and_raw_copy(self, frozen_clock):
        """Test created_at/updated_at/raw_data are added without dropping fields"""
        layer = ODSLayer(clock=frozen_clock)
        record = {"id": 1, "total_amount": Decimal("12.50"), "order_date": datetime(2024, 1, 10, 9, 0)}

        (result,) = layer.transform([record])

        assert result["id"] == 1
        assert result["total_amount"] == Decimal("12.50")
        assert result["created_at"] == frozen_clock.now()
        assert result["updated_at"] == frozen_clock.now()
        assert json.loads(result["raw_data"]) == {
            "id": 1,
            "order_date": "2024-01-10 09:00:00",
            "total_amount": "12.50",
        }

    def test_keeps_existing_created_at(self, frozen_clock):
        created = datetime(2023, 12, 1, 8, 0)
        (result,) = ODSLayer(clock=frozen_clock).transform([{"id": 1, "created_at": created}])

        assert result["created_at"] == created
        assert result["updated_at"] == frozen_clock.now()

    def test_does_not_mutate_input(self, frozen_clock):
        record = {"id": 1, "status": "paid"}
        ODSLayer(clock=frozen_clock).transform([record])
        assert record == {"id": 1, "status": "paid"}

    def test_raw_data_is_deterministic(self, frozen_clock):
        """Test key order does not change the serialized copy"""
        layer = ODSLayer(clock=frozen_clock)
        (first,) = layer.transform([{"b": 2, "a": 1}])
        (second,) = layer.transform([{"a": 1, "b": 2}])
        assert first["raw_data"] == second["raw_data"]

    def test_idempotent_with_frozen_clock(self, frozen_clock, source_data):
        layer = ODSLayer(clock=frozen_clock)
        assert layer.transform(source_data["orders"]) == layer.transform(source_data["orders"])


class TestODSExtraction:
    """Tests for ODSLayer.extract_from_source"""

    def test_extract_with_filters(self, extractor):
        layer = ODSLayer(extractor=extractor)

        rows = layer.extract_from_source("orders", {"status": "completed"})

        assert [row["id"] for row in rows] == [1, 3]
        assert extractor.queries[-1].params == ("completed",)

    def test_numeric_filters_match_text_form(self, extractor):
        rows = ODSLayer(extractor=extractor).extract_from_source("orders", {"user_id": 2})
        assert [row["id"] for row in rows] == [2]

    def test_unknown_source_skips_extractor(self, extractor):
        """Test unknown sources return [] without a query"""
        rows = ODSLayer(extractor=extractor).extract_from_source("payments")

        assert rows == []
        assert extractor.queries == []

    def test_without_extractor(self):
        assert ODSLayer().extract_from_source("orders") == []

    def test_known_source_without_rows(self):
        assert ODSLayer(extractor=InMemorySourceExtractor({})).extract_from_source("inquiries") == []


class TestODSDataQuality:
    """Tests for validate_data_quality on raw records"""

    def test_clean_records_have_no_issues(self, frozen_clock, source_data):
        layer = ODSLayer(clock=frozen_clock)
        records = layer.transform(source_data["orders"])

        assert layer.validate_data_quality(records, table="ods_orders") == []

    def test_one_issue_per_failing_token(self, frozen_clock):
        layer = ODSLayer(clock=frozen_clock)
        record = {
            "id": 9, "order_number": "ORD-9", "user_id": 1, "total_amount": -5,
            "currency": "CNY", "status": "paid", "order_date": "not a date",
        }

        issues = layer.validate_data_quality([record], table="ods_orders")

        assert sorted((issue.field, issue.rule) for issue in issues) == [
            ("order_date", "date"),
            ("total_amount", "positive"),
        ]
        assert all(issue.record_id == 9 and issue.layer == "ODS" for issue in issues)

    def test_never_raises_on_garbage(self):
        """Test reporting continues through malformed records"""
        layer = ODSLayer(clock=FrozenClock(datetime(2024, 1, 1)))
        issues = layer.validate_data_quality([{}, {"id": "x", "email": 5}, {"quantity": [1, 2]}])
        assert len(issues) > 0
