"""
ODS (Operational Data Store) layer.

Keeps source-system records near-verbatim: transformation only stamps
audit timestamps and attaches a serialized copy of the full record.
"""

import json
from collections.abc import Mapping
from typing import Any

from analytics_etl.core.clock import Clock
from analytics_etl.core.interfaces import SourceExtractor
from analytics_etl.core.layers.base import DataWarehouseLayer, Record, TransformContext
from analytics_etl.core.models import ExtractQuery
from analytics_etl.observability.logger import get_logger

logger = get_logger(__name__)

SOURCE_TABLES = ("orders", "order_items", "products", "users", "inquiries")


def serialize_record(record: Mapping[str, Any]) -> str:
    """JSON copy of a record with stable key order; dates and decimals become strings."""
    return json.dumps(record, default=str, sort_keys=True, ensure_ascii=False)


class ODSLayer(DataWarehouseLayer):
    """
    Raw store layer.

    Usage:
        ods = ODSLayer(extractor=InMemorySourceExtractor({"orders": rows}))
        raw = ods.extract_from_source("orders", {"status": "completed"})
        records = ods.transform(raw)
    """

    layer_name = "ODS"

    def __init__(
        self,
        extractor: SourceExtractor | None = None,
        clock: Clock | None = None,
        rule_overrides: Mapping[str, str] | None = None,
    ):
        super().__init__(clock=clock, rule_overrides=rule_overrides)
        self.extractor = extractor

    def __getstate__(self):
        # Workers only transform; the extractor may hold an open connection pool
        state = self.__dict__.copy()
        state["extractor"] = None
        return state

    def define_schema(self) -> dict[str, dict[str, str]]:
        return {
            "ods_orders": {
                "id": "BIGINT PRIMARY KEY",
                "order_number": "VARCHAR(50) UNIQUE",
                "user_id": "BIGINT",
                "total_amount": "DECIMAL(10,2)",
                "currency": "VARCHAR(3)",
                "status": "VARCHAR(20)",
                "order_date": "TIMESTAMP",
                "created_at": "TIMESTAMP",
                "updated_at": "TIMESTAMP",
                "raw_data": "JSON",
            },
            "ods_order_items": {
                "id": "BIGINT PRIMARY KEY",
                "order_id": "BIGINT",
                "product_id": "BIGINT",
                "sku": "VARCHAR(100)",
                "quantity": "INT",
                "unit_price": "DECIMAL(10,2)",
                "total_price": "DECIMAL(10,2)",
                "currency": "VARCHAR(3)",
                "created_at": "TIMESTAMP",
                "updated_at": "TIMESTAMP",
                "raw_data": "JSON",
            },
            "ods_products": {
                "id": "BIGINT PRIMARY KEY",
                "sku": "VARCHAR(100) UNIQUE",
                "name": "VARCHAR(255)",
                "category": "VARCHAR(100)",
                "price": "DECIMAL(10,2)",
                "cost_price": "DECIMAL(10,2)",
                "currency": "VARCHAR(3)",
                "stock_quantity": "INT",
                "supplier_id": "BIGINT",
                "created_at": "TIMESTAMP",
                "updated_at": "TIMESTAMP",
                "raw_data": "JSON",
            },
            "ods_users": {
                "id": "BIGINT PRIMARY KEY",
                "username": "VARCHAR(100) UNIQUE",
                "email": "VARCHAR(255) UNIQUE",
                "first_name": "VARCHAR(100)",
                "last_name": "VARCHAR(100)",
                "company": "VARCHAR(255)",
                "phone": "VARCHAR(50)",
                "country": "VARCHAR(50)",
                "loyalty_points": "INT",
                "registration_date": "TIMESTAMP",
                "last_login": "TIMESTAMP",
                "created_at": "TIMESTAMP",
                "updated_at": "TIMESTAMP",
                "raw_data": "JSON",
            },
            "ods_inquiries": {
                "id": "BIGINT PRIMARY KEY",
                "inquiry_number": "VARCHAR(50) UNIQUE",
                "user_id": "BIGINT",
                "subject": "VARCHAR(255)",
                "status": "VARCHAR(20)",
                "priority": "VARCHAR(10)",
                "estimated_value": "DECIMAL(10,2)",
                "currency": "VARCHAR(3)",
                "inquiry_date": "TIMESTAMP",
                "created_at": "TIMESTAMP",
                "updated_at": "TIMESTAMP",
                "raw_data": "JSON",
            },
        }

    def define_indexes(self) -> dict[str, dict[str, str]]:
        return {
            "ods_orders": {
                "idx_user_id": "user_id",
                "idx_order_date": "order_date",
                "idx_status": "status",
                "idx_created_at": "created_at",
            },
            "ods_order_items": {
                "idx_order_id": "order_id",
                "idx_product_id": "product_id",
                "idx_sku": "sku",
            },
            "ods_products": {
                "idx_sku": "sku",
                "idx_category": "category",
                "idx_supplier_id": "supplier_id",
            },
            "ods_users": {
                "idx_email": "email",
                "idx_username": "username",
                "idx_registration_date": "registration_date",
                "idx_country": "country",
            },
            "ods_inquiries": {
                "idx_user_id": "user_id",
                "idx_inquiry_date": "inquiry_date",
                "idx_status": "status",
                "idx_priority": "priority",
            },
        }

    def define_validation_rules(self) -> dict[str, str]:
        return {
            "id": "required|numeric|positive",
            "order_number": "required|string",
            "user_id": "required|numeric|positive",
            "total_amount": "required|numeric|positive",
            "currency": "required|string",
            "status": "required|string",
            "order_date": "required|date",
            "email": "required|email",
            "sku": "required|string",
            "quantity": "required|numeric|positive",
            "unit_price": "required|numeric|positive",
        }

    def transform_record(self, record: Mapping[str, Any], context: TransformContext) -> Record:
        created_at = record.get("created_at")
        return {
            **record,
            "created_at": created_at if created_at is not None else context.now,
            "updated_at": context.now,
            "raw_data": serialize_record(record),
        }

    def extract_from_source(self, source_name: str, filters: Mapping[str, Any] | None = None) -> list[Record]:
        """
        Extract raw rows from a source table.

        Args:
            source_name: One of the known source tables ("orders", "users", ...)
            filters: Equality filters (column -> value)

        Returns:
            Extracted rows; empty for an unknown source or without an extractor
        """
        if source_name not in SOURCE_TABLES:
            logger.warning("Unknown source requested", extra={"source_name": source_name})
            return []

        if self.extractor is None:
            logger.warning("No source extractor configured", extra={"source_name": source_name})
            return []

        query = ExtractQuery.build(source_name, {key: str(value) for key, value in (filters or {}).items()})
        rows = self.extractor.extract(query)
        logger.info(
            "Extracted source rows",
            extra={"source_name": source_name, "row_count": len(rows), "filters": query.filters},
        )
        return [dict(row) for row in rows]
