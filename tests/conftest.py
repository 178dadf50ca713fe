"""
Pytest configuration and fixtures for analytics-etl tests

This module provides shared fixtures for unit and integration tests.
"""
import os
import shutil
from datetime import datetime
from typing import Generator

import pytest

from analytics_etl.batch.readers import InMemorySourceExtractor
from analytics_etl.core.clock import FrozenClock


# =======================
# PYTEST CONFIGURATION
# =======================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests that don't require external services"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests that require Spark (Java) or Docker containers"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take more than 5 seconds to run"
    )


# =======================
# CLOCK AND SOURCE DATA FIXTURES
# =======================

RUN_INSTANT = datetime(2024, 1, 15, 10, 30)


@pytest.fixture
def frozen_clock() -> FrozenClock:
    """Clock frozen at 2024-01-15 10:30"""
    return FrozenClock(RUN_INSTANT)


@pytest.fixture
def source_data() -> dict[str, list[dict]]:
    """
    Small but complete set of source-system tables

    Two customers, two products, three orders (one in USD) with four items.
    """
    return {
        "orders": [
            {"id": 1, "order_number": "ORD-0001", "user_id": 1, "total_amount": 300.0, "currency": "CNY",
             "status": "completed", "order_date": "2024-01-10 09:00:00", "payment_method": "alipay",
             "shipping_method": "express", "region_code": "EAST"},
            {"id": 2, "order_number": "ORD-0002", "user_id": 2, "total_amount": 50.0, "currency": "USD",
             "status": "paid", "order_date": "2024-01-12 14:20:00", "payment_method": "card",
             "shipping_method": "standard", "region_code": "WEST"},
            {"id": 3, "order_number": "ORD-0003", "user_id": 1, "total_amount": 300.0, "currency": "CNY",
             "status": "completed", "order_date": "2024-01-14 18:45:00", "payment_method": "alipay",
             "shipping_method": "express", "region_code": "EAST"},
        ],
        "order_items": [
            {"id": 10, "order_id": 1, "product_id": 100, "sku": "PHN-100", "quantity": 2,
             "unit_price": 100.0, "total_price": 200.0, "currency": "CNY"},
            {"id": 11, "order_id": 1, "product_id": 101, "sku": "KIT-101", "quantity": 1,
             "unit_price": 100.0, "total_price": 100.0, "currency": "CNY"},
            {"id": 12, "order_id": 2, "product_id": 100, "sku": "PHN-100", "quantity": 1,
             "unit_price": 50.0, "total_price": 50.0, "currency": "USD"},
            {"id": 13, "order_id": 3, "product_id": 101, "sku": "KIT-101", "quantity": 3,
             "unit_price": 100.0, "total_price": 300.0, "currency": "CNY"},
        ],
        "products": [
            {"id": 100, "sku": "PHN-100", "name": "Smartphone X", "category": "Electronics > Phones > Smartphones",
             "brand": "Acme", "price": 100.0, "cost_price": 60.0, "currency": "CNY",
             "stock_quantity": 5, "reserved_quantity": 1, "reorder_point": 10, "supplier_id": 7},
            {"id": 101, "sku": "KIT-101", "name": "Chef Knife", "category": "Home > Kitchen",
             "brand": "Blade", "price": 100.0, "cost_price": 40.0, "currency": "CNY",
             "stock_quantity": 500, "reserved_quantity": 0, "supplier_id": 8},
        ],
        "users": [
            {"id": 1, "username": "alice", "email": "alice@example.com", "first_name": "Alice",
             "last_name": "Smith", "company": "Acme Trading", "country": "China", "city": "Shanghai",
             "loyalty_points": 1500, "registration_date": "2023-06-01 08:00:00"},
            {"id": 2, "username": "bob", "email": "bob@example.com", "first_name": "Bob",
             "last_name": "Lee", "company": "Lee Imports", "country": "USA", "city": "Boston",
             "loyalty_points": 200, "registration_date": "2023-11-20 12:00:00"},
        ],
        "inquiries": [
            {"id": 1, "inquiry_number": "INQ-0001", "user_id": 1, "subject": "Bulk pricing",
             "status": "open", "priority": "high", "estimated_value": 5000.0, "currency": "CNY",
             "inquiry_date": "2024-01-11 10:00:00"},
        ],
    }


@pytest.fixture
def extractor(source_data) -> InMemorySourceExtractor:
    """In-memory source extractor serving source_data"""
    return InMemorySourceExtractor(source_data)


# =======================
# SPARK FIXTURES
# =======================

@pytest.fixture(scope="session")
def spark_session():
    """
    Create a Spark session for testing with local mode

    Skips when no Java runtime is available.

    Yields:
        SparkSession configured for local testing
    """
    if shutil.which("java") is None and not os.getenv("JAVA_HOME"):
        pytest.skip("Java runtime not available for Spark")

    from pyspark.sql import SparkSession

    spark = (
        SparkSession.builder
        .appName("analytics-etl-test")
        .master("local[2]")
        .config("spark.sql.shuffle.partitions", "2")
        .config("spark.driver.memory", "1g")
        .config("spark.ui.enabled", "false")  # Disable UI for tests
        .config("spark.sql.warehouse.dir", "/tmp/spark-warehouse")
        .getOrCreate()
    )

    # Set log level to WARN to reduce test output noise
    spark.sparkContext.setLogLevel("WARN")

    yield spark

    # Cleanup
    spark.stop()


# =======================
# DATABASE FIXTURES (Testcontainers)
# =======================

@pytest.fixture(scope="session")
def postgres_container():
    """
    Start PostgreSQL container for integration tests

    Skips when Docker is not reachable.

    Yields:
        PostgresContainer instance
    """
    from testcontainers.postgres import PostgresContainer

    container = PostgresContainer(
        image="postgres:16.2-alpine",
        username="test_etl",
        password="test_password",
        dbname="test_analytics",
    )
    try:
        container.start()
    except Exception as e:
        pytest.skip(f"Docker not available: {e}")

    yield container

    container.stop()


@pytest.fixture
def db_pool(postgres_container) -> Generator:
    """
    Open a connection pool on a freshly emptied test database

    Args:
        postgres_container: PostgreSQL container fixture

    Yields:
        Open DatabaseConnectionPool
    """
    from analytics_etl.warehouse.connection import DatabaseConnectionPool

    pool = DatabaseConnectionPool(
        host=postgres_container.get_container_host_ip(),
        port=int(postgres_container.get_exposed_port(5432)),
        database="test_analytics",
        user="test_etl",
        password="test_password",
    )
    pool.open()
    pool.execute_command("DROP SCHEMA public CASCADE")
    pool.execute_command("CREATE SCHEMA public")

    yield pool

    pool.close()
