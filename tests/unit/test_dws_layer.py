"""
Unit tests for the aggregated-summary (DWS) layer.
"""

from datetime import date

import pytest
from hypothesis import given
from hypothesis import strategies as st

from analytics_etl.core.layers import DWSLayer
from analytics_etl.core.layers.dws import (
    calculate_churn_probability,
    calculate_rfm,
    calculate_trend_indicator,
    classify_trend,
    segment_customer,
)

AS_OF = date(2024, 1, 15)

SEGMENTS = {"Champions", "Loyal Customers", "New Customers", "At Risk", "Lost", "Potential"}


def _fact(fact_id, order_id, day_key, user_key, product_key, amount_cny, quantity, amount=None):
    return {
        "fact_id": fact_id,
        "order_id": order_id,
        "order_date_key": day_key,
        "user_id": user_key,
        "user_key": user_key,
        "product_key": product_key,
        "order_amount": amount_cny if amount is None else amount,
        "order_amount_cny": amount_cny,
        "quantity": quantity,
        "region_code": "EAST" if user_key == 1 else "WEST",
    }


@pytest.fixture
def facts():
    """Three orders from two customers across one week of January 2024"""
    return [
        _fact(10, 1, 20240110, 1, 100, 200.0, 2),
        _fact(11, 1, 20240110, 1, 101, 100.0, 1),
        _fact(12, 2, 20240112, 2, 100, 360.0, 1, amount=50.0),
        _fact(13, 3, 20240114, 1, 101, 300.0, 3),
    ]


@pytest.fixture
def products():
    return [
        {"product_key": 100, "product_id": 100, "sku": "PH-1", "category_l1": "Electronics",
         "cost_price": 60, "currency": "CNY", "customer_rating": 4.5},
        {"product_key": 101, "product_id": 101, "sku": "KN-1", "category_l1": "Home",
         "cost_price": 40, "currency": "CNY", "customer_rating": 4.0},
    ]


class TestRFM:
    """Tests for RFM scoring and segmentation"""

    def test_top_customer_is_champion(self):
        score = calculate_rfm({"days_since_last_order": 10, "total_orders": 25, "total_revenue": 120000})

        assert score.rfm_score == "555"
        assert score.customer_segment == "Champions"

    def test_defaults_score_lowest(self):
        """Test an empty history scores 111 / Lost"""
        score = calculate_rfm({})
        assert score.rfm_score == "111"
        assert score.customer_segment == "Lost"

    @pytest.mark.parametrize("days,expected", [(30, "5"), (31, "4"), (60, "4"), (90, "3"), (180, "2"), (181, "1")])
    def test_recency_bands(self, days, expected):
        assert calculate_rfm({"days_since_last_order": days}).rfm_score[0] == expected

    @pytest.mark.parametrize("orders,expected", [(1, "1"), (2, "2"), (5, "3"), (10, "4"), (20, "5")])
    def test_frequency_bands(self, orders, expected):
        assert calculate_rfm({"days_since_last_order": 0, "total_orders": orders}).rfm_score[1] == expected

    @pytest.mark.parametrize("revenue,expected", [(4999, "1"), (5000, "2"), (20000, "3"), (50000, "4"), (100000, "5")])
    def test_monetary_bands(self, revenue, expected):
        assert calculate_rfm({"days_since_last_order": 0, "total_revenue": revenue}).rfm_score[2] == expected

    @pytest.mark.parametrize("scores,expected", [
        ((5, 5, 5), "Champions"),
        ((4, 4, 4), "Champions"),
        ((3, 3, 3), "Loyal Customers"),
        ((5, 1, 1), "New Customers"),
        ((1, 5, 5), "At Risk"),
        ((1, 1, 1), "Lost"),
        ((3, 1, 1), "Potential"),
    ])
    def test_segment_priority(self, scores, expected):
        assert segment_customer(*scores) == expected

    @given(
        st.integers(min_value=0, max_value=1000),
        st.integers(min_value=0, max_value=100),
        st.floats(min_value=0, max_value=1_000_000, allow_nan=False),
    )
    def test_score_is_digit_concatenation(self, days, orders, revenue):
        """Property: rfm_score is the three sub-scores and the segment is known"""
        score = calculate_rfm({"days_since_last_order": days, "total_orders": orders, "total_revenue": revenue})

        assert score.rfm_score == f"{score.recency_score}{score.frequency_score}{score.monetary_score}"
        assert score.customer_segment in SEGMENTS

    def test_layer_method_delegates(self):
        assert DWSLayer().calculate_rfm({"days_since_last_order": 10}).recency_score == 5


class TestChurnAndTrend:
    """Tests for churn probability and trend classification"""

    @pytest.mark.parametrize("days,expected", [(100, 0.8), (70, 0.6), (50, 0.4), (45, 0.1), (0, 0.1)])
    def test_churn_ladder(self, days, expected):
        assert calculate_churn_probability(days, 30) == expected

    def test_zero_frequency_uses_default_interval(self):
        assert calculate_churn_probability(100, 0) == 0.8

    @pytest.mark.parametrize("growth,expected", [
        (0.5, "Strong Up"),
        (0.2, "Up"),
        (0.06, "Up"),
        (0.05, "Stable"),
        (0.0, "Stable"),
        (-0.05, "Stable"),
        (-0.1, "Down"),
        (-0.2, "Strong Down"),
    ])
    def test_trend_boundaries(self, growth, expected):
        assert classify_trend(growth) == expected

    def test_trend_indicator_from_period_values(self):
        assert calculate_trend_indicator({"current_period_value": 95, "previous_period_value": 100}) == "Stable"
        assert calculate_trend_indicator({"current_period_value": 150, "previous_period_value": 100}) == "Strong Up"

    def test_trend_indicator_zero_previous_treated_as_one(self):
        assert calculate_trend_indicator({"current_period_value": 3, "previous_period_value": 0}) == "Strong Up"

    @given(st.floats(min_value=-10, max_value=10, allow_nan=False), st.floats(min_value=-10, max_value=10, allow_nan=False))
    def test_trend_is_monotonic(self, low, high):
        """Property: a higher growth rate never gets a lower trend class"""
        order = ["Strong Down", "Down", "Stable", "Up", "Strong Up"]
        low, high = sorted((low, high))
        assert order.index(classify_trend(low)) <= order.index(classify_trend(high))


class TestDWSTransform:
    """Tests for DWSLayer.transform"""

    def test_ratio_metrics(self, frozen_clock):
        record = {"id": 1, "total_orders": 10, "total_revenue": 1000, "total_visitors": 200, "total_cost": 600}

        (result,) = DWSLayer(clock=frozen_clock).transform([record], batch_id="BATCH_X")

        assert result["conversion_rate"] == 0.05
        assert result["avg_order_value"] == 100.0
        assert result["profit_margin"] == 0.4
        assert result["etl_time"] == frozen_clock.now()
        assert result["etl_batch_id"] == "BATCH_X"

    def test_zero_denominators_do_not_fail(self, frozen_clock):
        """Test zero divisors are treated as 1"""
        (result,) = DWSLayer(clock=frozen_clock).transform([{"total_orders": 0, "total_revenue": 0, "total_visitors": 0}])

        assert result["conversion_rate"] == 0.0
        assert result["avg_order_value"] == 0.0
        assert result["churn_probability"] == 0.1

    def test_rfm_only_for_customer_records(self, frozen_clock):
        layer = DWSLayer(clock=frozen_clock)

        (plain,) = layer.transform([{"total_orders": 1}])
        (customer,) = layer.transform([{"days_since_last_order": 100, "total_orders": 1, "order_frequency_days": 30}])

        assert "rfm_score" not in plain
        assert customer["rfm_score"] == "211"
        assert customer["churn_probability"] == 0.8


class TestSalesAggregation:
    """Tests for DWSLayer.aggregate_sales"""

    def test_daily(self, facts, products):
        rows = DWSLayer().aggregate_sales(facts, "daily", products)

        assert [row["date_key"] for row in rows] == [20240110, 20240112, 20240114]
        first, second, third = rows
        assert first["id"] == 202401101
        assert first["total_orders"] == 1
        assert first["total_revenue_cny"] == 300.0
        assert first["total_quantity"] == 3
        assert first["unique_products"] == 2
        assert first["category_performance"] == {"Electronics": 200.0, "Home": 100.0}
        assert second["total_revenue"] == 50.0
        assert second["total_revenue_cny"] == 360.0
        assert second["new_customers"] == 1
        assert second["previous_period_value"] == 300.0
        assert third["new_customers"] == 0
        assert third["previous_period_customers"] == 1
        assert third["region_performance"] == {"EAST": 300.0}

    def test_weekly_and_monthly_ids_differ(self, facts):
        (weekly,) = DWSLayer().aggregate_sales(facts, "weekly")
        (monthly,) = DWSLayer().aggregate_sales(facts, "monthly")

        assert weekly["date_key"] == 20240108
        assert weekly["id"] == 202401082
        assert weekly["total_orders"] == 3
        assert weekly["total_customers"] == 2
        assert weekly["total_revenue_cny"] == 960.0
        assert monthly["id"] == 202401013
        assert monthly["quarter"] == 1

    def test_unknown_period_falls_back_to_daily(self, facts):
        rows = DWSLayer().aggregate_sales(facts, "hourly")
        assert {row["period_type"] for row in rows} == {"daily"}

    def test_no_facts(self):
        assert DWSLayer().aggregate_sales([]) == []

    def test_transformed_rows_carry_trend(self, frozen_clock, facts):
        layer = DWSLayer(clock=frozen_clock)
        rows = layer.transform(layer.aggregate_sales(facts, "daily"))

        assert rows[1]["trend_indicator"] == "Up"
        assert rows[2]["trend_indicator"] == "Down"


class TestSummaryBuilders:
    """Tests for the customer, product, inventory and financial builders"""

    def test_customer_rfm(self, facts):
        rows = {row["user_id"]: row for row in DWSLayer().build_customer_rfm(facts, AS_OF)}

        alice = rows[1]
        assert alice["total_orders"] == 2
        assert alice["total_revenue"] == 600.0
        assert alice["first_order_date"] == "2024-01-10"
        assert alice["last_order_date"] == "2024-01-14"
        assert alice["days_since_last_order"] == 1
        assert alice["order_frequency_days"] == 4.0
        assert alice["lifetime_value"] == 900.0
        assert alice["rfm_score"] == "521"
        assert alice["customer_segment"] == "New Customers"
        assert rows[2]["order_frequency_days"] == 30

    def test_product_performance(self, facts, products):
        inventory = [{"product_key": 100, "quantity_available": 4, "total_value": 300}]

        rows = {row["product_id"]: row for row in DWSLayer().build_product_performance(facts, products, inventory, AS_OF)}

        phone = rows[100]
        assert phone["total_sales"] == 3
        assert phone["total_revenue_cny"] == 560.0
        assert phone["total_cost"] == 180.0
        assert phone["current_period_value"] == 560.0
        assert phone["previous_period_value"] == 0.0
        assert phone["days_of_supply"] == 40
        assert phone["stockout_count"] == 0
        assert rows[101]["days_of_supply"] == 0

    def test_days_of_supply_unknown_without_sales(self, products):
        inventory = [{"product_key": 100, "quantity_available": 4}]
        rows = DWSLayer().build_product_performance([], products, inventory, AS_OF)
        assert rows[0]["days_of_supply"] is None

    def test_product_without_sales(self, products):
        rows = DWSLayer().build_product_performance([], products, as_of=AS_OF)
        assert [row["total_sales"] for row in rows] == [0, 0]

    def test_inventory_analysis(self):
        inventory = [
            {"date_key": 20240115, "warehouse_code": "WH001", "product_key": 1, "quantity_available": 0,
             "reorder_point": 10, "reorder_quantity": 20, "total_value": 0, "currency": "CNY"},
            {"date_key": 20240115, "warehouse_code": "WH001", "product_key": 2, "quantity_available": 5,
             "reorder_point": 10, "reorder_quantity": 20, "total_value": 100, "currency": "USD"},
            {"date_key": 20240115, "warehouse_code": "WH001", "product_key": 3, "quantity_available": 500,
             "reorder_point": 10, "reorder_quantity": 20, "total_value": 1000, "currency": "CNY"},
        ]

        (row,) = DWSLayer().build_inventory_analysis(inventory)

        assert row["id"] == 20240115 * 1000 + 1
        assert row["total_products"] == 3
        assert (row["out_of_stock_count"], row["low_stock_count"], row["overstock_count"]) == (1, 1, 1)
        assert row["total_value"] == 1100.0
        assert row["total_value_cny"] == 1720.0
        assert row["service_level"] == pytest.approx(0.6667)
        assert [s["product_key"] for s in row["reorder_suggestions"]] == [1, 2]

    def test_financial_summary(self, facts, products):
        (row,) = DWSLayer().build_financial_summary(facts, products, "monthly")

        assert row["id"] == 202401013
        assert row["period_key"] == "2024-01"
        assert row["period_start"] == "2024-01-01"
        assert row["period_end"] == "2024-01-31"
        assert row["total_revenue_cny"] == 960.0
        assert row["cost_of_goods_sold"] == 340.0
        assert row["gross_profit"] == 620.0
        assert row["gross_margin"] == pytest.approx(0.6458)
        assert row["net_margin"] == row["gross_margin"]

    def test_financial_summary_ids_follow_period(self, facts, products):
        daily = DWSLayer().build_financial_summary(facts, products, "daily")
        assert [row["id"] for row in daily] == [202401101, 202401121, 202401141]
