"""
DWS (Data Warehouse Summary) layer.

Aggregates cleaned facts into period summaries and per-entity metrics:
sales per day/week/month, customer RFM scores, product performance,
inventory analysis and financial summaries.
"""

from collections.abc import Iterable, Mapping
from datetime import date, timedelta
from typing import Any

from analytics_etl.core.layers.base import (
    DataWarehouseLayer,
    Record,
    TransformContext,
    read_number,
    safe_divide,
)
from analytics_etl.core.layers.dwd import (
    convert_to_cny,
    date_from_key,
    date_key,
    period_end,
    period_label,
    period_start,
)
from analytics_etl.core.models import RFMScore
from analytics_etl.core.validators import coerce_number

AGGREGATION_PERIODS = ("daily", "weekly", "monthly")
# Keeps row ids of different periods starting on the same day apart
PERIOD_CODES = {"daily": 1, "weekly": 2, "monthly": 3}
DEFAULT_ORDER_FREQUENCY_DAYS = 30
LIFETIME_VALUE_MULTIPLIER = 1.5
OVERSTOCK_FACTOR = 3


def calculate_churn_probability(days_since_last_order: float, order_frequency_days: float = DEFAULT_ORDER_FREQUENCY_DAYS) -> float:
    """
    Rule-based churn proxy, not a calibrated probability.

    Compares the days since the last order with multiples of the usual
    ordering interval.
    """
    frequency = order_frequency_days or DEFAULT_ORDER_FREQUENCY_DAYS
    if days_since_last_order > frequency * 3:
        return 0.8
    if days_since_last_order > frequency * 2:
        return 0.6
    if days_since_last_order > frequency * 1.5:
        return 0.4
    return 0.1


def classify_trend(growth_rate: float) -> str:
    """
    Growth-rate ladder; upper bounds are exclusive, so 0.2 is "Up".

    The stable band is closed at -0.05.
    """
    if growth_rate > 0.2:
        return "Strong Up"
    if growth_rate > 0.05:
        return "Up"
    if growth_rate >= -0.05:
        return "Stable"
    if growth_rate > -0.2:
        return "Down"
    return "Strong Down"


def calculate_trend_indicator(record: Mapping[str, Any]) -> str:
    current = read_number(record, "current_period_value", 0.0)
    previous = read_number(record, "previous_period_value", 1.0)
    return classify_trend(safe_divide(current - previous, previous))


def _recency_score(days: float) -> int:
    if days <= 30:
        return 5
    if days <= 60:
        return 4
    if days <= 90:
        return 3
    if days <= 180:
        return 2
    return 1


def _frequency_score(orders: float) -> int:
    if orders >= 20:
        return 5
    if orders >= 10:
        return 4
    if orders >= 5:
        return 3
    if orders >= 2:
        return 2
    return 1


def _monetary_score(revenue: float) -> int:
    if revenue >= 100000:
        return 5
    if revenue >= 50000:
        return 4
    if revenue >= 20000:
        return 3
    if revenue >= 5000:
        return 2
    return 1


def segment_customer(recency: int, frequency: int, monetary: int) -> str:
    """Priority-ordered RFM segment."""
    if recency >= 4 and frequency >= 4 and monetary >= 4:
        return "Champions"
    if recency >= 3 and frequency >= 3 and monetary >= 3:
        return "Loyal Customers"
    if recency >= 4 and frequency <= 2:
        return "New Customers"
    if recency <= 2 and frequency >= 3:
        return "At Risk"
    if recency <= 2 and frequency <= 2:
        return "Lost"
    return "Potential"


def calculate_rfm(customer: Mapping[str, Any]) -> RFMScore:
    """
    Score a customer on recency, frequency and monetary value.

    Args:
        customer: Record with days_since_last_order (default 365),
            total_orders (default 0) and total_revenue (default 0)

    Returns:
        RFMScore with the three 1-5 scores, their concatenation and the segment

    Raises:
        RecordTransformError: If one of the inputs is not numeric
    """
    recency = _recency_score(read_number(customer, "days_since_last_order", 365))
    frequency = _frequency_score(read_number(customer, "total_orders", 0))
    monetary = _monetary_score(read_number(customer, "total_revenue", 0))

    return RFMScore(
        recency_score=recency,
        frequency_score=frequency,
        monetary_score=monetary,
        rfm_score=f"{recency}{frequency}{monetary}",
        customer_segment=segment_customer(recency, frequency, monetary),
    )


def _amount(value: Any) -> float:
    number = coerce_number(value)
    return 0.0 if number is None else number


def _fact_day(fact: Mapping[str, Any]) -> date:
    return date_from_key(fact["order_date_key"])


class DWSLayer(DataWarehouseLayer):
    """
    Aggregated-summary layer.

    transform() stamps etl_time / etl_batch_id and computes the ratio
    metrics, churn probability and trend indicator; RFM-shaped records
    (those carrying days_since_last_order) are scored as well.
    """

    layer_name = "DWS"
    uses_batch_id = True

    def define_schema(self) -> dict[str, dict[str, str]]:
        return {
            "dws_sales_daily": {
                "id": "BIGINT PRIMARY KEY",
                "date_key": "INT",
                "period_type": "VARCHAR(20)",
                "year": "INT",
                "month": "INT",
                "quarter": "INT",
                "week": "INT",
                "total_orders": "INT",
                "total_customers": "INT",
                "new_customers": "INT",
                "total_revenue": "DECIMAL(15,2)",
                "total_revenue_cny": "DECIMAL(15,2)",
                "avg_order_value": "DECIMAL(10,2)",
                "total_quantity": "INT",
                "unique_products": "INT",
                "conversion_rate": "DECIMAL(10,4)",
                "customer_retention_rate": "DECIMAL(5,4)",
                "region_performance": "JSON",
                "category_performance": "JSON",
                "etl_time": "TIMESTAMP",
                "etl_batch_id": "VARCHAR(50)",
            },
            "dws_customer_rfm": {
                "id": "BIGINT PRIMARY KEY",
                "user_key": "BIGINT",
                "user_id": "BIGINT",
                "recency_score": "INT",
                "frequency_score": "INT",
                "monetary_score": "INT",
                "rfm_score": "VARCHAR(3)",
                "customer_segment": "VARCHAR(20)",
                "last_order_date": "DATE",
                "first_order_date": "DATE",
                "total_orders": "INT",
                "total_revenue": "DECIMAL(12,2)",
                "avg_order_value": "DECIMAL(10,2)",
                "days_since_last_order": "INT",
                "order_frequency_days": "DECIMAL(8,2)",
                "lifetime_value": "DECIMAL(12,2)",
                "churn_probability": "DECIMAL(5,4)",
                "prediction_date": "DATE",
                "etl_time": "TIMESTAMP",
            },
            "dws_product_performance": {
                "id": "BIGINT PRIMARY KEY",
                "product_key": "BIGINT",
                "product_id": "BIGINT",
                "sku": "VARCHAR(100)",
                "product_name": "VARCHAR(255)",
                "category_l1": "VARCHAR(100)",
                "category_l2": "VARCHAR(100)",
                "brand": "VARCHAR(100)",
                "total_sales": "INT",
                "total_revenue": "DECIMAL(12,2)",
                "total_revenue_cny": "DECIMAL(12,2)",
                "avg_price": "DECIMAL(10,2)",
                "profit_margin": "DECIMAL(10,4)",
                "inventory_turnover": "DECIMAL(12,2)",
                "days_of_supply": "INT",
                "stockout_count": "INT",
                "return_rate": "DECIMAL(5,4)",
                "customer_rating": "DECIMAL(3,2)",
                "view_count": "INT",
                "conversion_rate": "DECIMAL(10,4)",
                "trend_indicator": "VARCHAR(20)",
                "performance_period": "VARCHAR(20)",
                "etl_time": "TIMESTAMP",
            },
            "dws_inventory_analysis": {
                "id": "BIGINT PRIMARY KEY",
                "date_key": "INT",
                "warehouse_code": "VARCHAR(20)",
                "total_products": "INT",
                "total_value": "DECIMAL(15,2)",
                "total_value_cny": "DECIMAL(15,2)",
                "available_quantity": "INT",
                "reserved_quantity": "INT",
                "out_of_stock_count": "INT",
                "low_stock_count": "INT",
                "overstock_count": "INT",
                "avg_turnover_days": "DECIMAL(8,2)",
                "obsolete_value": "DECIMAL(12,2)",
                "carrying_cost": "DECIMAL(12,2)",
                "service_level": "DECIMAL(5,4)",
                "forecast_accuracy": "DECIMAL(5,4)",
                "reorder_suggestions": "JSON",
                "etl_time": "TIMESTAMP",
            },
            "dws_financial_summary": {
                "id": "BIGINT PRIMARY KEY",
                "period_type": "VARCHAR(20)",
                "period_key": "VARCHAR(20)",
                "period_start": "DATE",
                "period_end": "DATE",
                "total_revenue": "DECIMAL(15,2)",
                "total_revenue_cny": "DECIMAL(15,2)",
                "cost_of_goods_sold": "DECIMAL(15,2)",
                "gross_profit": "DECIMAL(15,2)",
                "gross_margin": "DECIMAL(10,4)",
                "operating_expenses": "DECIMAL(15,2)",
                "operating_profit": "DECIMAL(15,2)",
                "operating_margin": "DECIMAL(10,4)",
                "net_profit": "DECIMAL(15,2)",
                "net_margin": "DECIMAL(10,4)",
                "cash_flow": "DECIMAL(15,2)",
                "accounts_receivable": "DECIMAL(15,2)",
                "accounts_payable": "DECIMAL(15,2)",
                "inventory_value": "DECIMAL(15,2)",
                "working_capital": "DECIMAL(15,2)",
                "etl_time": "TIMESTAMP",
            },
        }

    def define_indexes(self) -> dict[str, dict[str, str]]:
        return {
            "dws_sales_daily": {
                "idx_date_key": "date_key",
                "idx_year_month": "year,month",
                "idx_quarter": "quarter",
                "idx_week": "week",
                "idx_etl_time": "etl_time",
            },
            "dws_customer_rfm": {
                "idx_user_key": "user_key",
                "idx_user_id": "user_id",
                "idx_rfm_score": "rfm_score",
                "idx_customer_segment": "customer_segment",
                "idx_churn_probability": "churn_probability",
            },
            "dws_product_performance": {
                "idx_product_key": "product_key",
                "idx_product_id": "product_id",
                "idx_sku": "sku",
                "idx_category_l1": "category_l1",
                "idx_brand": "brand",
                "idx_trend_indicator": "trend_indicator",
            },
            "dws_inventory_analysis": {
                "idx_date_key": "date_key",
                "idx_warehouse_code": "warehouse_code",
                "idx_etl_time": "etl_time",
            },
            "dws_financial_summary": {
                "idx_period_type": "period_type",
                "idx_period_key": "period_key",
                "idx_period_start": "period_start",
                "idx_period_end": "period_end",
            },
        }

    def define_validation_rules(self) -> dict[str, str]:
        return {
            "id": "required|numeric|positive",
            "date_key": "required|numeric",
            "total_orders": "required|numeric|positive",
            "total_revenue": "required|numeric",
            "user_key": "required|numeric|positive",
            "recency_score": "required|numeric|min:1|max:5",
            "frequency_score": "required|numeric|min:1|max:5",
            "monetary_score": "required|numeric|min:1|max:5",
            "product_key": "required|numeric|positive",
            "total_sales": "required|numeric|positive",
            "period_type": "required|string",
            "period_key": "required|string",
        }

    def transform_record(self, record: Mapping[str, Any], context: TransformContext) -> Record:
        total_orders = read_number(record, "total_orders", 0.0)
        total_revenue = read_number(record, "total_revenue", 0.0)

        transformed = {
            **record,
            "etl_time": context.now,
            "etl_batch_id": context.batch_id,
            "conversion_rate": round(safe_divide(total_orders, read_number(record, "total_visitors", 1.0)), 4),
            "customer_retention_rate": round(
                safe_divide(
                    read_number(record, "returning_customers", 0.0),
                    read_number(record, "previous_period_customers", 1.0),
                ),
                4,
            ),
            "avg_order_value": round(safe_divide(total_revenue, total_orders), 2),
            "profit_margin": round(
                safe_divide(total_revenue - read_number(record, "total_cost", 0.0), total_revenue), 4
            ),
            "inventory_turnover": round(
                safe_divide(
                    read_number(record, "cost_of_goods_sold", 1.0),
                    read_number(record, "avg_inventory_value", 1.0),
                ),
                2,
            ),
            "churn_probability": calculate_churn_probability(
                read_number(record, "days_since_last_order", 0.0),
                read_number(record, "order_frequency_days", DEFAULT_ORDER_FREQUENCY_DAYS),
            ),
            "trend_indicator": calculate_trend_indicator(record),
        }

        if "days_since_last_order" in record:
            transformed.update(calculate_rfm(record).model_dump())
        return transformed

    def calculate_rfm(self, customer: Mapping[str, Any]) -> RFMScore:
        return calculate_rfm(customer)

    # ------------------------------------------------------------------
    # Builders (cleaned facts -> summaries)
    # ------------------------------------------------------------------

    def aggregate_sales(
        self,
        facts: Iterable[Mapping[str, Any]],
        period: str = "daily",
        products: Iterable[Mapping[str, Any]] | None = None,
    ) -> list[Record]:
        """
        Summarise order facts per daily, weekly or monthly period.

        Unknown periods fall back to daily. Consecutive periods feed the
        retention inputs (returning / previous-period customers) and the
        trend inputs (current / previous period revenue).

        Args:
            facts: Transformed order facts
            period: "daily", "weekly" or "monthly"
            products: Product dimension rows, used for category_performance

        Returns:
            One row per period that has orders, oldest first
        """
        if period not in AGGREGATION_PERIODS:
            period = "daily"

        categories = {row.get("product_key"): row.get("category_l1") for row in products or ()}
        buckets: dict[date, list[Mapping[str, Any]]] = {}
        for fact in facts:
            buckets.setdefault(period_start(_fact_day(fact), period), []).append(fact)

        rows = []
        seen_customers: set = set()
        previous_customers: set = set()
        previous_revenue: float | None = None

        for start in sorted(buckets):
            bucket = buckets[start]
            customers = {fact.get("user_key") for fact in bucket}
            revenue_cny = sum(_amount(fact.get("order_amount_cny")) for fact in bucket)

            regions: dict[str, float] = {}
            category_revenue: dict[str, float] = {}
            for fact in bucket:
                amount = _amount(fact.get("order_amount_cny"))
                region = fact.get("region_code") or "UNKNOWN"
                regions[region] = round(regions.get(region, 0.0) + amount, 2)
                if categories:
                    category = categories.get(fact.get("product_key")) or "Other"
                    category_revenue[category] = round(category_revenue.get(category, 0.0) + amount, 2)

            key = date_key(start)
            rows.append({
                "id": key * 10 + PERIOD_CODES[period],
                "date_key": key,
                "period_type": period,
                "year": start.year,
                "month": start.month,
                "quarter": (start.month - 1) // 3 + 1,
                "week": start.isocalendar()[1],
                "total_orders": len({fact.get("order_id") for fact in bucket}),
                "total_customers": len(customers),
                "new_customers": len(customers - seen_customers),
                "total_revenue": round(sum(_amount(fact.get("order_amount")) for fact in bucket), 2),
                "total_revenue_cny": round(revenue_cny, 2),
                "total_quantity": int(sum(_amount(fact.get("quantity")) for fact in bucket)),
                "unique_products": len({fact.get("product_key") for fact in bucket}),
                "returning_customers": len(customers & previous_customers),
                "previous_period_customers": len(previous_customers),
                "current_period_value": round(revenue_cny, 2),
                "previous_period_value": previous_revenue,
                "region_performance": regions,
                "category_performance": category_revenue,
            })

            seen_customers |= customers
            previous_customers = customers
            previous_revenue = round(revenue_cny, 2)
        return rows

    def build_customer_rfm(self, facts: Iterable[Mapping[str, Any]], as_of: date) -> list[Record]:
        """
        Per-customer purchase history with RFM scores as of a day.

        order_frequency_days is the average gap between first and last
        order; customers with a single order use the default interval.
        """
        by_user: dict[Any, list[Mapping[str, Any]]] = {}
        for fact in facts:
            by_user.setdefault(fact.get("user_key"), []).append(fact)

        rows = []
        for user_key, user_facts in by_user.items():
            days = sorted(_fact_day(fact) for fact in user_facts)
            first_order, last_order = days[0], days[-1]
            total_orders = len({fact.get("order_id") for fact in user_facts})
            total_revenue = round(sum(_amount(fact.get("order_amount_cny")) for fact in user_facts), 2)

            if total_orders > 1:
                frequency = round((last_order - first_order).days / (total_orders - 1), 2)
            else:
                frequency = DEFAULT_ORDER_FREQUENCY_DAYS

            row = {
                "id": user_key,
                "user_key": user_key,
                "user_id": user_facts[0].get("user_id"),
                "last_order_date": last_order.isoformat(),
                "first_order_date": first_order.isoformat(),
                "total_orders": total_orders,
                "total_revenue": total_revenue,
                "days_since_last_order": (as_of - last_order).days,
                "order_frequency_days": frequency,
                "lifetime_value": round(total_revenue * LIFETIME_VALUE_MULTIPLIER, 2),
                "prediction_date": as_of.isoformat(),
            }
            row.update(calculate_rfm(row).model_dump())
            rows.append(row)
        return rows

    def build_product_performance(
        self,
        facts: Iterable[Mapping[str, Any]],
        products: Iterable[Mapping[str, Any]],
        inventory: Iterable[Mapping[str, Any]] = (),
        as_of: date | None = None,
        period_days: int = 30,
    ) -> list[Record]:
        """
        Sales, margin and stock metrics per product.

        Revenue in the last period_days before as_of is compared with the
        period before that for the trend inputs.
        """
        as_of = as_of or date.today()
        window_start = as_of - timedelta(days=period_days)
        previous_start = window_start - timedelta(days=period_days)

        stock = {row.get("product_key"): row for row in inventory}
        by_product: dict[Any, list[Mapping[str, Any]]] = {}
        for fact in facts:
            by_product.setdefault(fact.get("product_key"), []).append(fact)

        rows = []
        for product in products:
            product_key = product.get("product_key")
            product_facts = by_product.get(product_key, [])
            quantity = sum(_amount(fact.get("quantity")) for fact in product_facts)
            revenue_cny = sum(_amount(fact.get("order_amount_cny")) for fact in product_facts)
            cost_price = convert_to_cny(_amount(product.get("cost_price")), product.get("currency"))
            current = sum(
                _amount(fact.get("order_amount_cny"))
                for fact in product_facts
                if window_start < _fact_day(fact) <= as_of
            )
            previous = sum(
                _amount(fact.get("order_amount_cny"))
                for fact in product_facts
                if previous_start < _fact_day(fact) <= window_start
            )

            snapshot = stock.get(product_key, {})
            available = _amount(snapshot.get("quantity_available"))
            daily_sales = quantity / period_days if period_days else 0.0

            rows.append({
                "id": product_key,
                "product_key": product_key,
                "product_id": product.get("product_id"),
                "sku": product.get("sku"),
                "product_name": product.get("product_name"),
                "category_l1": product.get("category_l1"),
                "category_l2": product.get("category_l2"),
                "brand": product.get("brand"),
                "total_sales": int(quantity),
                "total_revenue": round(revenue_cny, 2),
                "total_revenue_cny": round(revenue_cny, 2),
                "avg_price": round(safe_divide(revenue_cny, quantity), 2),
                "total_cost": round(quantity * cost_price, 2),
                "cost_of_goods_sold": round(quantity * cost_price, 2),
                "avg_inventory_value": round(_amount(snapshot.get("total_value")), 2),
                "current_stock": available,
                "days_of_supply": int(available / daily_sales) if daily_sales > 0 else None,
                "stockout_count": 1 if snapshot and available <= 0 else 0,
                "customer_rating": product.get("customer_rating"),
                "current_period_value": round(current, 2),
                "previous_period_value": round(previous, 2),
                "performance_period": f"{period_days}d",
            })
        return rows

    def build_inventory_analysis(self, inventory_facts: Iterable[Mapping[str, Any]]) -> list[Record]:
        """Stock health per warehouse and snapshot day, with reorder suggestions."""
        groups: dict[tuple, list[Mapping[str, Any]]] = {}
        for fact in inventory_facts:
            groups.setdefault((fact.get("date_key"), fact.get("warehouse_code")), []).append(fact)

        rows = []
        for index, (group_key, facts) in enumerate(sorted(groups.items(), key=lambda item: str(item[0])), start=1):
            snapshot_key, warehouse = group_key
            out_of_stock = low_stock = overstock = 0
            suggestions = []
            total_value_cny = 0.0

            for fact in facts:
                available = _amount(fact.get("quantity_available"))
                reorder_point = _amount(fact.get("reorder_point"))
                reorder_quantity = _amount(fact.get("reorder_quantity"))
                total_value_cny += convert_to_cny(_amount(fact.get("total_value")), fact.get("currency"))

                if available <= 0:
                    out_of_stock += 1
                elif available <= reorder_point:
                    low_stock += 1
                elif reorder_quantity and available > reorder_point + OVERSTOCK_FACTOR * reorder_quantity:
                    overstock += 1

                if available <= reorder_point:
                    suggestions.append({
                        "product_key": fact.get("product_key"),
                        "available": int(available),
                        "suggested_quantity": int(reorder_quantity),
                    })

            rows.append({
                "id": (snapshot_key or 0) * 1000 + index,
                "date_key": snapshot_key,
                "warehouse_code": warehouse,
                "total_products": len(facts),
                "total_value": round(sum(_amount(fact.get("total_value")) for fact in facts), 2),
                "total_value_cny": round(total_value_cny, 2),
                "available_quantity": int(sum(_amount(fact.get("quantity_available")) for fact in facts)),
                "reserved_quantity": int(sum(_amount(fact.get("quantity_reserved")) for fact in facts)),
                "out_of_stock_count": out_of_stock,
                "low_stock_count": low_stock,
                "overstock_count": overstock,
                "service_level": round(1 - safe_divide(out_of_stock, len(facts)), 4),
                "reorder_suggestions": suggestions,
            })
        return rows

    def build_financial_summary(
        self,
        facts: Iterable[Mapping[str, Any]],
        products: Iterable[Mapping[str, Any]],
        period: str = "monthly",
        inventory: Iterable[Mapping[str, Any]] = (),
    ) -> list[Record]:
        """
        Revenue, cost and margin per period.

        Cost of goods sold uses the product dimension's cost price. No
        operating expense source exists, so operating and net figures equal
        the gross figures.
        """
        if period not in AGGREGATION_PERIODS:
            period = "daily"

        costs = {
            row.get("product_key"): convert_to_cny(_amount(row.get("cost_price")), row.get("currency"))
            for row in products
        }
        inventory_value = round(
            sum(convert_to_cny(_amount(row.get("total_value")), row.get("currency")) for row in inventory), 2
        )

        buckets: dict[date, list[Mapping[str, Any]]] = {}
        for fact in facts:
            buckets.setdefault(period_start(_fact_day(fact), period), []).append(fact)

        rows = []
        for start in sorted(buckets):
            bucket = buckets[start]
            revenue = round(sum(_amount(fact.get("order_amount_cny")) for fact in bucket), 2)
            cogs = round(
                sum(_amount(fact.get("quantity")) * costs.get(fact.get("product_key"), 0.0) for fact in bucket), 2
            )
            gross_profit = round(revenue - cogs, 2)
            margin = round(safe_divide(gross_profit, revenue), 4)

            rows.append({
                "id": date_key(start) * 10 + PERIOD_CODES[period],
                "period_type": period,
                "period_key": period_label(start, period),
                "period_start": start.isoformat(),
                "period_end": period_end(start, period).isoformat(),
                "total_revenue": revenue,
                "total_revenue_cny": revenue,
                "total_cost": cogs,
                "cost_of_goods_sold": cogs,
                "gross_profit": gross_profit,
                "gross_margin": margin,
                "operating_expenses": 0.0,
                "operating_profit": gross_profit,
                "operating_margin": margin,
                "net_profit": gross_profit,
                "net_margin": margin,
                "inventory_value": inventory_value,
            })
        return rows
