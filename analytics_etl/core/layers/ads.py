"""
ADS (Application Data Service) layer.

Turns summary rows into business-facing views: executive dashboard, sales
forecast, customer insights, product intelligence, inventory optimization
and market analysis, plus grading, risk classes, alerts and recommendations.

The grade and risk formulas are fixed heuristics, not fitted models.
"""

import math
import statistics
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
from analytics_etl.core.layers.dwd import date_from_key, date_key
from analytics_etl.core.layers.dws import classify_trend
from analytics_etl.core.models import ActionPlan, Alert, Recommendation
from analytics_etl.core.validators import coerce_number, parse_date

GRADE_BANDS = (
    (90, "A+"),
    (85, "A"),
    (80, "A-"),
    (75, "B+"),
    (70, "B"),
    (65, "B-"),
    (60, "C+"),
    (55, "C"),
    (50, "C-"),
    (45, "D+"),
    (40, "D"),
)
GRADE_ORDER = tuple(grade for _, grade in GRADE_BANDS) + ("F",)

GROWTH_METRICS = ("kpi_revenue", "kpi_orders", "kpi_customers")
GRADE_INPUTS = ("total_revenue", "profit_margin", "customer_satisfaction", "inventory_health_score")

LONG_TERM_ACTIONS = (
    "Plan product line expansion",
    "Design a customer loyalty program",
    "Launch a supply chain optimisation project",
)

FORECAST_MODEL_VERSION = "moving-average-v1"
HOLDING_COST_RATE = 0.25
TOP_N = 5


def normalize(value: float, minimum: float, maximum: float) -> float:
    """Scale value to 0-100 within [minimum, maximum], clamped."""
    if maximum <= minimum:
        return 0.0
    return max(0.0, min(100.0, (value - minimum) / (maximum - minimum) * 100))


def calculate_growth_rate(record: Mapping[str, Any], metric: str) -> float:
    """(metric - metric_previous) / metric_previous; previous defaults to 1."""
    current = read_number(record, metric, 0.0)
    previous = read_number(record, f"{metric}_previous", 1.0)
    return round(safe_divide(current - previous, previous), 4)


def performance_score(record: Mapping[str, Any]) -> float:
    """Weighted 0-100 composite of sales, margin, satisfaction and inventory health."""
    return (
        normalize(read_number(record, "total_revenue", 0.0), 0, 100000) * 0.4
        + normalize(read_number(record, "profit_margin", 0.0), 0, 0.5) * 0.3
        + normalize(read_number(record, "customer_satisfaction", 0.0), 0, 5) * 0.2
        + normalize(read_number(record, "inventory_health_score", 0.0), 0, 100) * 0.1
    )


def assign_performance_grade(record: Mapping[str, Any]) -> str:
    score = performance_score(record)
    for threshold, grade in GRADE_BANDS:
        if score >= threshold:
            return grade
    return "F"


def grade_rank(grade: str) -> int:
    """Higher is better; F ranks 0."""
    return len(GRADE_ORDER) - 1 - GRADE_ORDER.index(grade)


def assess_churn_risk(record: Mapping[str, Any]) -> str:
    probability = read_number(record, "churn_probability", 0.0)
    if probability >= 0.8:
        return "Critical"
    if probability >= 0.6:
        return "High"
    if probability >= 0.4:
        return "Medium"
    if probability >= 0.2:
        return "Low"
    return "Very Low"


def assess_stockout_risk(record: Mapping[str, Any]) -> str:
    """
    Stockout risk from stock level, reorder point and daily demand.

    Being at or below the reorder point is Critical regardless of the days
    of supply.
    """
    current_stock = read_number(record, "current_stock", 0.0)
    reorder_point = read_number(record, "reorder_point", 0.0)
    daily_demand = read_number(record, "daily_demand", 1.0)

    if current_stock <= reorder_point:
        return "Critical"

    days_of_supply = current_stock / daily_demand if daily_demand > 0 else 0.0
    if days_of_supply <= 7:
        return "High"
    if days_of_supply <= 14:
        return "Medium"
    if days_of_supply <= 30:
        return "Low"
    return "Very Low"


def assess_excess_stock_risk(record: Mapping[str, Any]) -> str:
    current_stock = read_number(record, "current_stock", 0.0)
    optimal_stock = read_number(record, "optimal_stock", 1.0)
    ratio = safe_divide(current_stock, optimal_stock)

    if ratio >= 3:
        return "Critical"
    if ratio >= 2:
        return "High"
    if ratio >= 1.5:
        return "Medium"
    if ratio >= 1.2:
        return "Low"
    return "Very Low"


def calculate_sales_velocity(record: Mapping[str, Any]) -> str:
    units_per_day = read_number(record, "sales_per_day", 0.0)
    if units_per_day >= 100:
        return "Very Fast"
    if units_per_day >= 50:
        return "Fast"
    if units_per_day >= 20:
        return "Medium"
    if units_per_day >= 5:
        return "Slow"
    return "Very Slow"


def _present(record: Mapping[str, Any], *names: str) -> bool:
    return any(record.get(name) is not None for name in names)


def _value(record: Mapping[str, Any], name: str) -> float | None:
    value = record.get(name)
    return None if value is None else coerce_number(value)


def generate_alerts(record: Mapping[str, Any]) -> list[Alert]:
    """Alerts triggered by the computed growth, churn and stockout fields."""
    alerts = []

    revenue_growth = _value(record, "kpi_revenue_growth")
    if revenue_growth is not None and revenue_growth < -0.1:
        alerts.append(Alert(
            type="warning",
            message="Revenue declined by more than 10%",
            severity="high",
            metric="revenue_growth",
            value=revenue_growth,
        ))

    churn = _value(record, "churn_probability")
    if churn is not None and churn > 0.7:
        alerts.append(Alert(
            type="critical",
            message="High customer churn risk",
            severity="critical",
            metric="churn_probability",
            value=churn,
        ))

    if record.get("stockout_risk") == "Critical":
        alerts.append(Alert(
            type="urgent",
            message="Critical stockout risk",
            severity="urgent",
            metric="stockout_risk",
            value="Critical",
        ))
    return alerts


def generate_recommendations(record: Mapping[str, Any]) -> list[Recommendation]:
    recommendations = []

    revenue_growth = _value(record, "kpi_revenue_growth")
    if revenue_growth is not None and revenue_growth < 0:
        recommendations.append(Recommendation(
            category="growth",
            priority="high",
            action="Launch a promotional campaign",
            description="Consider time-limited promotions or discounts to stimulate sales growth",
            expected_impact="Increase revenue by 5-15%",
        ))

    churn = _value(record, "churn_probability")
    if churn is not None and churn > 0.5:
        recommendations.append(Recommendation(
            category="retention",
            priority="high",
            action="Start a customer care program",
            description="Reach out to at-risk customers with personalised service and offers",
            expected_impact="Reduce churn by 20-30%",
        ))

    if record.get("excess_stock_risk") in ("High", "Critical"):
        recommendations.append(Recommendation(
            category="inventory",
            priority="medium",
            action="Clear excess stock",
            description="Reduce surplus inventory through promotions or bundles",
            expected_impact="Cut inventory carrying costs by 15-25%",
        ))
    return recommendations


def generate_action_recommendations(record: Mapping[str, Any]) -> ActionPlan:
    """Immediate / short-term / long-term actions from the same risk fields."""
    plan = ActionPlan(long_term_actions=list(LONG_TERM_ACTIONS))

    if record.get("stockout_risk") == "Critical":
        plan.immediate_actions.append("Replenish critical stock immediately")

    churn = _value(record, "churn_probability")
    if churn is not None and churn > 0.8:
        plan.immediate_actions.append("Contact high-risk customers")

    revenue_growth = _value(record, "kpi_revenue_growth")
    if revenue_growth is not None and revenue_growth < -0.05:
        plan.short_term_actions.append("Plan a marketing campaign")

    conversion = _value(record, "conversion_rate")
    if conversion is None:
        conversion = _value(record, "kpi_conversion_rate")
    if conversion is not None and conversion < 0.02:
        plan.short_term_actions.append("Improve website user experience")

    return plan


def _number(value: Any, default: float = 0.0) -> float:
    number = coerce_number(value)
    return default if number is None else number


def inventory_health_score(days_of_supply: Any) -> float | None:
    """
    0-100 stock health: 100 inside a 15-60 day supply band, lower outside it.
    """
    days = coerce_number(days_of_supply)
    if days is None:
        return None
    if days < 15:
        return round(max(0.0, days / 15 * 100), 2)
    if days > 60:
        return round(max(0.0, 100 - (days - 60)), 2)
    return 100.0


def _health_label(score: float | None) -> str:
    if score is None:
        return "Unknown"
    if score >= 80:
        return "Healthy"
    if score >= 50:
        return "Watch"
    return "Unhealthy"


class ADSLayer(DataWarehouseLayer):
    """
    Application-metric layer.

    transform() derives growth rates, grade, risk and velocity classes from
    whichever inputs a record carries (a derived field is omitted when none
    of its inputs is present), then generates alerts, recommendations and an
    action plan from those computed values.
    """

    layer_name = "ADS"

    def define_schema(self) -> dict[str, dict[str, str]]:
        return {
            "ads_executive_dashboard": {
                "id": "BIGINT PRIMARY KEY",
                "dashboard_date": "DATE",
                "period_type": "VARCHAR(20)",
                "kpi_revenue": "DECIMAL(15,2)",
                "kpi_revenue_growth": "DECIMAL(12,4)",
                "kpi_orders": "INT",
                "kpi_orders_growth": "DECIMAL(12,4)",
                "kpi_customers": "INT",
                "kpi_customers_growth": "DECIMAL(12,4)",
                "kpi_avg_order_value": "DECIMAL(10,2)",
                "kpi_conversion_rate": "DECIMAL(10,4)",
                "kpi_customer_retention": "DECIMAL(5,4)",
                "kpi_inventory_turnover": "DECIMAL(8,2)",
                "kpi_gross_margin": "DECIMAL(10,4)",
                "kpi_net_margin": "DECIMAL(10,4)",
                "top_products": "JSON",
                "top_customers": "JSON",
                "region_performance": "JSON",
                "alerts": "JSON",
                "recommendations": "JSON",
                "etl_time": "TIMESTAMP",
            },
            "ads_sales_forecast": {
                "id": "BIGINT PRIMARY KEY",
                "forecast_date": "DATE",
                "forecast_period": "VARCHAR(20)",
                "forecast_type": "VARCHAR(20)",
                "predicted_revenue": "DECIMAL(15,2)",
                "predicted_orders": "INT",
                "predicted_customers": "INT",
                "confidence_level": "DECIMAL(3,2)",
                "accuracy_score": "DECIMAL(5,4)",
                "model_version": "VARCHAR(20)",
                "factors_considered": "JSON",
                "trend_analysis": "JSON",
                "seasonal_adjustments": "JSON",
                "external_factors": "JSON",
                "etl_time": "TIMESTAMP",
            },
            "ads_customer_insights": {
                "id": "BIGINT PRIMARY KEY",
                "customer_id": "BIGINT",
                "analysis_date": "DATE",
                "customer_segment": "VARCHAR(20)",
                "lifetime_value": "DECIMAL(12,2)",
                "churn_risk": "VARCHAR(20)",
                "churn_probability": "DECIMAL(5,4)",
                "next_purchase_prediction": "DATE",
                "preferred_categories": "JSON",
                "purchase_patterns": "JSON",
                "price_sensitivity": "VARCHAR(20)",
                "communication_preference": "VARCHAR(20)",
                "loyalty_score": "INT",
                "satisfaction_score": "INT",
                "recommendation_score": "DECIMAL(3,2)",
                "upsell_opportunities": "JSON",
                "cross_sell_opportunities": "JSON",
                "risk_factors": "JSON",
                "action_recommendations": "JSON",
                "etl_time": "TIMESTAMP",
            },
            "ads_product_intelligence": {
                "id": "BIGINT PRIMARY KEY",
                "product_id": "BIGINT",
                "sku": "VARCHAR(100)",
                "analysis_date": "DATE",
                "performance_grade": "VARCHAR(5)",
                "sales_velocity": "VARCHAR(20)",
                "profitability_rank": "INT",
                "market_position": "VARCHAR(20)",
                "competitor_analysis": "JSON",
                "price_elasticity": "DECIMAL(8,4)",
                "demand_forecast": "JSON",
                "inventory_health": "VARCHAR(20)",
                "seasonal_pattern": "JSON",
                "customer_satisfaction": "DECIMAL(3,2)",
                "return_analysis": "JSON",
                "optimization_suggestions": "JSON",
                "pricing_recommendations": "JSON",
                "marketing_insights": "JSON",
                "etl_time": "TIMESTAMP",
            },
            "ads_inventory_optimization": {
                "id": "BIGINT PRIMARY KEY",
                "product_id": "BIGINT",
                "warehouse_code": "VARCHAR(20)",
                "optimization_date": "DATE",
                "current_stock": "INT",
                "optimal_stock": "INT",
                "reorder_point": "INT",
                "reorder_quantity": "INT",
                "safety_stock": "INT",
                "stockout_risk": "VARCHAR(20)",
                "excess_stock_risk": "VARCHAR(20)",
                "carrying_cost": "DECIMAL(10,2)",
                "opportunity_cost": "DECIMAL(10,2)",
                "service_level_target": "DECIMAL(3,2)",
                "current_service_level": "DECIMAL(3,2)",
                "demand_variability": "DECIMAL(8,4)",
                "lead_time": "INT",
                "replenishment_strategy": "VARCHAR(50)",
                "optimization_actions": "JSON",
                "cost_savings_potential": "DECIMAL(10,2)",
                "etl_time": "TIMESTAMP",
            },
            "ads_market_analysis": {
                "id": "BIGINT PRIMARY KEY",
                "analysis_date": "DATE",
                "market_segment": "VARCHAR(100)",
                "total_addressable_market": "DECIMAL(15,2)",
                "market_share": "DECIMAL(5,4)",
                "growth_rate": "DECIMAL(12,4)",
                "competitor_count": "INT",
                "price_competitiveness": "DECIMAL(5,4)",
                "product_differentiation": "VARCHAR(20)",
                "customer_preferences": "JSON",
                "market_trends": "JSON",
                "opportunity_areas": "JSON",
                "threat_indicators": "JSON",
                "swot_analysis": "JSON",
                "market_penetration_rate": "DECIMAL(5,4)",
                "brand_strength": "DECIMAL(3,2)",
                "strategic_recommendations": "JSON",
                "etl_time": "TIMESTAMP",
            },
        }

    def define_indexes(self) -> dict[str, dict[str, str]]:
        return {
            "ads_executive_dashboard": {
                "idx_dashboard_date": "dashboard_date",
                "idx_period_type": "period_type",
                "idx_etl_time": "etl_time",
            },
            "ads_sales_forecast": {
                "idx_forecast_date": "forecast_date",
                "idx_forecast_period": "forecast_period",
                "idx_forecast_type": "forecast_type",
                "idx_confidence_level": "confidence_level",
            },
            "ads_customer_insights": {
                "idx_customer_id": "customer_id",
                "idx_analysis_date": "analysis_date",
                "idx_customer_segment": "customer_segment",
                "idx_churn_risk": "churn_risk",
                "idx_churn_probability": "churn_probability",
            },
            "ads_product_intelligence": {
                "idx_product_id": "product_id",
                "idx_sku": "sku",
                "idx_analysis_date": "analysis_date",
                "idx_performance_grade": "performance_grade",
                "idx_sales_velocity": "sales_velocity",
            },
            "ads_inventory_optimization": {
                "idx_product_id": "product_id",
                "idx_warehouse_code": "warehouse_code",
                "idx_optimization_date": "optimization_date",
                "idx_stockout_risk": "stockout_risk",
            },
            "ads_market_analysis": {
                "idx_analysis_date": "analysis_date",
                "idx_market_segment": "market_segment",
                "idx_etl_time": "etl_time",
            },
        }

    def define_validation_rules(self) -> dict[str, str]:
        return {
            "id": "required|numeric|positive",
            "dashboard_date": "required|date",
            "kpi_revenue": "required|numeric",
            "kpi_orders": "required|numeric|positive",
            "kpi_customers": "required|numeric|positive",
            "customer_id": "required|numeric|positive",
            "product_id": "required|numeric|positive",
            "forecast_date": "required|date",
            "confidence_level": "required|numeric|min:0|max:1",
            "churn_probability": "required|numeric|min:0|max:1",
            "performance_grade": "required|string",
            "market_segment": "required|string",
        }

    def transform_record(self, record: Mapping[str, Any], context: TransformContext) -> Record:
        computed: Record = {"etl_time": context.now}

        for metric in GROWTH_METRICS:
            if _present(record, metric) and _present(record, f"{metric}_previous"):
                computed[f"{metric}_growth"] = calculate_growth_rate(record, metric)

        if _present(record, *GRADE_INPUTS):
            computed["performance_grade"] = assign_performance_grade(record)
        if _present(record, "churn_probability"):
            computed["churn_risk"] = assess_churn_risk(record)
        if _present(record, "current_stock"):
            computed["stockout_risk"] = assess_stockout_risk(record)
            computed["excess_stock_risk"] = assess_excess_stock_risk(record)
        if _present(record, "sales_per_day"):
            computed["sales_velocity"] = calculate_sales_velocity(record)

        merged = {**record, **computed}
        merged["alerts"] = [alert.model_dump() for alert in generate_alerts(merged)]
        merged["recommendations"] = [rec.model_dump() for rec in generate_recommendations(merged)]
        merged["action_recommendations"] = generate_action_recommendations(merged).model_dump()
        return merged

    # ------------------------------------------------------------------
    # Builders (summaries -> application views)
    # ------------------------------------------------------------------

    def build_executive_dashboard(
        self,
        sales_rows: Iterable[Mapping[str, Any]],
        as_of: date,
        financial_rows: Iterable[Mapping[str, Any]] = (),
        product_rows: Iterable[Mapping[str, Any]] = (),
        rfm_rows: Iterable[Mapping[str, Any]] = (),
    ) -> list[Record]:
        """
        One dashboard row comparing the latest sales period with the one before.

        Returns an empty list when there are no sales rows.
        """
        ordered = sorted(sales_rows, key=lambda row: row.get("date_key") or 0)
        if not ordered:
            return []

        latest = ordered[-1]
        previous = ordered[-2] if len(ordered) > 1 else {}
        financial = sorted(financial_rows, key=lambda row: str(row.get("period_start")))
        latest_financial = financial[-1] if financial else {}

        top_products = sorted(product_rows, key=lambda row: _number(row.get("total_revenue_cny")), reverse=True)
        top_customers = sorted(rfm_rows, key=lambda row: _number(row.get("total_revenue")), reverse=True)
        revenue = _number(latest.get("total_revenue_cny"))
        orders = _number(latest.get("total_orders"))

        return [{
            "id": date_key(as_of),
            "dashboard_date": as_of.isoformat(),
            "period_type": latest.get("period_type", "daily"),
            "kpi_revenue": round(revenue, 2),
            "kpi_revenue_previous": previous.get("total_revenue_cny"),
            "kpi_orders": int(orders),
            "kpi_orders_previous": previous.get("total_orders"),
            "kpi_customers": latest.get("total_customers"),
            "kpi_customers_previous": previous.get("total_customers"),
            "kpi_avg_order_value": round(safe_divide(revenue, orders), 2),
            "kpi_conversion_rate": latest.get("conversion_rate"),
            "kpi_customer_retention": latest.get("customer_retention_rate"),
            "kpi_gross_margin": latest_financial.get("gross_margin"),
            "kpi_net_margin": latest_financial.get("net_margin"),
            "top_products": [
                {"product_id": row.get("product_id"), "sku": row.get("sku"), "revenue": row.get("total_revenue_cny")}
                for row in top_products[:TOP_N]
            ],
            "top_customers": [
                {"user_id": row.get("user_id"), "segment": row.get("customer_segment"), "revenue": row.get("total_revenue")}
                for row in top_customers[:TOP_N]
            ],
            "region_performance": latest.get("region_performance") or {},
        }]

    def build_sales_forecast(
        self,
        sales_rows: Iterable[Mapping[str, Any]],
        as_of: date,
        horizon: int = 7,
        window: int = 7,
    ) -> list[Record]:
        """
        Naive moving-average revenue forecast.

        The mean of the last window periods is projected forward with the
        average period-over-period change; confidence falls with the
        coefficient of variation of the window.

        Args:
            sales_rows: Summarised sales rows
            as_of: Forecast origin; rows are produced for the following days
            horizon: Number of days to forecast
            window: Number of most recent periods to average

        Returns:
            One row per forecast day; empty without sales history
        """
        ordered = sorted(sales_rows, key=lambda row: row.get("date_key") or 0)[-window:]
        if not ordered or horizon <= 0:
            return []

        revenues = [_number(row.get("total_revenue_cny")) for row in ordered]
        orders = [_number(row.get("total_orders")) for row in ordered]
        customers = [_number(row.get("total_customers")) for row in ordered]

        mean_revenue = statistics.fmean(revenues)
        step = (revenues[-1] - revenues[0]) / (len(revenues) - 1) if len(revenues) > 1 else 0.0
        spread = statistics.pstdev(revenues) if len(revenues) > 1 else 0.0
        confidence = round(max(0.0, min(1.0, 1 - safe_divide(spread, mean_revenue))), 2)
        growth = safe_divide(revenues[-1] - revenues[0], revenues[0])

        rows = []
        for offset in range(1, horizon + 1):
            forecast_day = as_of + timedelta(days=offset)
            rows.append({
                "id": date_key(forecast_day),
                "forecast_date": forecast_day.isoformat(),
                "forecast_period": ordered[-1].get("period_type", "daily"),
                "forecast_type": "revenue",
                "predicted_revenue": round(max(0.0, mean_revenue + step * offset), 2),
                "predicted_orders": int(round(statistics.fmean(orders))),
                "predicted_customers": int(round(statistics.fmean(customers))),
                "confidence_level": confidence,
                "model_version": FORECAST_MODEL_VERSION,
                "factors_considered": ["historical_revenue", "linear_trend"],
                "trend_analysis": {
                    "direction": classify_trend(growth),
                    "growth_rate": round(growth, 4),
                    "periods": len(ordered),
                },
                "seasonal_adjustments": {},
                "external_factors": [],
            })
        return rows

    def build_customer_insights(self, rfm_rows: Iterable[Mapping[str, Any]], as_of: date) -> list[Record]:
        """Customer-level insight rows from RFM summaries."""
        rows = []
        for rfm in rfm_rows:
            last_order = parse_date(rfm.get("last_order_date"))
            frequency = _number(rfm.get("order_frequency_days"), 30)
            days_since = _number(rfm.get("days_since_last_order"))
            total_orders = _number(rfm.get("total_orders"))
            score_sum = sum(_number(rfm.get(name)) for name in ("recency_score", "frequency_score", "monetary_score"))

            risk_factors = []
            if days_since > 90:
                risk_factors.append(f"No order in {int(days_since)} days")
            if total_orders <= 1:
                risk_factors.append("Single purchase")
            if days_since > frequency * 2:
                risk_factors.append("Order interval well above usual frequency")

            upsell = []
            if rfm.get("customer_segment") in ("Champions", "Loyal Customers"):
                upsell.append("Premium product bundle")
            if rfm.get("customer_segment") == "New Customers":
                upsell.append("Second-order incentive")

            rows.append({
                "id": rfm.get("user_key"),
                "customer_id": rfm.get("user_id"),
                "analysis_date": as_of.isoformat(),
                "customer_segment": rfm.get("customer_segment"),
                "lifetime_value": rfm.get("lifetime_value"),
                "churn_probability": rfm.get("churn_probability"),
                "next_purchase_prediction": (
                    (last_order + timedelta(days=math.ceil(frequency))).isoformat() if last_order else None
                ),
                "purchase_patterns": {
                    "total_orders": int(total_orders),
                    "order_frequency_days": frequency,
                    "avg_order_value": rfm.get("avg_order_value"),
                },
                "loyalty_score": int(round(score_sum / 15 * 100)),
                "recommendation_score": round(score_sum / 15, 2),
                "upsell_opportunities": upsell,
                "cross_sell_opportunities": [],
                "risk_factors": risk_factors,
            })
        return rows

    def build_product_intelligence(
        self,
        performance_rows: Iterable[Mapping[str, Any]],
        as_of: date,
        period_days: int = 30,
    ) -> list[Record]:
        """
        Grading inputs and ranking per product.

        profitability_rank orders products by gross profit (1 = most profitable).
        """
        rows = list(performance_rows)
        profits = [_number(row.get("total_revenue_cny")) - _number(row.get("total_cost")) for row in rows]
        order = sorted(range(len(rows)), key=lambda i: profits[i], reverse=True)
        ranking = {index: rank for rank, index in enumerate(order, start=1)}

        results = []
        for index, row in enumerate(rows):
            health = inventory_health_score(row.get("days_of_supply"))
            sales_per_day = safe_divide(_number(row.get("total_sales")), period_days)
            results.append({
                "id": row.get("product_key"),
                "product_id": row.get("product_id"),
                "sku": row.get("sku"),
                "analysis_date": as_of.isoformat(),
                "total_revenue": row.get("total_revenue_cny"),
                "profit_margin": row.get("profit_margin"),
                "customer_satisfaction": row.get("customer_rating"),
                "inventory_health_score": health,
                "inventory_health": _health_label(health),
                "sales_per_day": round(sales_per_day, 4),
                "profitability_rank": ranking[index],
                "demand_forecast": {
                    "daily_units": round(sales_per_day, 2),
                    "trend": row.get("trend_indicator"),
                },
            })
        return results

    def build_inventory_optimization(
        self,
        inventory_facts: Iterable[Mapping[str, Any]],
        order_facts: Iterable[Mapping[str, Any]],
        as_of: date,
        lookback_days: int = 30,
        lead_time_days: int = 7,
        service_level_target: float = 0.95,
    ) -> list[Record]:
        """
        Stock targets per product from recent demand.

        Daily demand is the quantity sold over the lookback window; safety
        stock covers half a lead time of demand.
        """
        window_start = as_of - timedelta(days=lookback_days)
        daily_units: dict[Any, dict[date, float]] = {}
        for fact in order_facts:
            day = date_from_key(fact["order_date_key"])
            if window_start < day <= as_of:
                per_day = daily_units.setdefault(fact.get("product_key"), {})
                per_day[day] = per_day.get(day, 0.0) + _number(fact.get("quantity"))

        rows = []
        for fact in inventory_facts:
            sold = daily_units.get(fact.get("product_key"), {})
            demand = safe_divide(sum(sold.values()), lookback_days)
            series = [sold.get(window_start + timedelta(days=offset), 0.0) for offset in range(1, lookback_days + 1)]
            variability = safe_divide(statistics.pstdev(series), demand) if demand > 0 else 0.0

            safety_stock = math.ceil(demand * lead_time_days * 0.5)
            reorder_point = _number(fact.get("reorder_point"), math.ceil(demand * lead_time_days) + safety_stock)
            optimal_stock = max(1, math.ceil(demand * lookback_days) + safety_stock)
            current_stock = _number(fact.get("quantity_available"))
            unit_cost = _number(fact.get("unit_cost"))

            if current_stock <= reorder_point:
                strategy = "Expedite"
                actions = [f"Reorder {int(_number(fact.get('reorder_quantity')))} units"]
            elif current_stock > optimal_stock * 2:
                strategy = "Hold"
                actions = ["Pause replenishment", "Consider promotion to reduce stock"]
            else:
                strategy = "Standard"
                actions = []

            excess_units = max(0.0, current_stock - optimal_stock)
            rows.append({
                "id": fact.get("fact_id"),
                "product_id": fact.get("product_id"),
                "warehouse_code": fact.get("warehouse_code"),
                "optimization_date": as_of.isoformat(),
                "current_stock": int(current_stock),
                "optimal_stock": optimal_stock,
                "reorder_point": int(reorder_point),
                "reorder_quantity": fact.get("reorder_quantity"),
                "safety_stock": safety_stock,
                "daily_demand": round(demand, 4),
                "carrying_cost": round(current_stock * unit_cost * HOLDING_COST_RATE, 2),
                "service_level_target": service_level_target,
                "demand_variability": round(variability, 4),
                "lead_time": lead_time_days,
                "replenishment_strategy": strategy,
                "optimization_actions": actions,
                "cost_savings_potential": round(excess_units * unit_cost * HOLDING_COST_RATE, 2),
            })
        return rows

    def build_market_analysis(self, performance_rows: Iterable[Mapping[str, Any]], as_of: date) -> list[Record]:
        """Revenue share and growth per top-level category."""
        segments: dict[str, list[Mapping[str, Any]]] = {}
        for row in performance_rows:
            segments.setdefault(row.get("category_l1") or "Other", []).append(row)

        total = sum(_number(row.get("total_revenue_cny")) for rows in segments.values() for row in rows)
        ranked = sorted(
            segments.items(),
            key=lambda item: sum(_number(row.get("total_revenue_cny")) for row in item[1]),
            reverse=True,
        )

        results = []
        for rank, (segment, rows) in enumerate(ranked, start=1):
            revenue = sum(_number(row.get("total_revenue_cny")) for row in rows)
            current = sum(_number(row.get("current_period_value")) for row in rows)
            previous = sum(_number(row.get("previous_period_value")) for row in rows)
            growth = round(safe_divide(current - previous, previous), 4)
            trend = classify_trend(growth)

            recommendations = []
            if trend in ("Strong Up", "Up"):
                recommendations.append(f"Expand assortment in {segment}")
            elif trend in ("Down", "Strong Down"):
                recommendations.append(f"Review pricing and promotion in {segment}")

            results.append({
                "id": date_key(as_of) * 100 + rank,
                "analysis_date": as_of.isoformat(),
                "market_segment": segment,
                "total_addressable_market": round(revenue, 2),
                "market_share": round(safe_divide(revenue, total), 4),
                "growth_rate": growth,
                "market_trends": {"trend": trend, "products": len(rows)},
                "strategic_recommendations": recommendations,
            })
        return results
