"""
DWD (Data Warehouse Detail) layer.

Cleans and conforms raw records into facts and slowly-changing (type 2)
dimensions: currency normalisation to CNY, derived name and segment fields,
and the generated calendar dimension.
"""

from collections.abc import Iterable, Mapping
from datetime import date, datetime, timedelta
from typing import Any

from analytics_etl.core.errors import RecordTransformError
from analytics_etl.core.layers.base import (
    DataWarehouseLayer,
    Record,
    TransformContext,
    generate_batch_id,
    read_number,
    record_identity,
)
from analytics_etl.core.validators import coerce_number, parse_date

EXCHANGE_RATES = {
    "CNY": 1.0,
    "USD": 7.2,
    "JPY": 0.048,
    "EUR": 7.8,
}

HOLIDAYS = frozenset({"01-01", "05-01", "10-01", "12-25"})

MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)
WEEKDAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

COUNTRY_CODES = {
    "china": "CN",
    "united states": "US",
    "usa": "US",
    "japan": "JP",
    "germany": "DE",
    "france": "FR",
    "united kingdom": "GB",
    "singapore": "SG",
    "hong kong": "HK",
}

OPEN_END_DATE = "9999-12-31"
# Attributes whose change opens a new dimension version
USER_TRACKED_FIELDS = ("email", "full_name", "company_name", "country_code", "city", "customer_segment", "loyalty_tier")
PRODUCT_TRACKED_FIELDS = ("sku", "product_name", "category_l1", "category_l2", "category_l3", "brand", "unit_price", "cost_price")
# Columns identifying a stored dimension version
VERSION_FIELDS = ("user_key", "product_key", "effective_from", "effective_to", "is_current")
SURROGATE_EPOCH = date(2000, 1, 1)
DEFAULT_REORDER_POINT = 10
DEFAULT_REORDER_QUANTITY = 50


# ----------------------------------------------------------------------
# Derived-field algorithms
# ----------------------------------------------------------------------

def convert_to_cny(amount: float, currency: str | None, rates: Mapping[str, float] | None = None) -> float:
    """
    Convert an amount to CNY using a fixed rate table.

    Unknown currency codes use a rate of 1.0.
    """
    table = rates or EXCHANGE_RATES
    code = (currency or "CNY").strip().upper()
    return amount * table.get(code, 1.0)


def determine_customer_segment(record: Mapping[str, Any]) -> str:
    """VIP / Premium / Regular / New from total_spent and order_count (first match wins)."""
    total_spent = read_number(record, "total_spent", 0.0)
    order_count = read_number(record, "order_count", 0.0)

    if total_spent > 100000 or order_count > 50:
        return "VIP"
    if total_spent > 50000 or order_count > 20:
        return "Premium"
    if total_spent > 10000 or order_count > 5:
        return "Regular"
    return "New"


def calculate_loyalty_tier(points: float) -> str:
    """Loyalty tier from accumulated points."""
    if points >= 10000:
        return "Platinum"
    if points >= 5000:
        return "Gold"
    if points >= 2000:
        return "Silver"
    if points >= 500:
        return "Bronze"
    return "Basic"


def build_full_name(record: Mapping[str, Any]) -> str:
    """Trimmed "first last"; falls back to an existing full_name."""
    first = record.get("first_name") or ""
    last = record.get("last_name") or ""
    if first or last:
        return f"{first} {last}".strip()
    return str(record.get("full_name") or "").strip()


def get_season(day: date) -> str:
    if 3 <= day.month <= 5:
        return "Spring"
    if 6 <= day.month <= 8:
        return "Summer"
    if 9 <= day.month <= 11:
        return "Autumn"
    return "Winter"


def is_holiday(day: date) -> bool:
    """Fixed month-day holidays, no regional calendar."""
    return day.strftime("%m-%d") in HOLIDAYS


def generate_date_dimensions(start: date | datetime, end: date | datetime) -> list[Record]:
    """
    Generate one calendar row per day in [start, end], inclusive.

    Args:
        start: First day
        end: Last day

    Returns:
        Date dimension rows; empty when start is after end
    """
    current = start.date() if isinstance(start, datetime) else start
    last = end.date() if isinstance(end, datetime) else end

    rows = []
    while current <= last:
        iso_year, iso_week, iso_weekday = current.isocalendar()
        rows.append({
            "date_key": date_key(current),
            "full_date": current.isoformat(),
            "year": current.year,
            "quarter": (current.month - 1) // 3 + 1,
            "month": current.month,
            "week": iso_week,
            "day_of_month": current.day,
            "day_of_week": iso_weekday,
            "day_of_year": current.timetuple().tm_yday,
            "is_weekend": iso_weekday in (6, 7),
            "is_holiday": is_holiday(current),
            "season": get_season(current),
            "month_name": MONTH_NAMES[current.month - 1],
            "weekday_name": WEEKDAY_NAMES[iso_weekday - 1],
        })
        current += timedelta(days=1)
    return rows


# ----------------------------------------------------------------------
# Keys and periods
# ----------------------------------------------------------------------

def date_key(value: Any) -> int | None:
    """
    YYYYMMDD integer key of a date-like value.

    Returns None for None; raises ValueError for unparsable values.
    """
    if value is None:
        return None
    if isinstance(value, int) and not isinstance(value, bool) and 19000101 <= value <= 99991231:
        return value
    day = parse_date(value)
    if day is None:
        raise ValueError(f"Cannot derive a date key from {value!r}")
    return int(day.strftime("%Y%m%d"))


def date_from_key(key: int) -> date:
    """Inverse of date_key."""
    return datetime.strptime(str(key), "%Y%m%d").date()


def period_start(day: date, period: str) -> date:
    """First day of the daily / weekly (ISO, Monday) / monthly period containing day."""
    if period == "weekly":
        return day - timedelta(days=day.isoweekday() - 1)
    if period == "monthly":
        return day.replace(day=1)
    return day


def period_end(start: date, period: str) -> date:
    """Last day of the period beginning at start."""
    if period == "weekly":
        return start + timedelta(days=6)
    if period == "monthly":
        next_month = (start.replace(day=28) + timedelta(days=4)).replace(day=1)
        return next_month - timedelta(days=1)
    return start


def period_label(start: date, period: str) -> str:
    """Human-readable period key: 2024-01-15, 2024-W03 or 2024-01."""
    if period == "weekly":
        iso_year, iso_week, _ = start.isocalendar()
        return f"{iso_year}-W{iso_week:02d}"
    if period == "monthly":
        return start.strftime("%Y-%m")
    return start.isoformat()


def surrogate_key(natural_id: Any, effective_from: date) -> int:
    """Dimension surrogate key, unique per natural id and version start day."""
    return int(natural_id) * 100000 + (effective_from - SURROGATE_EPOCH).days


def natural_id(row: Mapping[str, Any], field_name: str) -> int:
    """
    Integer business id held in a field.

    Raises:
        ValueError: If the field is missing or not an integral number
    """
    value = row.get(field_name)
    number = coerce_number(value)
    if number is None or not number.is_integer():
        raise ValueError(f"{field_name} must be an integer id, got {value!r}")
    return int(number)


def _number_or(value: Any, default: float = 0.0) -> float:
    number = coerce_number(value)
    return default if number is None else number


def _same_value(old: Any, new: Any) -> bool:
    """Equality that tolerates Decimal-vs-float and date-vs-string differences from storage."""
    old_number, new_number = coerce_number(old), coerce_number(new)
    if old_number is not None and new_number is not None:
        return abs(old_number - new_number) < 0.005
    if old is None or new is None:
        return old is new
    return str(old) == str(new)


def _opened_on(row: Mapping[str, Any], day: date) -> bool:
    """True when a stored dimension version starts on day (date or ISO string from storage)."""
    return str(row.get("effective_from"))[:10] == day.isoformat()


def remap_keys(
    records: Iterable[Mapping[str, Any]],
    key_field: str,
    natural_field: str,
    keys: Mapping[Any, Any],
) -> list[Record]:
    """
    Point records at the effective dimension versions.

    Records whose natural id has no entry in keys keep their key.
    """
    return [
        {**record, key_field: keys.get(record.get(natural_field), record.get(key_field))}
        for record in records
    ]


def _category_levels(category: Any) -> list[str]:
    parts = [part.strip() for part in str(category or "").split(">") if part.strip()]
    return (parts + ["Other", "Other", "Other"])[:3]


def _country_code(country: Any) -> str | None:
    if not country:
        return None
    name = str(country).strip()
    return COUNTRY_CODES.get(name.lower(), name[:2].upper())


# ----------------------------------------------------------------------
# Layer
# ----------------------------------------------------------------------

class DWDLayer(DataWarehouseLayer):
    """
    Cleaned / dimensional layer.

    transform() stamps etl_time and etl_batch_id and derives order_amount_cny,
    full_name, customer_segment and loyalty_tier on every record. The
    build_* methods assemble fact and dimension rows from raw-layer records.
    """

    layer_name = "DWD"
    uses_batch_id = True

    def __init__(self, clock=None, rule_overrides=None, exchange_rates: Mapping[str, float] | None = None):
        super().__init__(clock=clock, rule_overrides=rule_overrides)
        self.exchange_rates = {**EXCHANGE_RATES, **{k.upper(): v for k, v in (exchange_rates or {}).items()}}

    def define_schema(self) -> dict[str, dict[str, str]]:
        return {
            "dwd_fact_orders": {
                "fact_id": "BIGINT PRIMARY KEY",
                "order_id": "BIGINT",
                "order_date_key": "INT",
                "user_key": "BIGINT",
                "product_key": "BIGINT",
                "order_amount": "DECIMAL(12,2)",
                "order_amount_cny": "DECIMAL(12,2)",
                "currency": "VARCHAR(3)",
                "quantity": "INT",
                "unit_price": "DECIMAL(10,2)",
                "discount_amount": "DECIMAL(10,2)",
                "status_code": "VARCHAR(10)",
                "payment_method": "VARCHAR(20)",
                "shipping_method": "VARCHAR(20)",
                "region_code": "VARCHAR(10)",
                "etl_time": "TIMESTAMP",
                "etl_batch_id": "VARCHAR(50)",
            },
            "dwd_dim_date": {
                "date_key": "INT PRIMARY KEY",
                "full_date": "DATE",
                "year": "INT",
                "quarter": "INT",
                "month": "INT",
                "week": "INT",
                "day_of_month": "INT",
                "day_of_week": "INT",
                "day_of_year": "INT",
                "is_weekend": "BOOLEAN",
                "is_holiday": "BOOLEAN",
                "season": "VARCHAR(10)",
                "month_name": "VARCHAR(20)",
                "weekday_name": "VARCHAR(20)",
            },
            "dwd_dim_user": {
                "user_key": "BIGINT PRIMARY KEY",
                "user_id": "BIGINT",
                "username": "VARCHAR(100)",
                "email": "VARCHAR(255)",
                "full_name": "VARCHAR(255)",
                "company_name": "VARCHAR(255)",
                "industry": "VARCHAR(100)",
                "country_code": "VARCHAR(5)",
                "country_name": "VARCHAR(100)",
                "region": "VARCHAR(50)",
                "city": "VARCHAR(100)",
                "customer_segment": "VARCHAR(20)",
                "registration_date_key": "INT",
                "is_active": "BOOLEAN",
                "loyalty_tier": "VARCHAR(20)",
                "effective_from": "DATE",
                "effective_to": "DATE",
                "is_current": "BOOLEAN",
            },
            "dwd_dim_product": {
                "product_key": "BIGINT PRIMARY KEY",
                "product_id": "BIGINT",
                "sku": "VARCHAR(100)",
                "product_name": "VARCHAR(255)",
                "category_l1": "VARCHAR(100)",
                "category_l2": "VARCHAR(100)",
                "category_l3": "VARCHAR(100)",
                "brand": "VARCHAR(100)",
                "supplier_name": "VARCHAR(255)",
                "unit_price": "DECIMAL(10,2)",
                "cost_price": "DECIMAL(10,2)",
                "weight": "DECIMAL(8,2)",
                "dimensions": "VARCHAR(100)",
                "color": "VARCHAR(50)",
                "size": "VARCHAR(50)",
                "is_active": "BOOLEAN",
                "effective_from": "DATE",
                "effective_to": "DATE",
                "is_current": "BOOLEAN",
            },
            "dwd_fact_inventory": {
                "fact_id": "BIGINT PRIMARY KEY",
                "product_key": "BIGINT",
                "date_key": "INT",
                "warehouse_code": "VARCHAR(20)",
                "quantity_on_hand": "INT",
                "quantity_reserved": "INT",
                "quantity_available": "INT",
                "reorder_point": "INT",
                "reorder_quantity": "INT",
                "unit_cost": "DECIMAL(10,2)",
                "total_value": "DECIMAL(12,2)",
                "etl_time": "TIMESTAMP",
                "etl_batch_id": "VARCHAR(50)",
            },
        }

    def define_indexes(self) -> dict[str, dict[str, str]]:
        return {
            "dwd_fact_orders": {
                "idx_order_date_key": "order_date_key",
                "idx_user_key": "user_key",
                "idx_product_key": "product_key",
                "idx_status_code": "status_code",
                "idx_region_code": "region_code",
                "idx_etl_time": "etl_time",
            },
            "dwd_dim_date": {
                "idx_year": "year",
                "idx_month": "month",
                "idx_quarter": "quarter",
                "idx_week": "week",
            },
            "dwd_dim_user": {
                "idx_user_id": "user_id",
                "idx_email": "email",
                "idx_country_code": "country_code",
                "idx_customer_segment": "customer_segment",
                "idx_is_current": "is_current",
            },
            "dwd_dim_product": {
                "idx_product_id": "product_id",
                "idx_sku": "sku",
                "idx_category_l1": "category_l1",
                "idx_category_l2": "category_l2",
                "idx_brand": "brand",
                "idx_is_current": "is_current",
            },
            "dwd_fact_inventory": {
                "idx_product_key": "product_key",
                "idx_date_key": "date_key",
                "idx_warehouse_code": "warehouse_code",
                "idx_etl_time": "etl_time",
            },
        }

    def define_validation_rules(self) -> dict[str, str]:
        return {
            "fact_id": "required|numeric|positive",
            "order_id": "required|numeric|positive",
            "order_date_key": "required|numeric",
            "user_key": "required|numeric|positive",
            "product_key": "required|numeric|positive",
            "order_amount": "required|numeric",
            "quantity": "required|numeric|positive",
            "unit_price": "required|numeric|positive",
            "date_key": "required|numeric",
            "full_date": "required|date",
        }

    def generate_batch_id(self) -> str:
        return generate_batch_id(self.clock.now())

    def convert_to_cny(self, amount: float, currency: str | None) -> float:
        return convert_to_cny(amount, currency, self.exchange_rates)

    def transform_record(self, record: Mapping[str, Any], context: TransformContext) -> Record:
        amount = read_number(record, "order_amount", 0.0)
        currency = record.get("currency")
        if currency is not None and not isinstance(currency, str):
            raise RecordTransformError(
                record_identity(record), "currency", f"expected a currency code, got {currency!r}"
            )
        return {
            **record,
            "etl_time": context.now,
            "etl_batch_id": context.batch_id,
            "order_amount_cny": round(self.convert_to_cny(amount, currency), 2),
            "full_name": build_full_name(record),
            "customer_segment": determine_customer_segment(record),
            "loyalty_tier": calculate_loyalty_tier(read_number(record, "loyalty_points", 0.0)),
        }

    def generate_date_dimensions(self, start: date | datetime, end: date | datetime) -> list[Record]:
        return generate_date_dimensions(start, end)

    # ------------------------------------------------------------------
    # Builders (raw layer -> facts and dimensions)
    # ------------------------------------------------------------------

    def build_order_facts(
        self,
        orders: Iterable[Mapping[str, Any]],
        order_items: Iterable[Mapping[str, Any]],
        as_of: date,
        errors: list[RecordTransformError] | None = None,
    ) -> list[Record]:
        """
        Join orders with their line items into one fact row per item.

        Orders without items produce no facts; items of unknown orders are
        ignored. Dimension keys point at the versions effective as_of.

        Args:
            orders: Raw order rows
            order_items: Raw order item rows
            as_of: Day the dimension versions are effective from
            errors: When given, malformed orders are collected here and
                skipped instead of raising

        Raises:
            RecordTransformError: If an order date or a user/product id is
                malformed and no errors list was given
        """
        items_by_order: dict[Any, list[Mapping[str, Any]]] = {}
        for item in order_items:
            items_by_order.setdefault(item.get("order_id"), []).append(item)

        facts = []
        for order in orders:
            try:
                order_date_key = date_key(order.get("order_date"))
                if order_date_key is None:
                    raise ValueError("order_date is missing")
            except ValueError as e:
                self._reject(order, "order_date", str(e), errors)
                continue

            user_id = order.get("user_id")
            if user_id is not None:
                try:
                    user_id = natural_id(order, "user_id")
                except ValueError as e:
                    self._reject(order, "user_id", str(e), errors)
                    continue

            for item in items_by_order.get(order.get("id"), []):
                product_id = item.get("product_id")
                if product_id is not None:
                    try:
                        product_id = natural_id(item, "product_id")
                    except ValueError as e:
                        self._reject(item, "product_id", str(e), errors)
                        continue
                facts.append({
                    "fact_id": item.get("id"),
                    "order_id": order.get("id"),
                    "order_date_key": order_date_key,
                    "user_id": user_id,
                    "product_id": product_id,
                    "user_key": surrogate_key(user_id, as_of) if user_id is not None else None,
                    "product_key": surrogate_key(product_id, as_of) if product_id is not None else None,
                    "order_amount": item.get("total_price"),
                    "currency": item.get("currency") or order.get("currency") or "CNY",
                    "quantity": item.get("quantity"),
                    "unit_price": item.get("unit_price"),
                    "discount_amount": item.get("discount_amount", 0),
                    "status_code": str(order.get("status") or "")[:3].upper(),
                    "payment_method": order.get("payment_method"),
                    "shipping_method": order.get("shipping_method"),
                    "region_code": order.get("region_code") or "UNKNOWN",
                })
        return facts

    def build_user_dimensions(
        self,
        users: Iterable[Mapping[str, Any]],
        order_facts: Iterable[Mapping[str, Any]],
        as_of: date,
        errors: list[RecordTransformError] | None = None,
    ) -> list[Record]:
        """
        Build current user dimension rows with purchase totals.

        total_spent (CNY) and order_count come from already-transformed
        order facts, so segmentation sees validated amounts. Users without
        an integer id are rejected (collected into errors when given).
        """
        spent: dict[Any, float] = {}
        orders: dict[Any, set] = {}
        for fact in order_facts:
            user_id = fact.get("user_id")
            spent[user_id] = spent.get(user_id, 0.0) + _number_or(fact.get("order_amount_cny"))
            orders.setdefault(user_id, set()).add(fact.get("order_id"))

        rows = []
        for user in users:
            try:
                user_id = natural_id(user, "id")
            except ValueError as e:
                self._reject(user, "id", str(e), errors)
                continue
            registration = user.get("registration_date")
            rows.append({
                "user_key": surrogate_key(user_id, as_of),
                "user_id": user_id,
                "username": user.get("username"),
                "email": user.get("email"),
                "first_name": user.get("first_name"),
                "last_name": user.get("last_name"),
                "company_name": user.get("company"),
                "industry": user.get("industry"),
                "country_code": _country_code(user.get("country")),
                "country_name": user.get("country"),
                "region": user.get("region"),
                "city": user.get("city"),
                "registration_date_key": date_key(registration) if parse_date(registration) else None,
                "is_active": True,
                "total_spent": round(spent.get(user_id, 0.0), 2),
                "order_count": len(orders.get(user_id, ())),
                "loyalty_points": user.get("loyalty_points", 0),
                "effective_from": as_of.isoformat(),
                "effective_to": OPEN_END_DATE,
                "is_current": True,
            })
        return rows

    def build_product_dimensions(
        self,
        products: Iterable[Mapping[str, Any]],
        as_of: date,
        errors: list[RecordTransformError] | None = None,
    ) -> list[Record]:
        """Build current product dimension rows; "A > B > C" categories split into three levels."""
        rows = []
        for product in products:
            try:
                product_id = natural_id(product, "id")
            except ValueError as e:
                self._reject(product, "id", str(e), errors)
                continue
            level1, level2, level3 = _category_levels(product.get("category"))
            rows.append({
                "product_key": surrogate_key(product_id, as_of),
                "product_id": product_id,
                "sku": product.get("sku"),
                "product_name": product.get("name"),
                "category_l1": level1,
                "category_l2": level2,
                "category_l3": level3,
                "brand": product.get("brand") or "Generic",
                "supplier_name": product.get("supplier_name"),
                "unit_price": product.get("price"),
                "cost_price": product.get("cost_price"),
                "currency": product.get("currency") or "CNY",
                "customer_rating": product.get("customer_rating"),
                "is_active": True,
                "effective_from": as_of.isoformat(),
                "effective_to": OPEN_END_DATE,
                "is_current": True,
            })
        return rows

    def build_inventory_facts(
        self,
        products: Iterable[Mapping[str, Any]],
        as_of: date,
        errors: list[RecordTransformError] | None = None,
    ) -> list[Record]:
        """Snapshot stock levels of each product as of a day."""
        snapshot_key = date_key(as_of)
        rows = []
        for product in products:
            try:
                product_id = natural_id(product, "id")
            except ValueError as e:
                self._reject(product, "id", str(e), errors)
                continue
            on_hand = _number_or(product.get("stock_quantity"))
            reserved = _number_or(product.get("reserved_quantity"))
            unit_cost = _number_or(product.get("cost_price"), _number_or(product.get("price")))
            rows.append({
                "fact_id": snapshot_key * 1000000 + product_id,
                "product_id": product_id,
                "product_key": surrogate_key(product_id, as_of),
                "date_key": snapshot_key,
                "warehouse_code": product.get("warehouse_code") or "WH001",
                "quantity_on_hand": int(on_hand),
                "quantity_reserved": int(reserved),
                "quantity_available": int(on_hand - reserved),
                "reorder_point": int(_number_or(product.get("reorder_point"), DEFAULT_REORDER_POINT)),
                "reorder_quantity": int(_number_or(product.get("reorder_quantity"), DEFAULT_REORDER_QUANTITY)),
                "unit_cost": unit_cost,
                "currency": product.get("currency") or "CNY",
                "total_value": round(on_hand * unit_cost, 2),
            })
        return rows

    def expire_dimension_rows(
        self,
        previous: Iterable[Mapping[str, Any]],
        current: Iterable[Mapping[str, Any]],
        natural_key: str,
        tracked_fields: Iterable[str],
        as_of: date,
    ) -> tuple[list[Record], list[Record]]:
        """
        Apply type-2 supersession between stored and freshly built dimension rows.

        A stored current row whose tracked attributes changed is closed
        (effective_to = as_of, is_current = False) and the new version is
        kept. An unchanged row keeps its stored version (key and effective
        dates) with the fresh untracked attributes such as totals.
        A stored version opened on as_of itself is revised in place (same key
        and dates, new attributes), so versions stay one per business key per day.

        Args:
            previous: Currently stored rows (only is_current rows matter)
            current: Freshly built rows
            natural_key: Business key column, e.g. "user_id"
            tracked_fields: Attributes whose change opens a new version
            as_of: Supersession date

        Returns:
            (closed_rows, rows_to_keep_current)
        """
        tracked = list(tracked_fields)
        stored = {
            row.get(natural_key): row
            for row in previous
            if row.get("is_current", True)
        }

        closed: list[Record] = []
        keep: list[Record] = []
        for row in current:
            old = stored.get(row.get(natural_key))
            if old is None:
                keep.append(dict(row))
            elif all(_same_value(old.get(name), row.get(name)) for name in tracked) or _opened_on(old, as_of):
                # Same version; one opened as_of is revised in place since a new one would reuse its key
                keep.append({**row, **{name: old[name] for name in VERSION_FIELDS if name in old}})
            else:
                closed.append({**old, "effective_to": as_of.isoformat(), "is_current": False})
                keep.append(dict(row))
        return closed, keep

    def _reject(
        self,
        row: Mapping[str, Any],
        field_name: str,
        message: str,
        errors: list[RecordTransformError] | None,
    ) -> None:
        """Collect a builder input that cannot be used, or raise without a collector."""
        error = RecordTransformError(record_identity(row), field_name, message, self.layer_name)
        if errors is None:
            raise error
        errors.append(error)
