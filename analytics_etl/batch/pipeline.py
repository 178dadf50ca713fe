"""
Layered ETL orchestration.

Runs the four warehouse layers strictly in order and hands every stage's
output to the warehouse store:

    ODS  extract + stamp each source table
    DWD  date dimension, order facts, user/product dimensions (SCD-2), inventory facts
    DWS  sales per period, customer RFM, product performance, inventory, finance
    ADS  dashboard, forecast, customer insights, product intelligence,
         inventory optimization, market analysis
    data-quality pass
"""

from collections.abc import Iterable, Mapping
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Any

from analytics_etl.batch.quality_checks import run_quality_checks
from analytics_etl.batch.runners import SequentialStageRunner, StageRunner
from analytics_etl.core.clock import Clock, SystemClock
from analytics_etl.core.config import PipelineConfig
from analytics_etl.core.errors import ExtractionError, RecordTransformError
from analytics_etl.core.interfaces import SourceExtractor, WarehouseStore
from analytics_etl.core.layers import ADSLayer, DataWarehouseLayer, DWDLayer, DWSLayer, ODSLayer
from analytics_etl.core.layers.base import StageResult, generate_batch_id
from analytics_etl.core.layers.dwd import PRODUCT_TRACKED_FIELDS, USER_TRACKED_FIELDS, remap_keys
from analytics_etl.core.models import ETLRunSummary
from analytics_etl.core.rules import RuleConfigLoader
from analytics_etl.observability import metrics
from analytics_etl.observability.logger import get_logger, log_operation

logger = get_logger(__name__)


class LayeredETLPipeline:
    """
    Orchestrates a full ODS -> DWD -> DWS -> ADS run.

    Layers never read storage; the pipeline passes each stage's output to
    the next. A malformed record is skipped and reported, an extraction
    failure is reported per source, and anything unexpected aborts the run.
    """

    def __init__(
        self,
        extractor: SourceExtractor,
        store: WarehouseStore,
        config: PipelineConfig | None = None,
        clock: Clock | None = None,
        runner: StageRunner | None = None,
        rule_overrides: Mapping[str, Mapping[str, str]] | None = None,
    ):
        """
        Initialize the pipeline.

        Args:
            extractor: Source system reader for the raw layer
            store: Warehouse store receiving every stage's output
            config: Pipeline configuration (defaults when omitted)
            clock: Time source shared by all layers
            runner: Stage runner (sequential when omitted)
            rule_overrides: {layer: {field: expression}}; loaded from
                config.validation_rules_path when omitted

        Raises:
            FileNotFoundError: If the configured rule file does not exist
            ValueError: If a rule expression is malformed
        """
        self.config = config or PipelineConfig()
        self.clock = clock or SystemClock()
        self.runner = runner or SequentialStageRunner()
        self.store = store

        if rule_overrides is None:
            rule_overrides = self._load_rule_overrides()

        self.ods = ODSLayer(extractor, clock=self.clock, rule_overrides=rule_overrides.get("ODS"))
        self.dwd = DWDLayer(
            clock=self.clock,
            rule_overrides=rule_overrides.get("DWD"),
            exchange_rates=self.config.exchange_rates,
        )
        self.dws = DWSLayer(clock=self.clock, rule_overrides=rule_overrides.get("DWS"))
        self.ads = ADSLayer(clock=self.clock, rule_overrides=rule_overrides.get("ADS"))
        self._provisioned = False
        self._operation: log_operation | None = None

    @property
    def layers(self) -> tuple[DataWarehouseLayer, ...]:
        return (self.ods, self.dwd, self.dws, self.ads)

    def _load_rule_overrides(self) -> dict[str, dict[str, str]]:
        path = self.config.validation_rules_path
        if not path:
            return {}
        if not Path(path).exists():
            raise FileNotFoundError(f"Validation rules file not found: {path}")
        return RuleConfigLoader(path).load_rules()

    def provision(self) -> None:
        """Hand every layer's schema and indexes to the store (once)."""
        if self._provisioned:
            return
        for layer in self.layers:
            self.store.provision(layer.schema(), layer.indexes())
        self._provisioned = True

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run_full_etl(
        self,
        filters: Mapping[str, Mapping[str, Any]] | None = None,
        aggregation_period: str | None = None,
    ) -> ETLRunSummary:
        """
        Run every stage once.

        Args:
            filters: Per-source equality filters, e.g. {"orders": {"status": "paid"}}
            aggregation_period: "daily", "weekly" or "monthly" (config default when omitted)

        Returns:
            ETLRunSummary; status is "failed" when the share of skipped
            records exceeds etl.error_threshold

        Raises:
            Exception: Any unexpected error, after logging and counting the failed run
        """
        started_at = self.clock.now()
        batch_id = generate_batch_id(started_at)
        period = aggregation_period or self.config.etl.aggregation_period
        as_of = started_at.date()

        summary = ETLRunSummary(batch_id=batch_id, started_at=started_at)
        self._attempted = 0
        self._failed = 0
        self._outputs: dict[str, dict[str, list[dict[str, Any]]]] = {name: {} for name in ("ODS", "DWD", "DWS", "ADS")}

        logger.info(
            "Starting full ETL run",
            extra={"batch_id": batch_id, "aggregation_period": period},
        )

        try:
            self.provision()

            with self._stage("ODS", batch_id):
                raw = self._run_ods(summary, batch_id, filters or {})
            with self._stage("DWD", batch_id):
                cleaned = self._run_dwd(summary, batch_id, raw, as_of)
            with self._stage("DWS", batch_id):
                summaries = self._run_dws(summary, batch_id, cleaned, period, as_of)
            with self._stage("ADS", batch_id):
                self._run_ads(summary, batch_id, cleaned, summaries, as_of)
            with self._stage("quality", batch_id):
                self._run_quality(summary)

            error_rate = self._failed / self._attempted if self._attempted else 0.0
            summary.status = "failed" if error_rate > self.config.etl.error_threshold else "completed"

        except Exception as e:
            summary.status = "failed"
            self._finish(summary)
            logger.error(
                "ETL run failed",
                extra={"batch_id": batch_id, "error": str(e), "error_type": type(e).__name__},
                exc_info=True,
            )
            raise

        self._finish(summary)
        logger.info(
            "ETL run finished",
            extra={
                "batch_id": batch_id,
                "status": summary.status,
                "records_processed": summary.records_processed,
                "error_count": len(summary.errors),
                "warning_count": len(summary.warnings),
                "duration_seconds": summary.duration,
            },
        )
        return summary

    def _finish(self, summary: ETLRunSummary) -> None:
        summary.finished_at = self.clock.now()
        summary.duration = round((summary.finished_at - summary.started_at).total_seconds(), 3)
        metrics.record_run(summary.status)

    @contextmanager
    def _stage(self, stage: str, batch_id: str):
        """Time a stage in the metrics histogram and the structured log."""
        with metrics.track_duration(metrics.stage_duration_seconds, stage=stage), \
                log_operation(f"{stage} stage", logger=logger, stage=stage, batch_id=batch_id) as operation:
            self._operation = operation
            try:
                yield
            finally:
                self._operation = None

    # ------------------------------------------------------------------
    # Stage helpers
    # ------------------------------------------------------------------

    def _enabled(self, layer: DataWarehouseLayer) -> bool:
        return self.config.layer(layer.layer_name).enabled

    def _transform(
        self,
        summary: ETLRunSummary,
        layer: DataWarehouseLayer,
        records: list[dict[str, Any]],
        batch_id: str,
    ) -> StageResult:
        self._attempted += len(records)
        result = self.runner.run(layer, records, batch_id)
        self._failed += result.failed_count
        summary.errors.extend(error.to_dict() for error in result.errors)
        return result

    def _record_skipped(
        self,
        summary: ETLRunSummary,
        layer: DataWarehouseLayer,
        errors: list[RecordTransformError],
    ) -> None:
        """Account for records a builder rejected before the transform."""
        if not errors:
            return
        self._attempted += len(errors)
        self._failed += len(errors)
        summary.errors.extend(error.to_dict() for error in errors)
        layer.report_batch(StageResult(errors=errors))

    def _write(
        self,
        summary: ETLRunSummary,
        layer: DataWarehouseLayer,
        table: str,
        records: list[dict[str, Any]],
    ) -> None:
        """Persist in configured batch sizes and remember the output for the quality pass."""
        batch_size = self.config.layer(layer.layer_name).batch_size
        written = 0
        for start in range(0, len(records), batch_size):
            written += self.store.write_batch(table, records[start:start + batch_size])

        if self._operation is not None:
            self._operation.add_rows(written)
        summary.stage_counts[table] = summary.stage_counts.get(table, 0) + written
        self._outputs[layer.layer_name].setdefault(table, []).extend(records)

    def _apply_scd(
        self,
        rows: list[dict[str, Any]],
        table: str,
        natural_key: str,
        tracked_fields: Iterable[str],
        as_of: date,
    ) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
        current_rows = getattr(self.store, "current_rows", None)
        if current_rows is None:
            return [], rows
        return self.dwd.expire_dimension_rows(current_rows(table), rows, natural_key, tracked_fields, as_of)

    def _run_ods(
        self,
        summary: ETLRunSummary,
        batch_id: str,
        filters: Mapping[str, Mapping[str, Any]],
    ) -> dict[str, list[dict[str, Any]]]:
        raw: dict[str, list[dict[str, Any]]] = {}
        if not self._enabled(self.ods):
            return raw

        for source in self.config.sources:
            try:
                extracted = self.ods.extract_from_source(source, dict(filters.get(source, {})))
            except ExtractionError as e:
                metrics.record_extraction_error(source)
                logger.error("Extraction failed", extra={"source": source, "error": e.message})
                summary.errors.append({"stage": "ODS", "source": source, "message": e.message})
                continue

            summary.records_processed += len(extracted)
            result = self._transform(summary, self.ods, extracted, batch_id)
            raw[source] = result.records
            self._write(summary, self.ods, f"ods_{source}", result.records)
        return raw

    def _run_dwd(
        self,
        summary: ETLRunSummary,
        batch_id: str,
        raw: Mapping[str, list[dict[str, Any]]],
        as_of: date,
    ) -> dict[str, list[dict[str, Any]]]:
        cleaned: dict[str, list[dict[str, Any]]] = {
            "orders": [], "users": [], "products": [], "inventory": [],
        }
        if not self._enabled(self.dwd):
            return cleaned

        dimension = self.config.etl.date_dimension
        end = date(as_of.year + dimension.years_ahead, 12, 31)
        self._write(summary, self.dwd, "dwd_dim_date", self.dwd.generate_date_dimensions(dimension.start_date, end))

        product_errors: list[RecordTransformError] = []
        products = self.dwd.build_product_dimensions(raw.get("products", []), as_of, product_errors)
        self._record_skipped(summary, self.dwd, product_errors)
        products = self._transform(summary, self.dwd, products, batch_id).records
        closed, products = self._apply_scd(products, "dwd_dim_product", "product_id", PRODUCT_TRACKED_FIELDS, as_of)
        self._write(summary, self.dwd, "dwd_dim_product", closed + products)
        product_keys = {row["product_id"]: row["product_key"] for row in products}

        order_errors: list[RecordTransformError] = []
        facts = self.dwd.build_order_facts(raw.get("orders", []), raw.get("order_items", []), as_of, order_errors)
        self._record_skipped(summary, self.dwd, order_errors)
        facts = self._transform(
            summary, self.dwd, remap_keys(facts, "product_key", "product_id", product_keys), batch_id
        ).records

        user_errors: list[RecordTransformError] = []
        users = self.dwd.build_user_dimensions(raw.get("users", []), facts, as_of, user_errors)
        self._record_skipped(summary, self.dwd, user_errors)
        users = self._transform(summary, self.dwd, users, batch_id).records
        closed, users = self._apply_scd(users, "dwd_dim_user", "user_id", USER_TRACKED_FIELDS, as_of)
        self._write(summary, self.dwd, "dwd_dim_user", closed + users)

        user_keys = {row["user_id"]: row["user_key"] for row in users}
        facts = remap_keys(facts, "user_key", "user_id", user_keys)
        self._write(summary, self.dwd, "dwd_fact_orders", facts)

        inventory_errors: list[RecordTransformError] = []
        inventory = self.dwd.build_inventory_facts(raw.get("products", []), as_of, inventory_errors)
        self._record_skipped(summary, self.dwd, inventory_errors)
        inventory = self._transform(
            summary, self.dwd, remap_keys(inventory, "product_key", "product_id", product_keys), batch_id
        ).records
        self._write(summary, self.dwd, "dwd_fact_inventory", inventory)

        cleaned.update(orders=facts, users=users, products=products, inventory=inventory)
        return cleaned

    def _run_dws(
        self,
        summary: ETLRunSummary,
        batch_id: str,
        cleaned: Mapping[str, list[dict[str, Any]]],
        period: str,
        as_of: date,
    ) -> dict[str, list[dict[str, Any]]]:
        summaries: dict[str, list[dict[str, Any]]] = {}
        if not self._enabled(self.dws):
            return summaries

        facts, products, inventory = cleaned["orders"], cleaned["products"], cleaned["inventory"]
        built = {
            "dws_sales_daily": self.dws.aggregate_sales(facts, period, products),
            "dws_customer_rfm": self.dws.build_customer_rfm(facts, as_of),
            "dws_product_performance": self.dws.build_product_performance(facts, products, inventory, as_of),
            "dws_inventory_analysis": self.dws.build_inventory_analysis(inventory),
            "dws_financial_summary": self.dws.build_financial_summary(facts, products, period, inventory),
        }
        for table, rows in built.items():
            summaries[table] = self._transform(summary, self.dws, rows, batch_id).records
            self._write(summary, self.dws, table, summaries[table])
        return summaries

    def _run_ads(
        self,
        summary: ETLRunSummary,
        batch_id: str,
        cleaned: Mapping[str, list[dict[str, Any]]],
        summaries: Mapping[str, list[dict[str, Any]]],
        as_of: date,
    ) -> None:
        if not self._enabled(self.ads):
            return

        sales = summaries.get("dws_sales_daily", [])
        rfm = summaries.get("dws_customer_rfm", [])
        performance = summaries.get("dws_product_performance", [])

        built = {
            "ads_executive_dashboard": self.ads.build_executive_dashboard(
                sales, as_of, summaries.get("dws_financial_summary", []), performance, rfm
            ),
            "ads_sales_forecast": self.ads.build_sales_forecast(
                sales, as_of, horizon=self.config.etl.forecast_horizon
            ),
            "ads_customer_insights": self.ads.build_customer_insights(rfm, as_of),
            "ads_product_intelligence": self.ads.build_product_intelligence(performance, as_of),
            "ads_inventory_optimization": self.ads.build_inventory_optimization(
                cleaned["inventory"], cleaned["orders"], as_of
            ),
            "ads_market_analysis": self.ads.build_market_analysis(performance, as_of),
        }
        for table, rows in built.items():
            records = self._transform(summary, self.ads, rows, batch_id).records
            self._write(summary, self.ads, table, records)

    def _run_quality(self, summary: ETLRunSummary) -> None:
        report = run_quality_checks(
            (layer, self._outputs[layer.layer_name]) for layer in self.layers
        )
        summary.warnings.extend(report.warnings)
        for table, count in report.issue_counts.items():
            if count:
                summary.warnings.append({
                    "type": "validation",
                    "table": table,
                    "issue": f"Found {count} rule violations",
                    "severity": "low",
                })

