"""
Layer contract shared by the four warehouse layers (ODS, DWD, DWS, ADS).

A layer declares its tables (schema), advisory indexes and validation rules,
and implements one record-level transformation. Validation is a reporting
pass that collects ValidationIssue models; it never raises.
"""

import secrets
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any

from analytics_etl.core.clock import Clock, SystemClock
from analytics_etl.core.errors import RecordTransformError
from analytics_etl.core.models import ValidationIssue
from analytics_etl.core.rules import RuleEngine
from analytics_etl.core.validators import coerce_number
from analytics_etl.observability import metrics
from analytics_etl.observability.logger import get_logger

logger = get_logger(__name__)

Record = dict[str, Any]
SchemaDescriptor = Mapping[str, Mapping[str, str]]
IndexDescriptor = Mapping[str, Mapping[str, str]]

# Candidate identity fields, most specific first
IDENTITY_FIELDS = ("id", "fact_id", "order_id", "user_id", "product_id", "customer_id", "date_key")


def generate_batch_id(now: datetime) -> str:
    """
    Build a batch identifier: BATCH_<YYYYmmdd_HHMMSS>_<13 hex chars>.

    Collisions inside the same second are possible but negligible.
    """
    return f"BATCH_{now.strftime('%Y%m%d_%H%M%S')}_{secrets.token_hex(7)[:13]}"


def record_identity(record: Mapping[str, Any]) -> Any:
    """Best available identifier of a record for error reporting."""
    for name in IDENTITY_FIELDS:
        if record.get(name) is not None:
            return record[name]
    return "unknown"


def read_number(record: Mapping[str, Any], field_name: str, default: float = 0.0) -> float:
    """
    Read a numeric field, falling back to a default when absent or None.

    Raises:
        RecordTransformError: If the field holds a non-numeric value
    """
    value = record.get(field_name)
    if value is None:
        return default

    number = coerce_number(value)
    if number is None:
        raise RecordTransformError(
            record_identity(record),
            field_name,
            f"expected a numeric value, got {value!r}",
        )
    return number


def safe_divide(numerator: float, denominator: float) -> float:
    """Divide, treating a zero denominator as 1."""
    return numerator / (denominator or 1)


@dataclass(frozen=True)
class TransformContext:
    """
    Read-only inputs shared by every record of one transform call.

    Attributes:
        now: Timestamp used for etl_time / created_at / updated_at
        batch_id: Batch identifier (None for layers that do not tag batches)
    """

    now: datetime
    batch_id: str | None = None


@dataclass
class StageResult:
    """Outcome of a skip-and-continue transform over a batch."""

    records: list[Record] = field(default_factory=list)
    errors: list[RecordTransformError] = field(default_factory=list)

    @property
    def failed_count(self) -> int:
        return len(self.errors)


class DataWarehouseLayer(ABC):
    """
    Abstract base class for all warehouse layers.

    Subclasses define their schema, indexes, validation rules and a
    transform_record() implementation. transform() is a pure function of its
    input apart from the clock reading and the batch id.
    """

    layer_name: str = ""
    uses_batch_id: bool = False

    def __init__(
        self,
        clock: Clock | None = None,
        rule_overrides: Mapping[str, str] | None = None,
    ):
        """
        Initialize the layer.

        Args:
            clock: Time source (system clock when omitted)
            rule_overrides: Extra or replacement {field: rule expression} entries

        Raises:
            ValueError: If a validation rule expression is malformed
        """
        self.clock = clock or SystemClock()
        self._schema = {table: dict(columns) for table, columns in self.define_schema().items()}
        self._indexes = {table: dict(indexes) for table, indexes in self.define_indexes().items()}

        rules = dict(self.define_validation_rules())
        rules.update(rule_overrides or {})
        self._rules = rules
        self.rule_engine = RuleEngine(rules, layer=self.layer_name)

    # ------------------------------------------------------------------
    # Declarations
    # ------------------------------------------------------------------

    @abstractmethod
    def define_schema(self) -> dict[str, dict[str, str]]:
        """Table -> (column -> SQL type)."""

    @abstractmethod
    def define_indexes(self) -> dict[str, dict[str, str]]:
        """Table -> (index name -> comma-separated columns)."""

    @abstractmethod
    def define_validation_rules(self) -> dict[str, str]:
        """Field -> pipe-delimited rule expression."""

    @abstractmethod
    def transform_record(self, record: Mapping[str, Any], context: TransformContext) -> Record:
        """
        Transform a single record into a new record.

        Args:
            record: Input record (never mutated)
            context: Shared timestamp and batch id

        Returns:
            New record

        Raises:
            RecordTransformError: If the record is structurally malformed
        """

    def schema(self) -> SchemaDescriptor:
        """Read-only view of the layer schema."""
        return MappingProxyType({table: MappingProxyType(columns) for table, columns in self._schema.items()})

    def indexes(self) -> IndexDescriptor:
        """Read-only view of the layer index definitions."""
        return MappingProxyType({table: MappingProxyType(idx) for table, idx in self._indexes.items()})

    def validation_rules(self) -> dict[str, str]:
        """Copy of the effective rule set."""
        return dict(self._rules)

    def tables(self) -> list[str]:
        return list(self._schema)

    def columns(self, table: str) -> list[str]:
        """Declared columns of a table, in declaration order."""
        if table not in self._schema:
            raise ValueError(f"Table '{table}' is not part of layer {self.layer_name}")
        return list(self._schema[table])

    # ------------------------------------------------------------------
    # Transformation
    # ------------------------------------------------------------------

    def new_context(self, batch_id: str | None = None) -> TransformContext:
        """Capture the clock and batch id for one transform call."""
        now = self.clock.now()
        if self.uses_batch_id and batch_id is None:
            batch_id = generate_batch_id(now)
        return TransformContext(now=now, batch_id=batch_id)

    def apply(self, record: Mapping[str, Any], context: TransformContext) -> Record:
        """transform_record with the layer name attached to any failure."""
        try:
            return self.transform_record(record, context)
        except RecordTransformError as e:
            e.layer = self.layer_name
            raise

    def transform(self, records: Iterable[Mapping[str, Any]], batch_id: str | None = None) -> list[Record]:
        """
        Transform a batch of records.

        Args:
            records: Input records
            batch_id: Batch identifier to stamp (generated when omitted)

        Returns:
            New records, one per input record

        Raises:
            RecordTransformError: On the first malformed record
        """
        context = self.new_context(batch_id)
        return [self.apply(record, context) for record in records]

    def transform_batch(self, records: Iterable[Mapping[str, Any]], batch_id: str | None = None) -> StageResult:
        """
        Transform a batch, skipping malformed records instead of aborting.

        Args:
            records: Input records
            batch_id: Batch identifier to stamp (generated when omitted)

        Returns:
            StageResult with transformed records and per-record errors
        """
        context = self.new_context(batch_id)
        result = StageResult()

        for record in records:
            try:
                result.records.append(self.apply(record, context))
            except RecordTransformError as e:
                result.errors.append(e)

        self.report_batch(result)
        return result

    def report_batch(self, result: StageResult) -> None:
        """Log skipped records and count outcomes for a finished batch."""
        for e in result.errors:
            logger.warning(
                "Skipping malformed record",
                extra={
                    "layer": self.layer_name,
                    "record_id": e.record_id,
                    "field": e.field,
                    "error": e.message,
                },
            )

        metrics.record_layer_batch(self.layer_name, len(result.records), result.failed_count)

    # ------------------------------------------------------------------
    # Data quality
    # ------------------------------------------------------------------

    def validate_data_quality(
        self,
        records: Iterable[Mapping[str, Any]],
        table: str | None = None,
    ) -> list[ValidationIssue]:
        """
        Check records against the layer's validation rules.

        Every rule token of every declared field is evaluated on every
        record; each failure adds one issue and evaluation continues.

        Args:
            records: Records to check
            table: Only evaluate rules whose field is a column of this table

        Returns:
            Collected issues (empty when every rule is satisfied)
        """
        fields = None
        if table is not None:
            fields = set(self.columns(table)) & self.rule_engine.fields

        issues = self.rule_engine.validate_batch(records, fields)

        metrics.record_validation_issues(self.layer_name, (issue.rule for issue in issues))
        if issues:
            logger.info(
                "Data quality issues found",
                extra={"layer": self.layer_name, "table": table, "issue_count": len(issues)},
            )
        return issues

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(tables={len(self._schema)}, rules={len(self._rules)})"
