"""
Stage runners: how one layer's transform is applied to a batch.

Records inside a stage are independent, so a runner may transform them
sequentially or fan them out over Spark. Either way the result is a
StageResult with good records and per-record errors; output order is not
guaranteed.
"""

from collections.abc import Iterable, Mapping
from typing import Any, Protocol

from pyspark.sql import SparkSession

from analytics_etl.core.errors import RecordTransformError
from analytics_etl.core.layers.base import DataWarehouseLayer, StageResult, TransformContext


class StageRunner(Protocol):
    def run(
        self,
        layer: DataWarehouseLayer,
        records: Iterable[Mapping[str, Any]],
        batch_id: str | None = None,
    ) -> StageResult:
        ...


class SequentialStageRunner:
    """Transforms records one after another in the driver process."""

    def run(
        self,
        layer: DataWarehouseLayer,
        records: Iterable[Mapping[str, Any]],
        batch_id: str | None = None,
    ) -> StageResult:
        return layer.transform_batch(records, batch_id)

    def __repr__(self) -> str:
        return "SequentialStageRunner()"


def _transform_one(layer: DataWarehouseLayer, context: TransformContext, record: Mapping[str, Any]):
    try:
        return True, layer.apply(record, context)
    except RecordTransformError as e:
        return False, e


def create_spark_session(app_name: str = "AnalyticsETL", master: str = "local[*]") -> SparkSession:
    """
    Create (or reuse) a local Spark session.

    Args:
        app_name: Application name
        master: Spark master URL

    Returns:
        SparkSession
    """
    return SparkSession.builder \
        .appName(app_name) \
        .master(master) \
        .config("spark.sql.adaptive.enabled", "true") \
        .config("spark.sql.adaptive.coalescePartitions.enabled", "true") \
        .getOrCreate()


class SparkStageRunner:
    """
    Transforms records in parallel with Spark (parallelize -> map -> collect).

    The clock is read and the batch id generated once on the driver, so
    every partition stamps the same values.
    """

    def __init__(self, spark: SparkSession, num_partitions: int | None = None):
        """
        Initialize runner.

        Args:
            spark: Active Spark session
            num_partitions: Partition count (Spark default parallelism when omitted)
        """
        self.spark = spark
        self.num_partitions = num_partitions

    def run(
        self,
        layer: DataWarehouseLayer,
        records: Iterable[Mapping[str, Any]],
        batch_id: str | None = None,
    ) -> StageResult:
        rows = [dict(record) for record in records]
        result = StageResult()
        if not rows:
            layer.report_batch(result)
            return result

        context = layer.new_context(batch_id)
        rdd = self.spark.sparkContext.parallelize(rows, self.num_partitions)
        outcomes = rdd.map(lambda record: _transform_one(layer, context, record)).collect()

        for ok, value in outcomes:
            if ok:
                result.records.append(value)
            else:
                result.errors.append(value)

        layer.report_batch(result)
        return result

    def __repr__(self) -> str:
        return f"SparkStageRunner(num_partitions={self.num_partitions})"
