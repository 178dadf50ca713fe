"""
File-based source extractor using Spark (CSV, JSON, Parquet).

Each source is a file or directory named after it, e.g. <base>/orders.csv.
"""

import os
from typing import Any

from pyspark.sql import DataFrame, SparkSession
from pyspark.sql.functions import col
from pyspark.sql.types import StructType
from pyspark.errors import AnalysisException

from analytics_etl.core.errors import ExtractionError
from analytics_etl.core.models import ExtractQuery
from analytics_etl.utils.validation import validate_file_path

SUPPORTED_FORMATS = ("csv", "json", "parquet")


class FileReader:
    """
    Generic file reader supporting multiple formats.
    """

    def __init__(self, spark: SparkSession):
        """
        Initialize file reader.

        Args:
            spark: Active Spark session
        """
        self.spark = spark

    def read(
        self,
        file_path: str,
        file_format: str = "csv",
        schema: StructType | None = None,
        header: bool = True,
        delimiter: str = ",",
    ) -> DataFrame:
        """
        Read file into Spark DataFrame.

        CSV files are read with inferred types unless a schema is given.

        Args:
            file_path: Path to file or directory
            file_format: Format (csv, json, parquet)
            schema: Optional explicit schema
            header: Whether CSV has header row
            delimiter: CSV field delimiter

        Returns:
            Spark DataFrame

        Raises:
            ValueError: If file format is unsupported
        """
        file_format = file_format.lower()
        reader = self.spark.read
        if schema:
            reader = reader.schema(schema)

        if file_format == "csv":
            if not schema:
                reader = reader.option("inferSchema", "true")
            return reader \
                .option("header", str(header).lower()) \
                .option("delimiter", delimiter) \
                .option("mode", "PERMISSIVE") \
                .csv(file_path)
        elif file_format == "json":
            return reader.json(file_path)
        elif file_format == "parquet":
            return self.spark.read.parquet(file_path)
        else:
            raise ValueError(f"Unsupported file format: {file_format}")


class SparkFileSourceExtractor:
    """
    Serves sources from files under a base directory.

    Equality filters are applied as Spark column predicates on the string
    form of each column before rows are collected to the driver.
    """

    def __init__(self, spark: SparkSession, base_path: str, file_format: str = "csv"):
        """
        Initialize extractor.

        Args:
            spark: Active Spark session
            base_path: Directory holding one file per source
            file_format: csv, json or parquet

        Raises:
            ValueError: If file format is unsupported
        """
        if file_format.lower() not in SUPPORTED_FORMATS:
            raise ValueError(f"Unsupported file format: {file_format}")
        self.reader = FileReader(spark)
        self.base_path = validate_file_path(base_path, "base_path")
        self.file_format = file_format.lower()

    def source_path(self, source_name: str) -> str:
        return os.path.join(self.base_path, f"{source_name}.{self.file_format}")

    def extract(self, query: ExtractQuery) -> list[dict[str, Any]]:
        """
        Read, filter and collect one source.

        A missing file yields an empty list.

        Raises:
            ExtractionError: If the file exists but cannot be read or filtered
        """
        path = self.source_path(query.source_name)
        if not os.path.exists(path):
            return []

        try:
            df = self.reader.read(path, self.file_format)
            for column, value in query.filters.items():
                if column not in df.columns:
                    return []
                df = df.filter(col(column).cast("string") == value)
            return [row.asDict(recursive=True) for row in df.collect()]
        except AnalysisException as e:
            raise ExtractionError(query.source_name, str(e)) from e
