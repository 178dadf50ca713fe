"""
Command-line interface for the layered analytics ETL.

Usage:
    python -m analytics_etl.cli.etl_cli run --input-dir <dir> [options]
    python -m analytics_etl.cli.etl_cli schema [--layer dwd]
    python -m analytics_etl.cli.etl_cli date-dimensions --start 2024-01-01 --end 2024-01-31
"""

import argparse
import json
import sys
from datetime import date

from analytics_etl.batch.pipeline import LayeredETLPipeline
from analytics_etl.batch.readers.postgres import PostgresSourceExtractor
from analytics_etl.batch.readers.spark_files import SparkFileSourceExtractor
from analytics_etl.batch.runners import SequentialStageRunner, SparkStageRunner, create_spark_session
from analytics_etl.core.config import load_config
from analytics_etl.core.errors import AnalyticsETLError
from analytics_etl.core.layers import ADSLayer, DWDLayer, DWSLayer, ODSLayer
from analytics_etl.core.layers.dwd import generate_date_dimensions
from analytics_etl.observability.logger import configure_logging, get_logger
from analytics_etl.observability.metrics import start_metrics_server
from analytics_etl.warehouse.connection import DatabaseConnectionPool
from analytics_etl.warehouse.store import InMemoryWarehouse, PostgresWarehouse, render_ddl


logger = get_logger(__name__)

LAYERS = {
    "ods": ODSLayer,
    "dwd": DWDLayer,
    "dws": DWSLayer,
    "ads": ADSLayer,
}


def parse_filters(values: list[str] | None) -> dict[str, dict[str, str]]:
    """
    Parse repeated --filter arguments of the form source.column=value.

    Raises:
        ValueError: If an argument does not match the form
    """
    filters: dict[str, dict[str, str]] = {}
    for value in values or []:
        target, sep, expected = value.partition("=")
        source, dot, column = target.partition(".")
        if not sep or not dot or not source or not column:
            raise ValueError(f"Invalid filter '{value}', expected source.column=value")
        filters.setdefault(source, {})[column] = expected
    return filters


def create_pool(args) -> DatabaseConnectionPool:
    pool = DatabaseConnectionPool(
        host=args.db_host,
        port=args.db_port,
        database=args.db_name,
        user=args.db_user,
        password=args.db_password,
    )
    pool.open()
    return pool


def run_command(args):
    """
    Execute a full ETL run.

    Args:
        args: Command-line arguments
    """
    try:
        config = load_config(args.config)
        filters = parse_filters(args.filter)
    except (AnalyticsETLError, ValueError) as e:
        logger.error(f"Invalid run configuration: {e}")
        sys.exit(1)

    runner_name = args.runner or config.etl.stage_runner
    needs_spark = runner_name == "spark" or args.input_dir is not None

    spark = None
    pool = None
    try:
        if needs_spark:
            logger.info("Creating Spark session...")
            spark = create_spark_session("AnalyticsETL")

        if args.input_dir:
            logger.info(f"Reading sources from {args.input_dir} ({args.format})")
            extractor = SparkFileSourceExtractor(spark, args.input_dir, args.format)
        else:
            logger.info("Reading sources from PostgreSQL")
            pool = create_pool(args)
            extractor = PostgresSourceExtractor(pool, schema_name=args.source_schema)

        if args.dry_run:
            logger.info("DRY RUN MODE: results are kept in memory, nothing is written")
            store = InMemoryWarehouse()
        else:
            if pool is None:
                pool = create_pool(args)
            store = PostgresWarehouse(pool)

        runner = SparkStageRunner(spark) if runner_name == "spark" else SequentialStageRunner()

        if args.metrics_port:
            start_metrics_server(args.metrics_port)

        pipeline = LayeredETLPipeline(extractor, store, config=config, runner=runner)
        summary = pipeline.run_full_etl(filters=filters, aggregation_period=args.period)

        print(summary.model_dump_json(indent=2))

        if summary.status == "failed":
            logger.error(f"ETL run {summary.batch_id} failed: {len(summary.errors)} errors")
            sys.exit(1)

    except Exception as e:
        logger.error(f"Error during ETL run: {e}", exc_info=True)
        sys.exit(1)
    finally:
        if pool is not None:
            pool.close()
        if spark is not None:
            spark.stop()


def schema_command(args):
    """Print CREATE TABLE / CREATE INDEX statements for one or all layers."""
    names = list(LAYERS) if args.layer == "all" else [args.layer]
    for name in names:
        layer = LAYERS[name]()
        print(f"-- {layer.layer_name}")
        print(render_ddl(layer.schema(), layer.indexes()))
        print()


def date_dimensions_command(args):
    """Print generated date-dimension rows as JSON."""
    try:
        start = date.fromisoformat(args.start)
        end = date.fromisoformat(args.end)
    except ValueError as e:
        logger.error(f"Invalid date: {e}")
        sys.exit(1)

    rows = generate_date_dimensions(start, end)
    print(json.dumps(rows, indent=2, default=str))


def add_database_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--db-host", help="Database host (default: $DB_HOST or localhost)")
    parser.add_argument("--db-port", type=int, help="Database port (default: $DB_PORT or 5432)")
    parser.add_argument("--db-name", help="Database name (default: $DB_NAME or analytics)")
    parser.add_argument("--db-user", help="Database user (default: $DB_USER or etl)")
    parser.add_argument("--db-password", help="Database password (default: $DB_PASSWORD)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Layered analytics ETL (ODS -> DWD -> DWS -> ADS)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Full run from CSV exports into PostgreSQL
  python -m analytics_etl.cli.etl_cli run --input-dir data/exports

  # Dry run with weekly aggregation, paid orders only
  python -m analytics_etl.cli.etl_cli run --input-dir data/exports --dry-run \\
      --period weekly --filter orders.status=paid

  # Full run reading the source tables from PostgreSQL, transformed on Spark
  python -m analytics_etl.cli.etl_cli run --source-schema shop --runner spark

  # Print the DDL of the summary layer
  python -m analytics_etl.cli.etl_cli schema --layer dws

  # Generate January 2024 date dimensions
  python -m analytics_etl.cli.etl_cli date-dimensions --start 2024-01-01 --end 2024-01-31
        """
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: LOG_LEVEL env var, then INFO)"
    )
    parser.add_argument(
        "--log-format",
        choices=["json", "text"],
        help="Log output format (default: LOG_FORMAT env var, then json)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Run command
    run_parser = subparsers.add_parser("run", help="Run the full ETL")
    run_parser.add_argument(
        "--config",
        help="Path to pipeline YAML (default: config/pipeline.yaml when present)"
    )
    run_parser.add_argument(
        "--input-dir",
        help="Directory with one file per source (orders.csv, users.csv, ...); "
             "reads PostgreSQL when omitted"
    )
    run_parser.add_argument(
        "--format",
        default="csv",
        choices=["csv", "json", "parquet"],
        help="Input file format (default: csv)"
    )
    run_parser.add_argument(
        "--source-schema",
        help="PostgreSQL schema of the source tables"
    )
    run_parser.add_argument(
        "--period",
        choices=["daily", "weekly", "monthly"],
        help="Aggregation period (default: from config)"
    )
    run_parser.add_argument(
        "--filter",
        action="append",
        metavar="SOURCE.COLUMN=VALUE",
        help="Equality filter on a source table (repeatable)"
    )
    run_parser.add_argument(
        "--runner",
        choices=["sequential", "spark"],
        help="Stage runner (default: from config)"
    )
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Keep results in memory instead of writing to the warehouse"
    )
    run_parser.add_argument(
        "--metrics-port",
        type=int,
        help="Expose Prometheus metrics on this port during the run"
    )
    add_database_arguments(run_parser)

    # Schema command
    schema_parser = subparsers.add_parser("schema", help="Print warehouse DDL")
    schema_parser.add_argument(
        "--layer",
        default="all",
        choices=["all", *LAYERS],
        help="Layer to print (default: all)"
    )

    # Date dimensions command
    dates_parser = subparsers.add_parser("date-dimensions", help="Print date dimension rows")
    dates_parser.add_argument("--start", required=True, help="First day (YYYY-MM-DD)")
    dates_parser.add_argument("--end", required=True, help="Last day (YYYY-MM-DD)")

    return parser


def main():
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.log_level or args.log_format:
        configure_logging(args.log_level, args.log_format)

    # Execute command
    if args.command == "run":
        run_command(args)
    elif args.command == "schema":
        schema_command(args)
    elif args.command == "date-dimensions":
        date_dimensions_command(args)


if __name__ == "__main__":
    main()
