"""
Unit tests for the command-line interface.
"""

import json

import pytest

from analytics_etl.cli.etl_cli import (
    build_parser,
    date_dimensions_command,
    parse_filters,
    run_command,
    schema_command,
)


class TestParseFilters:
    """Tests for parse_filters"""

    def test_groups_by_source(self):
        filters = parse_filters(["orders.status=paid", "orders.user_id=7", "users.country=China"])

        assert filters == {
            "orders": {"status": "paid", "user_id": "7"},
            "users": {"country": "China"},
        }

    def test_value_may_contain_equals(self):
        assert parse_filters(["orders.note=a=b"]) == {"orders": {"note": "a=b"}}

    def test_none(self):
        assert parse_filters(None) == {}

    @pytest.mark.parametrize("value", ["orders=paid", "status=paid", ".status=paid", "orders.=paid", "orders.status"])
    def test_malformed(self, value):
        with pytest.raises(ValueError, match="source.column=value"):
            parse_filters([value])


class TestParser:
    """Tests for build_parser"""

    def test_run_arguments(self):
        args = build_parser().parse_args([
            "run", "--input-dir", "data", "--dry-run", "--period", "weekly",
            "--filter", "orders.status=paid", "--filter", "users.country=China",
        ])

        assert args.command == "run"
        assert args.input_dir == "data"
        assert args.format == "csv"
        assert args.dry_run is True
        assert args.period == "weekly"
        assert args.filter == ["orders.status=paid", "users.country=China"]
        assert args.runner is None

    def test_rejects_unknown_period(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["run", "--period", "hourly"])

    def test_schema_default_layer(self):
        assert build_parser().parse_args(["schema"]).layer == "all"


class TestCommands:
    """Tests for the command handlers"""

    def test_schema_single_layer(self, capsys):
        schema_command(build_parser().parse_args(["schema", "--layer", "dws"]))

        output = capsys.readouterr().out
        assert output.startswith("-- DWS")
        assert 'CREATE TABLE IF NOT EXISTS "dws_sales_daily"' in output
        assert "ods_orders" not in output

    def test_schema_all_layers(self, capsys):
        schema_command(build_parser().parse_args(["schema"]))

        output = capsys.readouterr().out
        for name in ("-- ODS", "-- DWD", "-- DWS", "-- ADS"):
            assert name in output

    def test_date_dimensions(self, capsys):
        date_dimensions_command(build_parser().parse_args(["date-dimensions", "--start", "2024-01-01", "--end", "2024-01-03"]))

        rows = json.loads(capsys.readouterr().out)
        assert [row["date_key"] for row in rows] == [20240101, 20240102, 20240103]

    def test_date_dimensions_invalid_date(self):
        args = build_parser().parse_args(["date-dimensions", "--start", "2024-13-01", "--end", "2024-01-03"])

        with pytest.raises(SystemExit) as exc_info:
            date_dimensions_command(args)
        assert exc_info.value.code == 1

    def test_run_rejects_bad_filter(self):
        args = build_parser().parse_args(["run", "--filter", "status=paid"])

        with pytest.raises(SystemExit) as exc_info:
            run_command(args)
        assert exc_info.value.code == 1

    def test_run_rejects_missing_config(self, tmp_path):
        args = build_parser().parse_args(["run", "--config", str(tmp_path / "absent.yaml")])

        with pytest.raises(SystemExit):
            run_command(args)
