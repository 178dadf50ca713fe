"""
Warehouse stores for layer output.

Both stores accept a layer's (schema, indexes) descriptors at provisioning
time and persist finished batches. Rows are projected onto the declared
columns of their table; nested values (lists, dicts) are stored as JSON.
"""

import json
import re
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from psycopg import sql
from psycopg.types.json import Json

from analytics_etl.observability import metrics
from analytics_etl.observability.logger import get_logger
from analytics_etl.utils.validation import (
    sanitize_sql_identifier,
    validate_column_list,
    validate_sql_type,
)

from .connection import DatabaseConnectionPool

logger = get_logger(__name__)

_PRIMARY_KEY = re.compile(r"\bPRIMARY KEY\b", re.IGNORECASE)


def primary_key_column(columns: Mapping[str, str]) -> str | None:
    """Column declared PRIMARY KEY, if any."""
    for name, declared in columns.items():
        if _PRIMARY_KEY.search(declared):
            return name
    return None


def project_row(record: Mapping[str, Any], columns: Iterable[str]) -> dict[str, Any]:
    """Keep only the declared columns; missing columns become None."""
    return {name: record.get(name) for name in columns}


def to_json_value(value: Any) -> Any:
    """JSON-safe copy of a nested value (dates and decimals become strings)."""
    return json.loads(json.dumps(value, default=str, sort_keys=True))


def build_create_table(table: str, columns: Mapping[str, str]) -> sql.Composed:
    """
    CREATE TABLE IF NOT EXISTS statement for one table descriptor.

    Raises:
        InputValidationError: If a name or declared type is unsafe
    """
    definitions = [
        sql.SQL("{} {}").format(
            sql.Identifier(sanitize_sql_identifier(name, "column name")),
            sql.SQL(validate_sql_type(declared)),
        )
        for name, declared in columns.items()
    ]
    return sql.SQL("CREATE TABLE IF NOT EXISTS {} ({})").format(
        sql.Identifier(sanitize_sql_identifier(table, "table name")),
        sql.SQL(", ").join(definitions),
    )


def build_create_indexes(table: str, indexes: Mapping[str, str]) -> list[sql.Composed]:
    """
    CREATE INDEX IF NOT EXISTS statements for one table.

    Index names are prefixed with the table name since PostgreSQL index
    names share a namespace per schema.
    """
    statements = []
    for index_name, column_list in indexes.items():
        qualified = sanitize_sql_identifier(f"{table}_{index_name}"[:63], "index name")
        statements.append(
            sql.SQL("CREATE INDEX IF NOT EXISTS {} ON {} ({})").format(
                sql.Identifier(qualified),
                sql.Identifier(sanitize_sql_identifier(table, "table name")),
                sql.SQL(", ").join(sql.Identifier(column) for column in validate_column_list(column_list)),
            )
        )
    return statements


def render_ddl(schema: Mapping[str, Mapping[str, str]], indexes: Mapping[str, Mapping[str, str]]) -> str:
    """
    Plain-text DDL for a layer, without a database connection.

    Identifiers are quoted the way PostgreSQL expects.
    """
    def quote(name: str) -> str:
        return '"' + name.replace('"', '""') + '"'

    lines = []
    for table, columns in schema.items():
        table = sanitize_sql_identifier(table, "table name")
        body = ",\n".join(
            f"    {quote(sanitize_sql_identifier(name, 'column name'))} {validate_sql_type(declared)}"
            for name, declared in columns.items()
        )
        lines.append(f"CREATE TABLE IF NOT EXISTS {quote(table)} (\n{body}\n);")
        for index_name, column_list in indexes.get(table, {}).items():
            qualified = sanitize_sql_identifier(f"{table}_{index_name}"[:63], "index name")
            cols = ", ".join(quote(column) for column in validate_column_list(column_list))
            lines.append(f"CREATE INDEX IF NOT EXISTS {quote(qualified)} ON {quote(table)} ({cols});")
        lines.append("")
    return "\n".join(lines)


class InMemoryWarehouse:
    """
    Dictionary-backed store for dry runs and tests.

    Rows are kept per table keyed by primary key (append order when a table
    has none), so rewriting a row replaces it like an upsert would.
    """

    def __init__(self):
        self.schemas: dict[str, dict[str, str]] = {}
        self.indexes: dict[str, dict[str, str]] = {}
        self._tables: dict[str, dict[Any, dict[str, Any]]] = {}

    def provision(
        self,
        schema: Mapping[str, Mapping[str, str]],
        indexes: Mapping[str, Mapping[str, str]],
    ) -> None:
        for table, columns in schema.items():
            self.schemas[table] = dict(columns)
            self.indexes[table] = dict(indexes.get(table, {}))
            self._tables.setdefault(table, {})

    def write_batch(self, table: str, records: Sequence[Mapping[str, Any]]) -> int:
        """
        Store records in a provisioned table.

        Raises:
            KeyError: If the table was never provisioned
        """
        if table not in self.schemas:
            raise KeyError(f"Table '{table}' has not been provisioned")

        columns = self.schemas[table]
        key_column = primary_key_column(columns)
        rows = self._tables[table]

        for record in records:
            row = project_row(record, columns)
            key = row.get(key_column) if key_column else len(rows)
            rows[key] = row

        metrics.record_warehouse_write(table, len(records))
        return len(records)

    def rows(self, table: str) -> list[dict[str, Any]]:
        return list(self._tables.get(table, {}).values())

    def current_rows(self, table: str) -> list[dict[str, Any]]:
        """Rows still flagged is_current (all rows for non-dimension tables)."""
        return [row for row in self.rows(table) if row.get("is_current", True)]

    def row_counts(self) -> dict[str, int]:
        return {table: len(rows) for table, rows in self._tables.items()}


class PostgresWarehouse:
    """
    PostgreSQL-backed store.

    provision() runs CREATE TABLE / CREATE INDEX IF NOT EXISTS; write_batch()
    upserts on the primary key so rerunning a batch is idempotent.
    """

    def __init__(self, pool: DatabaseConnectionPool):
        """
        Initialize the store.

        Args:
            pool: Open database connection pool
        """
        self.pool = pool
        self.schemas: dict[str, dict[str, str]] = {}

    def provision(
        self,
        schema: Mapping[str, Mapping[str, str]],
        indexes: Mapping[str, Mapping[str, str]],
    ) -> None:
        for table, columns in schema.items():
            statements = [build_create_table(table, columns), *build_create_indexes(table, indexes.get(table, {}))]
            self.pool.execute_script(statements)
            self.schemas[table] = dict(columns)
            logger.info("Provisioned table", extra={"table": table, "column_count": len(columns)})

    def _upsert_statement(self, table: str, columns: Mapping[str, str]) -> sql.Composed:
        names = list(columns)
        key_column = primary_key_column(columns)
        statement = sql.SQL("INSERT INTO {} ({}) VALUES ({})").format(
            sql.Identifier(table),
            sql.SQL(", ").join(sql.Identifier(name) for name in names),
            sql.SQL(", ").join(sql.Placeholder() for _ in names),
        )
        if key_column is None:
            return statement

        updates = [name for name in names if name != key_column]
        return statement + sql.SQL(" ON CONFLICT ({}) DO UPDATE SET {}").format(
            sql.Identifier(key_column),
            sql.SQL(", ").join(
                sql.SQL("{} = EXCLUDED.{}").format(sql.Identifier(name), sql.Identifier(name))
                for name in updates
            ),
        )

    @staticmethod
    def _adapt(value: Any) -> Any:
        # Strings in JSON columns are already serialized (e.g. raw_data)
        if isinstance(value, (dict, list, tuple)):
            return Json(to_json_value(value))
        return value

    def write_batch(self, table: str, records: Sequence[Mapping[str, Any]]) -> int:
        """
        Upsert records into a provisioned table.

        Raises:
            KeyError: If the table was never provisioned
        """
        if not records:
            return 0
        if table not in self.schemas:
            raise KeyError(f"Table '{table}' has not been provisioned")

        columns = self.schemas[table]
        params = [
            tuple(self._adapt(value) for value in project_row(record, columns).values())
            for record in records
        ]

        with metrics.track_duration(metrics.warehouse_write_duration_seconds, table=table):
            self.pool.execute_batch(self._upsert_statement(table, columns), params)

        metrics.record_warehouse_write(table, len(records))
        return len(records)

    def current_rows(self, table: str) -> list[dict[str, Any]]:
        """Rows flagged is_current of a provisioned dimension table."""
        query = sql.SQL("SELECT * FROM {} WHERE is_current").format(
            sql.Identifier(sanitize_sql_identifier(table, "table name"))
        )
        return self.pool.execute_query(query)
