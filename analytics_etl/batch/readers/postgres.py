"""
PostgreSQL source extractor.

Reads source tables through the shared connection pool using
parameterised equality filters.
"""

from typing import Any

from psycopg import Error as PsycopgError
from psycopg import sql

from analytics_etl.core.errors import ExtractionError
from analytics_etl.core.models import ExtractQuery
from analytics_etl.utils.validation import InputValidationError, sanitize_sql_identifier
from analytics_etl.warehouse.connection import DatabaseConnectionPool


class PostgresSourceExtractor:
    """
    Runs ExtractQuery descriptions against a PostgreSQL source database.

    Table and column names are validated and quoted; filter values are
    always sent as parameters.
    """

    def __init__(self, pool: DatabaseConnectionPool, schema_name: str | None = None):
        """
        Initialize extractor.

        Args:
            pool: Open connection pool on the source database
            schema_name: Optional PostgreSQL schema holding the source tables
        """
        self.pool = pool
        self.schema_name = sanitize_sql_identifier(schema_name, "schema name") if schema_name else None

    def build_statement(self, query: ExtractQuery) -> sql.Composed:
        """
        Compose the SELECT for a query description.

        Raises:
            InputValidationError: If the table or a filter column is not a safe identifier
        """
        table = sanitize_sql_identifier(query.source_name, "source name")
        target = sql.Identifier(self.schema_name, table) if self.schema_name else sql.Identifier(table)

        statement = sql.SQL("SELECT * FROM {}").format(target)
        if query.filters:
            conditions = [
                sql.SQL("{} = {}").format(sql.Identifier(sanitize_sql_identifier(column, "filter column")), sql.Placeholder())
                for column in query.filters
            ]
            statement += sql.SQL(" WHERE ") + sql.SQL(" AND ").join(conditions)
        return statement

    def extract(self, query: ExtractQuery) -> list[dict[str, Any]]:
        """
        Fetch matching rows.

        Raises:
            ExtractionError: If the statement is invalid or the database fails
        """
        try:
            statement = self.build_statement(query)
            return [dict(row) for row in self.pool.execute_query(statement, query.params)]
        except (InputValidationError, PsycopgError) as e:
            raise ExtractionError(query.source_name, str(e)) from e
