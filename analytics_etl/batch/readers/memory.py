"""
In-memory source extractor for dry runs and tests.
"""

from collections.abc import Iterable, Mapping
from typing import Any

from analytics_etl.core.models import ExtractQuery


class InMemorySourceExtractor:
    """
    Serves rows from a {source_name: rows} mapping.

    Filters compare the string form of a row's value with the filter value,
    matching how equality filters reach a SQL source as text parameters.
    """

    def __init__(self, sources: Mapping[str, Iterable[Mapping[str, Any]]] | None = None):
        self.sources = {name: [dict(row) for row in rows] for name, rows in (sources or {}).items()}
        self.queries: list[ExtractQuery] = []

    def extract(self, query: ExtractQuery) -> list[dict[str, Any]]:
        self.queries.append(query)
        rows = self.sources.get(query.source_name, [])
        return [
            dict(row)
            for row in rows
            if all(column in row and str(row[column]) == value for column, value in query.filters.items())
        ]
