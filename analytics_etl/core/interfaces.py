"""
Narrow interfaces of the collaborators the layers and orchestrator talk to.

Extraction and persistence live outside the transformation core; anything
implementing these protocols can be plugged in.
"""

from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from analytics_etl.core.models import ExtractQuery


class SourceExtractor(Protocol):
    """Reads raw rows from a source system."""

    def extract(self, query: ExtractQuery) -> list[dict[str, Any]]:
        """
        Return rows of query.source_name matching the equality filters.

        An unknown source yields an empty list rather than an error.
        """
        ...


class WarehouseStore(Protocol):
    """Provisions tables and persists finished record batches."""

    def provision(
        self,
        schema: Mapping[str, Mapping[str, str]],
        indexes: Mapping[str, Mapping[str, str]],
    ) -> None:
        ...

    def write_batch(self, table: str, records: Sequence[Mapping[str, Any]]) -> int:
        """Persist records into table, returning the number written."""
        ...
