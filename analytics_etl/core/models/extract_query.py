"""
ExtractQuery model describing a filter-qualified read from a source system.
"""

from pydantic import BaseModel, Field


class ExtractQuery(BaseModel):
    """
    Description of a source extraction handed to a SourceExtractor.

    Attributes:
        source_name: Logical source table, e.g. "orders"
        filters: Equality filters (column -> value)
        sql: Parameterised SELECT text matching the filters
        params: Parameter values in placeholder order
    """

    source_name: str = Field(..., min_length=1)
    filters: dict[str, str] = Field(default_factory=dict)
    sql: str
    params: tuple[str, ...] = ()

    @classmethod
    def build(cls, source_name: str, filters: dict[str, str] | None = None) -> "ExtractQuery":
        """
        Build the query description for a source and its equality filters.

        Args:
            source_name: Source table name
            filters: Column -> value equality filters

        Returns:
            ExtractQuery with "%s" placeholders for every filter value
        """
        filters = {str(column): str(value) for column, value in (filters or {}).items()}
        sql = f"SELECT * FROM {source_name}"
        if filters:
            conditions = [f"{column} = %s" for column in filters]
            sql += " WHERE " + " AND ".join(conditions)
        return cls(
            source_name=source_name,
            filters=filters,
            sql=sql,
            params=tuple(filters.values()),
        )
