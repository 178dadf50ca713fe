"""
Input validation utilities for dynamic SQL and file inputs.

Table and column names, declared column types and file paths reach SQL
text or the filesystem from layer descriptors, configuration and the CLI;
these checks keep them to a safe shape before use.
"""

import re


class InputValidationError(ValueError):
    """Raised when input validation fails."""
    pass


# Declared column types, e.g. "DECIMAL(12,2)", "VARCHAR(50) UNIQUE", "BIGINT PRIMARY KEY"
_SQL_TYPE_PATTERN = re.compile(
    r"^(BIGINT|INT|INTEGER|SMALLINT|BOOLEAN|DATE|TIMESTAMP|TEXT|JSON|JSONB"
    r"|DECIMAL\(\d+,\d+\)|NUMERIC\(\d+,\d+\)|VARCHAR\(\d+\))"
    r"( PRIMARY KEY| UNIQUE| NOT NULL)*$",
    re.IGNORECASE,
)


def sanitize_sql_identifier(identifier: str, field_name: str = "identifier") -> str:
    """
    Sanitize an SQL identifier (table name, column name, index name).

    Args:
        identifier: The identifier to sanitize
        field_name: Name of the field (for error messages)

    Returns:
        The validated identifier

    Raises:
        InputValidationError: If validation fails

    Examples:
        >>> sanitize_sql_identifier("ods_orders")
        'ods_orders'
        >>> sanitize_sql_identifier("orders; DROP TABLE users;")  # doctest: +SKIP
        InputValidationError: identifier contains invalid characters
    """
    if not identifier or not isinstance(identifier, str):
        raise InputValidationError(f"{field_name} must be a non-empty string")

    identifier = identifier.strip()

    # SQL identifiers: alphanumeric and underscores only, must start with letter or underscore
    if not re.match(r'^[a-zA-Z_][a-zA-Z0-9_]*$', identifier):
        raise InputValidationError(
            f"{field_name} contains invalid characters. "
            "SQL identifiers must start with a letter or underscore and contain only "
            "alphanumeric characters and underscores."
        )

    if len(identifier) > 63:  # PostgreSQL limit
        raise InputValidationError(f"{field_name} exceeds PostgreSQL maximum length of 63 characters")

    return identifier


def validate_sql_type(declared_type: str, field_name: str = "column type") -> str:
    """
    Validate a declared column type against the supported type grammar.

    Examples:
        >>> validate_sql_type("DECIMAL(12,2)")
        'DECIMAL(12,2)'
        >>> validate_sql_type("INT; DROP TABLE x")  # doctest: +SKIP
        InputValidationError: column type 'INT; DROP TABLE x' is not supported
    """
    if not isinstance(declared_type, str) or not _SQL_TYPE_PATTERN.match(declared_type.strip()):
        raise InputValidationError(f"{field_name} {declared_type!r} is not supported")
    return declared_type.strip()


def validate_column_list(columns: str, field_name: str = "index columns") -> list[str]:
    """
    Split and validate a comma-separated column list, e.g. "year,month".
    """
    names = [name.strip() for name in str(columns or "").split(",") if name.strip()]
    if not names:
        raise InputValidationError(f"{field_name} must name at least one column")
    return [sanitize_sql_identifier(name, field_name) for name in names]


def validate_file_path(file_path: str, field_name: str = "file_path", allow_wildcards: bool = False) -> str:
    """
    Validate a file path for security.

    Prevents path traversal and ensures the path is reasonable.

    Args:
        file_path: The file path to validate
        field_name: Name of the field (for error messages)
        allow_wildcards: Whether to allow wildcards (* and ?) in the path

    Returns:
        The validated file path (stripped of whitespace)

    Raises:
        InputValidationError: If validation fails

    Examples:
        >>> validate_file_path("/data/orders.csv")
        '/data/orders.csv'
        >>> validate_file_path("/data/*.csv", allow_wildcards=True)
        '/data/*.csv'
    """
    if not file_path or not isinstance(file_path, str):
        raise InputValidationError(f"{field_name} must be a non-empty string")

    file_path = file_path.strip()

    if not file_path:
        raise InputValidationError(f"{field_name} cannot be empty or whitespace-only")

    if ".." in file_path:
        raise InputValidationError(f"{field_name} contains path traversal characters (..)")

    if "\x00" in file_path:
        raise InputValidationError(f"{field_name} contains null bytes")

    if not allow_wildcards and ("*" in file_path or "?" in file_path):
        raise InputValidationError(
            f"{field_name} contains wildcards (* or ?). "
            "If this is intentional, set allow_wildcards=True."
        )

    if len(file_path) > 4096:  # Linux PATH_MAX
        raise InputValidationError(f"{field_name} exceeds maximum length of 4096 characters")

    return file_path
