"""
PostgreSQL connection pool for the warehouse and the source extractor

Connection settings come from arguments or ``DB_*`` environment variables.
Rows come back as dictionaries; DDL can be applied as one transaction so a
layer is provisioned completely or not at all.
"""
import os
import time
from collections.abc import Iterable, Sequence
from contextlib import contextmanager

from psycopg import OperationalError
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool
from pydantic import BaseModel, Field, SecretStr

from analytics_etl.observability.logger import get_logger

logger = get_logger(__name__)


class ConnectionSettings(BaseModel):
    """Where and how to reach the warehouse database."""

    host: str = "localhost"
    port: int = Field(5432, gt=0)
    database: str = "analytics"
    user: str = "etl"
    password: SecretStr
    connect_timeout: int = Field(30, gt=0)

    @classmethod
    def resolve(cls, timeout: float = 30.0, **overrides) -> "ConnectionSettings":
        """
        Merge explicit values over DB_HOST, DB_PORT, DB_NAME, DB_USER and DB_PASSWORD

        Raises:
            ValueError: If no password is configured
        """
        password = overrides.get("password") or os.getenv("DB_PASSWORD")
        if not password:
            raise ValueError(
                "Database password must be provided. "
                "Set DB_PASSWORD environment variable or pass to constructor."
            )
        return cls(
            host=overrides.get("host") or os.getenv("DB_HOST", "localhost"),
            port=overrides.get("port") or int(os.getenv("DB_PORT", "5432")),
            database=overrides.get("database") or os.getenv("DB_NAME", "analytics"),
            user=overrides.get("user") or os.getenv("DB_USER", "etl"),
            password=password,
            connect_timeout=max(int(timeout), 1),
        )

    @property
    def conninfo(self) -> str:
        return (
            f"host={self.host} port={self.port} dbname={self.database} "
            f"user={self.user} password={self.password.get_secret_value()} "
            f"connect_timeout={self.connect_timeout}"
        )


class DatabaseConnectionPool:
    """
    Pooled psycopg3 connections to the warehouse database

    Usage:
        with DatabaseConnectionPool(database="analytics") as pool:
            rows = pool.execute_query("SELECT * FROM dwd_dim_user WHERE is_current = %s", (True,))
    """

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        database: str | None = None,
        user: str | None = None,
        password: str | None = None,
        min_size: int = 1,
        max_size: int = 5,
        timeout: float = 30.0,
    ) -> None:
        """
        Args:
            host, port, database, user, password: Connection settings; each
                falls back to its DB_* environment variable
            min_size: Minimum pool size
            max_size: Maximum pool size
            timeout: Connection and pool checkout timeout in seconds

        Raises:
            ValueError: If no password is configured
        """
        self.settings = ConnectionSettings.resolve(
            timeout=timeout, host=host, port=port, database=database, user=user, password=password
        )
        self.min_size = min_size
        self.max_size = max_size
        self.timeout = timeout
        self._pool: ConnectionPool | None = None

    @property
    def conninfo(self) -> str:
        return self.settings.conninfo

    def open(self, max_retries: int = 3, retry_delay: float = 2.0) -> None:
        """
        Open the pool, retrying while the database is not reachable yet

        Raises:
            OperationalError: If every attempt fails
        """
        if self._pool is not None:
            return

        pool = ConnectionPool(
            conninfo=self.conninfo,
            min_size=self.min_size,
            max_size=self.max_size,
            timeout=self.timeout,
            kwargs={"row_factory": dict_row},
            open=False,
        )

        for attempt in range(1, max_retries + 1):
            try:
                pool.open(wait=True, timeout=self.timeout)
                self._pool = pool
                logger.info(
                    "Connection pool opened",
                    extra={"host": self.settings.host, "database": self.settings.database, "attempt": attempt},
                )
                return
            except OperationalError as e:
                logger.warning(
                    "Database not reachable",
                    extra={"host": self.settings.host, "attempt": attempt, "max_retries": max_retries, "error": str(e)},
                )
                if attempt == max_retries:
                    pool.close()
                    raise OperationalError(
                        f"Failed to connect to database after {max_retries} attempts: {e}"
                    ) from e
                time.sleep(retry_delay)

    def close(self) -> None:
        if self._pool is not None:
            self._pool.close()
            self._pool = None

    @contextmanager
    def get_connection(self):
        """
        Borrow a connection; it returns to the pool when the block exits

        Raises:
            RuntimeError: If the pool is not open
        """
        if self._pool is None:
            raise RuntimeError("Connection pool is not open. Call open() first.")

        with self._pool.connection() as conn:
            yield conn

    def execute_query(self, query, params: Sequence | None = None) -> list[dict]:
        """Run a SELECT (SQL text or psycopg.sql composable) and return its rows."""
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                return cur.fetchall()

    def execute_command(self, command, params: Sequence | None = None) -> int:
        """
        Run one DDL/INSERT/UPDATE/DELETE statement and commit

        Returns:
            Number of rows affected
        """
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(command, params)
                rowcount = cur.rowcount
            conn.commit()
        return rowcount

    def execute_batch(self, command, params_list: Sequence[Sequence]) -> int:
        """
        Run a statement once per parameter tuple inside a single transaction

        Returns:
            Number of parameter tuples applied
        """
        if not params_list:
            return 0
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.executemany(command, params_list)
            conn.commit()
        return len(params_list)

    def execute_script(self, statements: Iterable) -> int:
        """
        Run several statements in one transaction; nothing is applied if one fails

        Returns:
            Number of statements executed
        """
        executed = 0
        with self.get_connection() as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    for statement in statements:
                        cur.execute(statement)
                        executed += 1
        return executed

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
