"""A throwaway PostgreSQL database run in docker for integration tests.

Connections are made through ``connect``, a DB-API ``connect`` function
that takes a DSN string.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .network import PORT_RANGE_MAX, get_open_port_in_range
from .process import run_container

__all__ = ["DatabaseTimeoutError", "PostgresDB", "new_test_postgres_db"]

PASSWORD = "password"
_POLL_INTERVAL = 0.5
_RESET_QUERY = (
    "DROP SCHEMA public CASCADE;"
    "CREATE SCHEMA public;"
    "GRANT ALL ON SCHEMA public TO postgres;"
    "GRANT ALL ON SCHEMA public TO public;"
)


class DatabaseTimeoutError(TimeoutError):
    """The test database did not accept connections in time."""

    def __init__(self) -> None:
        super().__init__("testing database error: database connection timed out")


@dataclass(frozen=True)
class PostgresDB:
    """Settings of a test PostgreSQL database."""

    port: int
    name: str = "test-postgres-db"
    user: str = "postgres"
    password: str = PASSWORD
    version: str = "latest"
    timeout: float = 10.0
    migrate_up: Callable[[Any], Any] | None = None
    migrate_down: Callable[[Any], Any] | None = None
    connect: Callable[[str], Any] | None = None

    @property
    def driver_name(self) -> str:
        return "postgres"

    def get_dsn(self) -> str:
        """Return the connection string of the database."""
        return (
            f"host=localhost port={self.port} user={self.user} "
            f"password={self.password} sslmode=disable dbname={self.name}"
        )

    def _open(self) -> Any:
        if self.connect is None:
            raise RuntimeError("no database driver configured")
        return self.connect(self.get_dsn())

    def reset(self) -> None:
        """Drop all tables, then rebuild them with ``migrate_up`` if it is set.

        With ``migrate_down`` set it tears the schema down instead of the
        default drop of the public schema.
        """
        conn = self._open()
        try:
            if self.migrate_down is not None:
                self.migrate_down(conn)
            else:
                cursor = conn.cursor()
                try:
                    cursor.execute(_RESET_QUERY)
                finally:
                    cursor.close()
                conn.commit()
            if self.migrate_up is not None:
                self.migrate_up(conn)
        finally:
            conn.close()

    def run_as_docker_container(self) -> Callable[[], None]:
        """Start the database in docker and wait for it; return a function that stops it."""
        cleanup = run_container(
            f"postgres:{self.version}",
            [
                f"--publish={self.port}:5432",
                f"--env=POSTGRES_DB={self.name}",
                f"--env=POSTGRES_PASSWORD={self.password}",
                f"--env=POSTGRES_USER={self.user}",
                "--detach",
                "--rm",
            ],
            [],
        )
        try:
            self.check_connection()
        except BaseException:
            cleanup()
            raise
        return cleanup

    def check_connection(self) -> None:
        """Retry connecting every half second until it works or ``timeout`` passes."""
        deadline = time.monotonic() + self.timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining < _POLL_INTERVAL:
                time.sleep(max(remaining, 0.0))
                raise DatabaseTimeoutError()
            time.sleep(_POLL_INTERVAL)
            try:
                conn = self._open()
            except RuntimeError:
                raise
            except Exception:
                continue
            conn.close()
            return


def new_test_postgres_db(**kwargs: Any) -> PostgresDB:
    """Create test database settings; the port defaults to the first free one from 35000."""
    if "port" not in kwargs:
        kwargs["port"] = get_open_port_in_range(35000, PORT_RANGE_MAX)
    return PostgresDB(**kwargs)