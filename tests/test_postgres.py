import subprocess
from unittest import mock

import pytest

from servicekit.postgres import DatabaseTimeoutError, PostgresDB, new_test_postgres_db

RESET_QUERY = (
    "DROP SCHEMA public CASCADE;"
    "CREATE SCHEMA public;"
    "GRANT ALL ON SCHEMA public TO postgres;"
    "GRANT ALL ON SCHEMA public TO public;"
)


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn

    def execute(self, sql):
        self.conn.log.append(("execute", sql))

    def close(self):
        pass


class FakeConnection:
    def __init__(self, log):
        self.log = log

    def cursor(self):
        return FakeCursor(self)

    def commit(self):
        self.log.append(("commit",))

    def close(self):
        self.log.append(("close",))


def test_get_dsn():
    password = "password"
    db = PostgresDB(port=5432, name="test-postgres-db", user="postgres", password=password)
    assert db.get_dsn() == (
        "host=localhost port=5432 user=postgres password=password sslmode=disable dbname=test-postgres-db"
    )
    assert db.driver_name == "postgres"


def test_defaults():
    db = new_test_postgres_db(port=1234)
    assert (db.port, db.name, db.user, db.version) == (1234, "test-postgres-db", "postgres", "latest")
    assert db.timeout == 10


def test_default_port_in_range():
    db = new_test_postgres_db()
    assert 35000 <= db.port <= 65535


def test_reset_without_driver():
    with pytest.raises(RuntimeError):
        new_test_postgres_db(port=1).reset()


def test_reset_drops_schema():
    log = []
    dsns = []

    def connect(dsn):
        dsns.append(dsn)
        return FakeConnection(log)

    db = new_test_postgres_db(port=1, connect=connect)
    db.reset()
    assert dsns == [db.get_dsn()]
    assert log == [("execute", RESET_QUERY), ("commit",), ("close",)]


def test_reset_with_migrations():
    log = []
    db = new_test_postgres_db(
        port=1,
        connect=lambda dsn: FakeConnection(log),
        migrate_down=lambda conn: log.append(("down",)),
        migrate_up=lambda conn: log.append(("up",)),
    )
    db.reset()
    assert log == [("down",), ("up",), ("close",)]


def test_check_connection_timeout():
    calls = []
    db = new_test_postgres_db(port=1, timeout=0.1, connect=calls.append)
    with pytest.raises(DatabaseTimeoutError, match="testing database error: database connection timed out"):
        db.check_connection()
    assert calls == []


def test_check_connection_success():
    log = []
    db = new_test_postgres_db(port=1, timeout=2, connect=lambda dsn: FakeConnection(log))
    db.check_connection()
    assert log == [("close",)]


def _docker(calls):
    def fake_run(args, **kwargs):
        calls.append(list(args))
        return subprocess.CompletedProcess(args, 0, stdout="container-id\n")

    return fake_run


def test_run_as_docker_container():
    calls = []
    password = "password"
    db = new_test_postgres_db(
        port=5432, password=password, timeout=2, connect=lambda dsn: FakeConnection([])
    )
    with mock.patch("servicekit.process.subprocess.run", side_effect=_docker(calls)):
        cleanup = db.run_as_docker_container()
        assert calls == [
            [
                "docker", "run", "-d",
                "--publish=5432:5432",
                "--env=POSTGRES_DB=test-postgres-db",
                "--env=POSTGRES_PASSWORD=password",
                "--env=POSTGRES_USER=postgres",
                "--detach",
                "--rm",
                "postgres:latest",
            ]
        ]
        assert cleanup() is None
    assert calls[-1] == ["docker", "kill", "container-id"]
    assert len(calls) == 2


def test_run_as_docker_container_cleans_up_on_timeout():
    calls = []

    def refuse(dsn):
        raise OSError("connection refused")

    db = new_test_postgres_db(port=5432, timeout=0.6, connect=refuse)
    with mock.patch("servicekit.process.subprocess.run", side_effect=_docker(calls)):
        with pytest.raises(DatabaseTimeoutError):
            db.run_as_docker_container()
    assert calls[-1] == ["docker", "kill", "container-id"]
    assert len(calls) == 2