# servicekit

Building blocks for services that keep their state in a SQL database and run
behind a health-checking orchestrator.

- **Transactions** give each request at most one lazily opened transaction,
  committed when the handler returns and rolled back when it raises.
- **Migration checks** make sure the database schema is at the version the
  code expects.
- **Health endpoints** serve liveness and readiness probes as a WSGI app,
  with ready-made DNS and HTTP checks.
- **Integration utilities** start binaries and docker containers, find free
  local ports and run a throwaway PostgreSQL database for tests.

The package has no runtime dependencies. The `test` extra installs pytest.

```
pip install servicekit
pip install "servicekit[test]"
```

## Per-request transactions (`servicekit.transaction`)

A database here is any object with a `begin(**options)` method that returns a
session with `commit()` and `rollback()` methods.

```python
from servicekit.transaction import begin_from_context, transactional

@transactional(db)
def create_user(request):
    session = begin_from_context()
    ...
```

Each call of the decorated handler runs with its own `Transaction`, made
current for the call. `current_transaction()` returns it, and
`begin_from_context(**options)` opens it on first use, passing the options to
`db.begin`; later calls return the same session. When the handler returns,
the transaction is committed and the callables registered with
`Transaction.add_after_commit_hook` are called with no arguments; when the
handler raises, it is rolled back and the exception propagates. A failed
commit raises `CommitError`, which keeps the underlying message in its
`detail` attribute.

`transactional_txn(txn)` does the same, copying the database and after-commit
hooks of an existing `Transaction`. `use_transaction(txn)` is a context
manager that makes `txn` current inside a `with` block.

A `Transaction` can also be used directly with `begin()`, `commit()` and
`rollback()`; its `current` property is the open session or `None`. A session
whose `closed` attribute is true counts as having lost its connection:
`rollback()` then raises `DatabaseUnavailableError` and `commit()` does
nothing.

Calling `begin_from_context()` with no current transaction raises
`TransactionMissingError`; a transaction without a database raises
`NoDatabaseError`. All of these derive from `TransactionError`.

## Checking the migration version (`servicekit.migrations`)

```python
from servicekit.migrations import max_version_from, verify_migration_version

validator = max_version_from("migrations")
verify_migration_version(connection, validator)
```

`max_version_from` scans a directory of `NN_name.up.sql` / `NN_name.down.sql`
files and returns a `VersionExactly` for the highest number found (0 for an
empty directory). `VersionExactly(target)` and `VersionRange(lower, upper)`
each have a `validate(version)` method. `verify_migration_version` reads the
`(version, dirty)` row of `schema_migrations` through a DB-API connection. A
badly named migration file, a wrong version or a dirty database raises
`MigrationVersionError`.

## Health endpoints (`servicekit.health`, `servicekit.checks`)

```python
from wsgiref.simple_server import make_server

from servicekit.checks import dns_probe_check, http_get_check
from servicekit.health import ChecksHandler

health = ChecksHandler("/healthz", "/ready")
health.add_liveness("upstream", http_get_check("http://localhost:8080/ping", 5.0))
health.add_readiness("dns", dns_probe_check("localhost", 5.0))

make_server("", 8086, health).serve_forever()
```

`ChecksHandler(health_path, ready_path, fail_fast=False)` is a WSGI
application; a missing leading `/` is added to each path. A check is a
callable that raises when unhealthy. A `GET` on either path answers `200 OK`
when every check of that endpoint passes and `503 Service Unavailable`
otherwise; other methods get `405`, other paths `404`. With `fail_fast` set,
the first failing check ends the probe. `handle(method, path, environ)`
returns the status without going through WSGI.

`ContextChecksHandler` works the same, but calls each check with the WSGI
environ of the request.

`dns_probe_check(host, timeout)` fails unless the host resolves within the
timeout; `http_get_check(url, timeout)` fails unless a GET answers 200,
never following redirects. Both raise `CheckError`.

## Integration-test utilities

```python
from servicekit.network import get_open_port
from servicekit.postgres import new_test_postgres_db

port = get_open_port()

db = new_test_postgres_db(name="orders-test", connect=driver_connect)
stop = db.run_as_docker_container()
try:
    db.reset()
    dsn = db.get_dsn()
    ...
finally:
    stop()
```

- `servicekit.process`: `run_binary(path, *args)` starts a program and returns
  a function that kills it and returns its exit code;
  `run_container(image, docker_args, runtime_args)` runs a detached docker
  container and returns a function that kills it.
- `servicekit.network`: `get_open_port_in_range(lower, upper)` and
  `get_open_port()` return the first local port nothing listens on, and raise
  `PortError` when the range is invalid or full.
- `servicekit.postgres`: `new_test_postgres_db(**settings)` returns a
  `PostgresDB` whose port defaults to the first free one from 35000.
  `connect` is a DB-API `connect` function taking a DSN, needed by `reset()`
  and `check_connection()`. `reset()` drops the public schema (or calls
  `migrate_down`) and then calls `migrate_up` if set. `check_connection()`
  retries every half second and raises `DatabaseTimeoutError` after
  `timeout` seconds.

## What servicekit does not do

servicekit does not turn API field paths, filters or sort orders into SQL,
work out joins between models, build full-text search queries, or apply
partial updates from field masks; it has no ORM layer. It bundles no database
driver and no web server: you supply a DB-API `connect` function and run the
health handler under any WSGI server.