"""Per-request database transactions carried in the current context.

A database is any object with a ``begin(**options)`` method that returns a
session with ``commit()`` and ``rollback()`` methods. A session whose
``closed`` attribute is true is treated as having lost its connection.
"""

from __future__ import annotations

import contextlib
import contextvars
import functools
import threading
from collections.abc import Callable, Iterable, Iterator
from typing import Any, Protocol, TypeVar

__all__ = [
    "TransactionError",
    "TransactionMissingError",
    "NoDatabaseError",
    "DatabaseUnavailableError",
    "CommitError",
    "Transaction",
    "current_transaction",
    "use_transaction",
    "begin_from_context",
    "transactional",
    "transactional_txn",
]

_F = TypeVar("_F", bound=Callable[..., Any])


class TransactionError(Exception):
    """Base class for transaction management errors."""


class TransactionMissingError(TransactionError, LookupError):
    """No transaction is set for the current context."""

    def __init__(self) -> None:
        super().__init__("Database transaction for request missing in context")


class NoDatabaseError(TransactionError):
    """A transaction is set for the current context, but it has no database."""

    def __init__(self) -> None:
        super().__init__("Transaction in context, but DB is nil")


class DatabaseUnavailableError(TransactionError):
    """The connection behind the open transaction is gone."""

    def __init__(self) -> None:
        super().__init__("Database connection not available")


class CommitError(TransactionError):
    """Committing a request's transaction failed."""

    def __init__(self, detail: str, target: str = "gorm") -> None:
        super().__init__("failed to commit transaction")
        self.target = target
        self.detail = detail


class _Session(Protocol):
    def commit(self) -> Any: ...

    def rollback(self) -> Any: ...


class _Database(Protocol):
    def begin(self, **options: Any) -> _Session: ...


def _is_closed(session: Any) -> bool:
    return bool(getattr(session, "closed", False))


class Transaction:
    """Lazily opened database transaction, at most one open at a time."""

    def __init__(self, db: _Database | None = None, hooks: Iterable[Callable[[], Any]] = ()) -> None:
        self.db = db
        self._hooks: list[Callable[[], Any]] = list(hooks)
        self._current: _Session | None = None
        self._lock = threading.Lock()

    @property
    def current(self) -> _Session | None:
        """The open session, or None when no transaction is open."""
        return self._current

    @property
    def after_commit_hooks(self) -> tuple[Callable[[], Any], ...]:
        return tuple(self._hooks)

    def add_after_commit_hook(self, *args: Callable[[], Any]) -> None:
        """Register callables run after every successful commit."""
        self._hooks.extend(args)

    def begin(self, **kwargs: Any) -> _Session:
        """Open a transaction, or return the one already open.

        Keyword arguments are passed to the database's ``begin`` as options.
        """
        with self._lock:
            if self._current is None:
                if self.db is None:
                    raise NoDatabaseError()
                self._current = self.db.begin(**kwargs)
            return self._current

    def rollback(self) -> None:
        """Abort the open transaction, if any, and forget it."""
        with self._lock:
            session = self._current
            if session is None:
                return
            if _is_closed(session):
                raise DatabaseUnavailableError()
            try:
                session.rollback()
            finally:
                self._current = None

    def commit(self) -> None:
        """Commit the open transaction, if any, then run the after-commit hooks."""
        with self._lock:
            session = self._current
            if session is None or _is_closed(session):
                return
            try:
                session.commit()
            finally:
                self._current = None
            hooks = list(self._hooks)
        for hook in hooks:
            hook()


_current: contextvars.ContextVar[Transaction | None] = contextvars.ContextVar(
    "servicekit_transaction", default=None
)


def current_transaction() -> Transaction | None:
    """Return the transaction set for the current context, or None."""
    return _current.get()


@contextlib.contextmanager
def use_transaction(txn: Transaction) -> Iterator[Transaction]:
    """Make ``txn`` the current transaction inside the ``with`` block."""
    token = _current.set(txn)
    try:
        yield txn
    finally:
        _current.reset(token)


def begin_from_context(**kwargs: Any) -> _Session:
    """Begin the current context's transaction and return its session."""
    txn = current_transaction()
    if txn is None:
        raise TransactionMissingError()
    if txn.db is None:
        raise NoDatabaseError()
    return txn.begin(**kwargs)


def transactional_txn(txn: Transaction) -> Callable[[_F], _F]:
    """Decorate a handler so each call runs with its own transaction.

    The transaction copies the database and hooks of ``txn``. The handler
    opens it when needed; it is committed when the handler returns and
    rolled back when the handler raises.
    """

    def decorator(handler: _F) -> _F:
        @functools.wraps(handler)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            request_txn = Transaction(txn.db, txn.after_commit_hooks)
            with use_transaction(request_txn):
                try:
                    result = handler(*args, **kwargs)
                except Exception as exc:
                    try:
                        request_txn.rollback()
                    except DatabaseUnavailableError as unavailable:
                        raise unavailable from exc
                    except Exception as rollback_exc:
                        raise exc from rollback_exc
                    raise
                except BaseException:
                    with contextlib.suppress(Exception):
                        request_txn.rollback()
                    raise
                try:
                    request_txn.commit()
                except Exception as exc:
                    raise CommitError(str(exc)) from exc
            return result

        return wrapper  # type: ignore[return-value]

    return decorator


def transactional(db: _Database) -> Callable[[_F], _F]:
    """Decorate a handler so each call runs with its own transaction on ``db``."""
    return transactional_txn(Transaction(db))