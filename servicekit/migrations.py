"""Checking the schema migration version of a database."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Any, Protocol

__all__ = [
    "MigrationVersionError",
    "VersionRange",
    "VersionExactly",
    "max_version_from",
    "verify_migration_version",
]

_VERSION = re.compile(r"[+-]?[0-9]+")


class MigrationVersionError(ValueError):
    """Raised when a database or migration directory has an unexpected version."""


class _Validator(Protocol):
    def validate(self, version: int) -> None: ...


@dataclass(frozen=True)
class VersionRange:
    """Accepts versions between ``lower`` and ``upper`` inclusive."""

    lower: int
    upper: int

    def validate(self, version: int) -> None:
        if version < self.lower:
            raise MigrationVersionError(
                f"Database at version {version}, lower than requirement of {self.lower}"
            )
        if version > self.upper:
            raise MigrationVersionError(
                f"Database at version {version}, higher than requirement of {self.upper}"
            )


@dataclass(frozen=True)
class VersionExactly:
    """Accepts exactly one version."""

    target: int

    def validate(self, version: int) -> None:
        if version != self.target:
            raise MigrationVersionError(
                f"Database at version {version}, not equal to requirement of {self.target}"
            )


def max_version_from(path: str | os.PathLike[str]) -> VersionExactly:
    """Return a validator for the highest numbered ``.sql`` migration in ``path``."""
    target = 0
    with os.scandir(path) as entries:
        files = sorted(entries, key=lambda entry: entry.name)
    for entry in files:
        name = entry.name
        if entry.is_dir() or "." not in name:
            continue
        if name[name.rfind("."):] != ".sql":
            continue
        parts = name.split("_")
        if len(parts) < 2:
            raise MigrationVersionError(
                f'Filename "{name}" does not match migration file naming requirements '
                "##_name.[up/down].sql"
            )
        if not _VERSION.fullmatch(parts[0]):
            raise MigrationVersionError(f"invalid migration version {parts[0]!r} in {name!r}")
        target = max(target, int(parts[0]))
    return VersionExactly(target)


def verify_migration_version(connection: Any, validator: _Validator) -> None:
    """Check the ``schema_migrations`` row of a DB-API connection against ``validator``."""
    cursor = connection.cursor()
    try:
        cursor.execute("SELECT * FROM schema_migrations")
        row = cursor.fetchone()
    finally:
        cursor.close()
    if row is None:
        raise MigrationVersionError("no rows in schema_migrations")
    if len(row) != 2:
        raise MigrationVersionError(f"expected 2 columns in schema_migrations, got {len(row)}")
    version, dirty = int(row[0]), bool(row[1])
    if dirty:
        raise MigrationVersionError(f"Database at version {version}, but is dirty")
    validator.validate(version)