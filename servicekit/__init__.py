"""Transactions, migration checks, health endpoints and integration-test utilities for services."""

__version__ = "0.1.0"

__all__ = [
    "checks",
    "health",
    "migrations",
    "network",
    "postgres",
    "process",
    "transaction",
]