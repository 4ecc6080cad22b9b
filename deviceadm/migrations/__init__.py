# deviceadm/migrations/__init__.py
"""Versioned schema migrations for the per-tenant databases."""

from .migrator import (
    Migration,
    MigrationError,
    MigrationVersion,
    SimpleMigrator,
    ZERO_VERSION,
)

__all__ = [
    "Migration",
    "MigrationError",
    "MigrationVersion",
    "SimpleMigrator",
    "ZERO_VERSION",
]
