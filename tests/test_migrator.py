# tests/test_migrator.py
import logging
import sqlite3
from functools import partial

import pytest

from deviceadm.migrations import Migration, MigrationError, MigrationVersion, SimpleMigrator
from deviceadm.storage.sqlite_base import sqlite_connection

logger = logging.getLogger("MigratorTest")


class RecordingMigration(Migration):
    def __init__(self, version: str, applied: list, fail: bool = False):
        self._version = MigrationVersion.parse(version)
        self.applied = applied
        self.fail = fail

    def version(self) -> MigrationVersion:
        return self._version

    def up(self, conn: sqlite3.Connection) -> None:
        if self.fail:
            conn.execute("CREATE TABLE broken (")
        conn.execute(f"CREATE TABLE IF NOT EXISTS step_{self._version.major}_{self._version.minor} (x TEXT)")
        self.applied.append(str(self._version))


def _migrator(data_dir, automigrate: bool) -> SimpleMigrator:
    return SimpleMigrator(
        connect=partial(sqlite_connection, str(data_dir), None, create=True),
        db_name="deviceadm",
        automigrate=automigrate,
    )


@pytest.mark.parametrize("text,expected", [
    ("1.0.0", MigrationVersion(1, 0, 0)),
    (" 1.2.10 ", MigrationVersion(1, 2, 10)),
])
def test_parse_version(text, expected):
    assert MigrationVersion.parse(text) == expected
    assert str(expected) == text.strip()


@pytest.mark.parametrize("text", ["1.0", "1.0.0.0", "a.b.c", "1.-1.0", ""])
def test_parse_version_rejects_garbage(text):
    with pytest.raises(MigrationError):
        MigrationVersion.parse(text)


def test_versions_compare_numerically():
    assert MigrationVersion.parse("1.10.0") > MigrationVersion.parse("1.9.3")


def test_fresh_database_is_at_zero(tmp_path):
    assert _migrator(tmp_path, automigrate=False).current_version() == MigrationVersion(0, 0, 0)


def test_applies_pending_steps_in_order(tmp_path):
    applied = []
    steps = [
        RecordingMigration("1.1.0", applied),
        RecordingMigration("1.0.0", applied),
        RecordingMigration("2.0.0", applied),
    ]

    migrator = _migrator(tmp_path, automigrate=True)
    migrator.apply(MigrationVersion(1, 1, 0), steps)

    assert applied == ["1.0.0", "1.1.0"]
    assert migrator.current_version() == MigrationVersion(1, 1, 0)

    # Already applied steps are skipped on the next run
    migrator.apply(MigrationVersion(2, 0, 0), steps)
    assert applied == ["1.0.0", "1.1.0", "2.0.0"]


def test_target_beyond_last_step_is_recorded(tmp_path):
    applied = []
    migrator = _migrator(tmp_path, automigrate=True)

    migrator.apply(MigrationVersion(1, 5, 0), [RecordingMigration("1.0.0", applied)])

    assert applied == ["1.0.0"]
    assert migrator.current_version() == MigrationVersion(1, 5, 0)


def test_check_only_fails_when_behind_and_writes_nothing(tmp_path):
    applied = []
    checker = _migrator(tmp_path, automigrate=False)

    with pytest.raises(MigrationError, match="db needs migration"):
        checker.apply(MigrationVersion(1, 0, 0), [RecordingMigration("1.0.0", applied)])

    assert applied == []
    assert checker.current_version() == MigrationVersion(0, 0, 0)


def test_check_only_accepts_current_and_newer(tmp_path):
    _migrator(tmp_path, automigrate=True).apply(MigrationVersion(1, 2, 0), [])

    checker = _migrator(tmp_path, automigrate=False)
    checker.apply(MigrationVersion(1, 2, 0), [])
    checker.apply(MigrationVersion(1, 1, 0), [])


def test_newer_database_is_left_alone(tmp_path):
    applied = []
    _migrator(tmp_path, automigrate=True).apply(MigrationVersion(2, 0, 0), [])

    _migrator(tmp_path, automigrate=True).apply(MigrationVersion(1, 0, 0), [RecordingMigration("1.0.0", applied)])

    assert applied == []


def test_failed_step_is_not_recorded(tmp_path):
    applied = []
    steps = [RecordingMigration("1.0.0", applied), RecordingMigration("1.1.0", applied, fail=True)]
    migrator = _migrator(tmp_path, automigrate=True)

    with pytest.raises(MigrationError, match="1.1.0"):
        migrator.apply(MigrationVersion(1, 1, 0), steps)

    assert applied == ["1.0.0"]
    assert migrator.current_version() == MigrationVersion(1, 0, 0)
