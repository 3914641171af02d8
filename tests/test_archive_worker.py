"""
Tests for arcapp/services/archive_worker.py

The workers' ``run()`` is called directly on the test thread so signal
delivery is synchronous and no event loop is needed.
"""

import zipfile
from unittest.mock import MagicMock

import pytest
from PySide6.QtCore import QCoreApplication

from arcapp.services.archive_worker import (
    BackupWorker,
    HealthCheckWorker,
    RestoreWorker,
    bind_to_event_bus,
)
from arcapp.services.event_bus import EventBus
from arcengine.backup_manager import DATABASE_ENTRY
from arcengine.models import EntityKind


@pytest.fixture(autouse=True)
def _reset_event_bus():
    EventBus.reset()
    yield
    EventBus.reset()


@pytest.fixture(autouse=True)
def _ensure_qapp():
    app = QCoreApplication.instance()
    if app is None:
        app = QCoreApplication([])
    yield app


def _connect(worker, *names):
    receivers = {}
    for name in names:
        receivers[name] = MagicMock()
        getattr(worker, name).connect(receivers[name])
    return receivers


# ------------------------------------------------------------------
# BackupWorker
# ------------------------------------------------------------------


class TestBackupWorker:
    def test_successful_backup(self, config, populated_store, tmp_path):
        worker = BackupWorker(config, populated_store)
        rx = _connect(worker, "progress", "finished_signal", "error_occurred")
        worker._output_path = str(tmp_path / "out" / "arc_backup.zip")

        worker.run()

        rx["error_occurred"].assert_not_called()
        payload = rx["finished_signal"].call_args.args[0]
        assert payload["file_count"] == 3
        assert payload["manifest"]["archiveName"] == "arc_backup.zip"
        assert payload["paths"] == [str(tmp_path / "out" / "arc_backup.zip")]
        assert rx["progress"].call_args_list[-1].args[0]["percent"] == 100

    def test_split_backup(self, config, populated_store, tmp_path):
        worker = BackupWorker(config, populated_store)
        rx = _connect(worker, "finished_signal")
        worker._output_path = str(tmp_path / "out" / "arc_backup.zip")
        worker._part_count = 2

        worker.run()

        payload = rx["finished_signal"].call_args.args[0]
        assert payload["manifest"]["parts"] == 2
        assert len(payload["paths"]) == 2

    def test_archive_contains_catalog(self, config, populated_store, tmp_path):
        worker = BackupWorker(config, populated_store)
        worker._output_path = str(tmp_path / "arc_backup.zip")
        worker.run()
        with zipfile.ZipFile(tmp_path / "arc_backup.zip") as zf:
            assert DATABASE_ENTRY in zf.namelist()

    def test_error_reported(self, config, populated_store, tmp_path):
        worker = BackupWorker(config.with_working_dir(tmp_path / "gone"), populated_store)
        rx = _connect(worker, "finished_signal", "error_occurred")
        worker._output_path = str(tmp_path / "arc_backup.zip")

        worker.run()

        rx["finished_signal"].assert_not_called()
        rx["error_occurred"].assert_called_once()
        assert "could not be opened" in rx["error_occurred"].call_args.args[0]


# ------------------------------------------------------------------
# RestoreWorker
# ------------------------------------------------------------------


@pytest.fixture
def backup_path(config, populated_store, tmp_path):
    worker = BackupWorker(config, populated_store)
    worker._output_path = str(tmp_path / "backups" / "arc_backup.zip")
    worker.run()
    return worker._output_path


class TestRestoreWorker:
    def test_restore_imports_catalog(self, config, backup_path, populated_store, tmp_path):
        target = tmp_path / "restored"
        populated_store.delete(EntityKind.CARD, "card-c")

        worker = RestoreWorker(config, populated_store)
        rx = _connect(worker, "progress", "finished_signal", "error_occurred")
        worker._archive_path = backup_path
        worker._target_dir = str(target)

        worker.run()

        rx["error_occurred"].assert_not_called()
        rx["finished_signal"].assert_called_once_with(True)
        card = populated_store.get(EntityKind.CARD, "card-c")
        assert card.file_path.startswith(str(target))
        assert (target / "2024" / "05" / "18" / "c.png").exists()

    def test_files_only_archive(self, config, store, tmp_path):
        plain = tmp_path / "plain.zip"
        with zipfile.ZipFile(plain, "w") as zf:
            zf.writestr("2024/01/01/x.jpg", b"x")

        worker = RestoreWorker(config, store)
        rx = _connect(worker, "finished_signal")
        worker._archive_path = str(plain)
        worker._target_dir = str(tmp_path / "restored")

        worker.run()

        rx["finished_signal"].assert_called_once_with(False)
        assert store.count(EntityKind.CARD) == 0

    def test_defaults_to_working_dir(self, config, store, backup_path):
        worker = RestoreWorker(config, store)
        worker._archive_path = backup_path
        worker.run()
        card = store.get(EntityKind.CARD, "card-a")
        assert card.file_path.startswith(str(config.working_dir))

    def test_corrupt_archive_reports_error(self, config, store, tmp_path):
        junk = tmp_path / "junk.zip"
        junk.write_bytes(b"not a zip")

        worker = RestoreWorker(config, store)
        rx = _connect(worker, "finished_signal", "error_occurred")
        worker._archive_path = str(junk)
        worker._target_dir = str(tmp_path / "restored")

        worker.run()

        rx["finished_signal"].assert_not_called()
        rx["error_occurred"].assert_called_once()


# ------------------------------------------------------------------
# HealthCheckWorker
# ------------------------------------------------------------------


class TestHealthCheckWorker:
    def test_clean_catalog(self, populated_store):
        worker = HealthCheckWorker(populated_store)
        rx = _connect(worker, "report_ready", "repaired")
        worker.run()
        text, count = rx["report_ready"].call_args.args
        assert count == 0
        assert "Everything looks good" in text
        rx["repaired"].assert_not_called()

    def test_repair(self, populated_store):
        populated_store.update(EntityKind.TAG, "tag-minimal", {"card_count": 9})
        worker = HealthCheckWorker(populated_store)
        rx = _connect(worker, "report_ready", "repaired")
        worker._repair = True

        worker.run()

        assert rx["report_ready"].call_args.args[1] == 1
        rx["repaired"].assert_called_once_with(1)
        assert populated_store.get(EntityKind.TAG, "tag-minimal").card_count == 2

    def test_error_reported(self):
        broken = MagicMock()
        broken.list.side_effect = RuntimeError("database is locked")
        worker = HealthCheckWorker(broken)
        rx = _connect(worker, "report_ready", "error_occurred")

        worker.run()

        rx["report_ready"].assert_not_called()
        rx["error_occurred"].assert_called_once_with("database is locked")


# ------------------------------------------------------------------
# EventBus forwarding
# ------------------------------------------------------------------


class TestBindToEventBus:
    def test_backup_signals_forwarded(self, config, populated_store, tmp_path):
        bus = EventBus.instance()
        finished, progress = MagicMock(), MagicMock()
        bus.backup_finished.connect(finished)
        bus.backup_progress.connect(progress)

        worker = BackupWorker(config, populated_store)
        bind_to_event_bus(worker)
        worker._output_path = str(tmp_path / "arc_backup.zip")
        worker.run()

        finished.assert_called_once()
        assert progress.called

    def test_restore_marks_catalog_changed(self, config, store, backup_path, tmp_path):
        bus = EventBus.instance()
        changed, done = MagicMock(), MagicMock()
        bus.catalog_changed.connect(changed)
        bus.restore_finished.connect(done)

        worker = RestoreWorker(config, store)
        bind_to_event_bus(worker, bus)
        worker._archive_path = backup_path
        worker._target_dir = str(tmp_path / "restored")
        worker.run()

        done.assert_called_once_with(True)
        changed.assert_called_once_with("all")

    def test_health_check_count_forwarded(self, populated_store):
        bus = EventBus.instance()
        checked = MagicMock()
        bus.integrity_checked.connect(checked)

        worker = HealthCheckWorker(populated_store)
        bind_to_event_bus(worker)
        worker.run()

        checked.assert_called_once_with(0)

    def test_errors_forwarded(self, config, store, tmp_path):
        bus = EventBus.instance()
        errors = MagicMock()
        bus.error_occurred.connect(errors)

        worker = RestoreWorker(config, store)
        bind_to_event_bus(worker)
        worker._archive_path = str(tmp_path / "missing.zip")
        worker._target_dir = str(tmp_path / "restored")
        worker.run()

        errors.assert_called_once()
