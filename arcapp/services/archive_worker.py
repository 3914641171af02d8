"""
arcapp/services/archive_worker.py -- QThread workers for long catalog operations.

Backups, restores and health checks can take minutes on a large media
folder.  These workers run them off the UI thread and report back through
Qt signals; progress events are forwarded straight from the engine by
passing the ``progress`` signal's ``emit`` as the progress sink.

Usage::

    worker = BackupWorker(config, store)
    worker.progress.connect(on_progress)
    worker.finished_signal.connect(on_done)
    worker.error_occurred.connect(on_error)
    worker.start_backup("/backups/arc_backup.zip", part_count=4)
"""

from __future__ import annotations

import logging
from typing import Optional

from PySide6.QtCore import QThread, Signal

from arcapp.services.event_bus import EventBus
from arcengine.backup_manager import ArchiveBuilder
from arcengine.config import CatalogConfig
from arcengine.entity_store import EntityStore
from arcengine.integrity import IntegrityRepairer, IntegrityValidator, describe_issues
from arcengine.restore import RestoreCoordinator

logger = logging.getLogger(__name__)


class BackupWorker(QThread):
    """Background thread for ``ArchiveBuilder.create_backup``.

    Signals
    -------
    progress(dict)
        ``{percent, processedBytes, totalBytes}``.
    finished_signal(dict)
        The backup result with ``manifest`` converted to a camelCase dict
        and ``paths`` to strings.
    error_occurred(str)
        Emitted on error.  Payload is the user-facing message.
    """

    progress = Signal(dict)
    finished_signal = Signal(dict)
    error_occurred = Signal(str)

    def __init__(self, config: CatalogConfig, store: EntityStore, parent=None):
        super().__init__(parent)
        self._config = config
        self._store = store
        self._output_path = ""
        self._part_count = 1

    def start_backup(self, output_path: str, part_count: int = 1) -> None:
        """Queue a backup and start the worker thread.

        If already running, does nothing.
        """
        if self.isRunning():
            logger.warning("BackupWorker already running, ignoring start_backup()")
            return
        self._output_path = output_path
        self._part_count = part_count
        self.start()

    def run(self) -> None:
        """Thread entry point."""
        try:
            # Snapshot on the worker thread so the UI never blocks on SQLite.
            snapshot = self._store.export_json()
            result = ArchiveBuilder(self._config).create_backup(
                self._output_path,
                self._config.working_dir,
                self._part_count,
                snapshot,
                progress=self.progress.emit,
            )
            payload = dict(result)
            payload["manifest"] = result["manifest"].to_json_dict()
            payload["paths"] = [str(p) for p in result["paths"]]
            self.finished_signal.emit(payload)
        except Exception as e:
            logger.exception("BackupWorker run() failed")
            self.error_occurred.emit(str(e))


class RestoreWorker(QThread):
    """Background thread for ``RestoreCoordinator.restore_backup``.

    When the archive carries catalog data it is imported into the store
    with card paths rebased onto the target directory.

    Signals
    -------
    progress(dict)
        Extraction progress.
    finished_signal(bool)
        True when catalog data was imported, False for a files-only archive.
    error_occurred(str)
        Emitted on error.
    """

    progress = Signal(dict)
    finished_signal = Signal(bool)
    error_occurred = Signal(str)

    def __init__(self, config: CatalogConfig, store: EntityStore, parent=None):
        super().__init__(parent)
        self._config = config
        self._store = store
        self._archive_path = ""
        self._target_dir: Optional[str] = None

    def start_restore(self, archive_path: str, target_dir: Optional[str] = None) -> None:
        if self.isRunning():
            logger.warning("RestoreWorker already running, ignoring start_restore()")
            return
        self._archive_path = archive_path
        self._target_dir = target_dir
        self.start()

    def run(self) -> None:
        """Thread entry point."""
        try:
            target = self._target_dir or str(self._config.working_dir)
            result = RestoreCoordinator(self._config).restore_backup(
                self._archive_path, target, progress=self.progress.emit,
            )
            imported = result.serialized_store is not None
            if imported:
                self._store.import_snapshot(result.serialized_store, new_working_dir=target)
            self.finished_signal.emit(imported)
        except Exception as e:
            logger.exception("RestoreWorker run() failed")
            self.error_occurred.emit(str(e))


class HealthCheckWorker(QThread):
    """Background thread running the integrity check, optionally repairing.

    Signals
    -------
    report_ready(str, int)
        ``(describe_issues text, issue count)`` after validation.
    repaired(int)
        Number of issues fixed (only when started with ``repair=True``).
    error_occurred(str)
        Emitted on error.
    """

    report_ready = Signal(str, int)
    repaired = Signal(int)
    error_occurred = Signal(str)

    def __init__(self, store: EntityStore, parent=None):
        super().__init__(parent)
        self._store = store
        self._repair = False

    def start_check(self, repair: bool = False) -> None:
        if self.isRunning():
            logger.warning("HealthCheckWorker already running, ignoring start_check()")
            return
        self._repair = repair
        self.start()

    def run(self) -> None:
        """Thread entry point."""
        try:
            result = IntegrityValidator(self._store).validate()
            self.report_ready.emit(describe_issues(result.issues), len(result.issues))
            if self._repair:
                fixed = IntegrityRepairer(self._store).repair(result.issues)
                self.repaired.emit(fixed)
        except Exception as e:
            logger.exception("HealthCheckWorker run() failed")
            self.error_occurred.emit(str(e))


def bind_to_event_bus(worker: QThread, bus: Optional[EventBus] = None) -> None:
    """Forward a worker's signals to the matching EventBus signals."""
    if bus is None:
        bus = EventBus.instance()
    worker.error_occurred.connect(bus.error_occurred)
    if isinstance(worker, BackupWorker):
        worker.progress.connect(bus.backup_progress)
        worker.finished_signal.connect(bus.backup_finished)
    elif isinstance(worker, RestoreWorker):
        worker.progress.connect(bus.restore_progress)
        worker.finished_signal.connect(bus.restore_finished)
        worker.finished_signal.connect(lambda imported: bus.catalog_changed.emit("all") if imported else None)
    elif isinstance(worker, HealthCheckWorker):
        worker.report_ready.connect(lambda _text, count: bus.integrity_checked.emit(count))
        worker.repaired.connect(lambda _fixed: bus.catalog_changed.emit("all"))
