"""
arcapp/services/event_bus.py -- Application-wide event bus using Qt signals.

Singleton that provides typed signals for catalog and archive events.
Views connect to the EventBus rather than to each other or to the workers
directly.

Usage::

    from arcapp.services.event_bus import EventBus

    bus = EventBus.instance()
    bus.backup_progress.connect(progress_bar.update_from_event)
    bus.catalog_changed.emit("cards")
"""

from __future__ import annotations

import threading

from PySide6.QtCore import QObject, Signal


class EventBus(QObject):
    """Application-wide signal bus.

    Signals
    -------
    catalog_changed(str)
        Fired after a bulk change to the catalog.  Payload is the entity
        kind that changed (``"cards"``, ``"tags"`` ...) or ``"all"``.
    backup_progress(dict)
        ``{percent, processedBytes, totalBytes}`` while a backup runs.
    backup_finished(dict)
        The backup result; ``manifest`` is already converted to a dict.
    restore_progress(dict)
        Progress while a restore extracts files.
    restore_finished(bool)
        True when the restored archive carried catalog data.
    integrity_checked(int)
        Number of issues found by the last health check.
    error_occurred(str)
        Fired when an error needs to be shown to the user.
    status_message(str)
        Fired to update the status bar message.
    """

    # Catalog
    catalog_changed = Signal(str)

    # Archive operations
    backup_progress = Signal(dict)
    backup_finished = Signal(dict)
    restore_progress = Signal(dict)
    restore_finished = Signal(bool)

    # Health check
    integrity_checked = Signal(int)

    # Error and status
    error_occurred = Signal(str)
    status_message = Signal(str)

    # Singleton
    _instance: EventBus | None = None
    _lock = threading.Lock()

    @classmethod
    def instance(cls) -> EventBus:
        """Return the singleton EventBus instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Reset the singleton (for testing)."""
        with cls._lock:
            if cls._instance is not None:
                cls._instance.deleteLater()
            cls._instance = None
