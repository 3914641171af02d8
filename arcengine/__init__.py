"""
ARC catalog engine -- persistence, integrity and disaster recovery.

Modules:
    entity_store    SQLite-backed Entity Store with cascade mutations.
    integrity       Integrity Validator and Repairer.
    backup_manager  Archive Builder (ZIP snapshots of catalog + files).
    parts           Part Splitter / Merger for multi-part archives.
    restore         Restore Coordinator.
    progress        Best-effort progress channel.
    config          Explicit catalog configuration object.
    errors          Exception taxonomy.
"""

__version__ = "1.0.0"
