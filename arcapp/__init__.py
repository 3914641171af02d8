"""
ARC -- host application layer for the catalog engine.

Package layout:
    paths.py    User data directory, settings file, CatalogConfig loading
    services/   Qt event bus and background workers for long operations
    cli.py      Command line entry point (``arc-catalog``)
"""
