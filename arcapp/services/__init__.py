"""Application services: event bus and background workers."""
