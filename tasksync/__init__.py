"""Offline-first task storage with multi-device sync."""

__version__ = "1.0.0"
