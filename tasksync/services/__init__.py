"""Domain services: versioning, ownership, conflict detection and sync."""
