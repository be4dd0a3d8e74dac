"""Routers package for the task sync API."""
