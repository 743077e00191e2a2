"""Compose Updater.

Scheduled update manager for Docker Compose projects: pulls new images,
recreates containers, validates health, and rolls back to the previous
image set on failure.
"""

__version__ = "1.2.0"
