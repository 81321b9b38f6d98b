"""Data types for interacting with Kubernetes."""

from __future__ import annotations

from enum import Enum

__all__ = ["WatchEventType"]


class WatchEventType(Enum):
    """Possible values of the ``type`` field of Kubernetes watch events."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
