"""Domain models for volume attachment reconciliation."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from enum import Enum
from typing import Any, override

from kubernetes_asyncio.client import V1VolumeAttachment

from ...constants import NODE_ID_ANNOTATION_PREFIX

__all__ = [
    "ReconcileOutcome",
    "WorkKey",
    "WorkKind",
    "add_finalizer",
    "get_attachment_name",
    "get_finalizer",
    "get_node_id_annotation",
    "get_volume_name",
    "has_finalizer",
    "is_attached",
    "remove_finalizer",
    "sanitize_driver_name",
]


class ReconcileOutcome(Enum):
    """Result of a single reconciliation of one work key."""

    DONE = "done"
    """Nothing further to do until the object changes again."""

    RETRY = "retry"
    """The condition is unresolved and the key should be retried later."""


class WorkKind(Enum):
    """Kind of object a work key refers to."""

    ATTACHMENT = "VolumeAttachment"
    VOLUME = "PersistentVolume"


@dataclass(frozen=True, slots=True)
class WorkKey:
    """Identity of an object queued for reconciliation.

    Both ``VolumeAttachment`` and ``PersistentVolume`` objects are
    cluster-scoped, so the kind and name uniquely identify an object.
    """

    kind: WorkKind
    """Kind of object."""

    name: str
    """Name of the object."""

    @override
    def __str__(self) -> str:
        return f"{self.kind.value}/{self.name}"


def sanitize_driver_name(driver: str) -> str:
    """Convert a driver name into a form usable in annotations and finalizers.

    Kubernetes qualified names may contain only one slash, separating the
    prefix from the name, so any slash in the driver name is replaced.
    """
    return driver.replace("/", "_")


def get_attachment_name(driver: str, volume: str, node: str) -> str:
    """Determine the name of the attachment of a volume to a node.

    This is the same name the Kubernetes attach/detach controller uses when
    creating ``VolumeAttachment`` objects.

    Parameters
    ----------
    driver
        Name of the CSI driver.
    volume
        Name of the ``PersistentVolume``.
    node
        Name of the node.

    Returns
    -------
    str
        Name of the ``VolumeAttachment`` object.
    """
    digest = hashlib.sha256(f"{volume}{driver}{node}".encode()).hexdigest()
    return f"csi-{digest}"


def get_finalizer(prefix: str, driver: str) -> str:
    """Return the finalizer the controller places on objects it manages."""
    return f"{prefix}/{sanitize_driver_name(driver)}"


def get_node_id_annotation(driver: str) -> str:
    """Return the node annotation holding the driver's node ID."""
    return NODE_ID_ANNOTATION_PREFIX + sanitize_driver_name(driver)


def get_volume_name(attachment: V1VolumeAttachment) -> str:
    """Return the name of the persistent volume an attachment refers to.

    Returns
    -------
    str
        Name of the persistent volume, or the empty string if the attachment
        has no persistent volume reference.
    """
    source = attachment.spec.source
    if not source or not source.persistent_volume_name:
        return ""
    return source.persistent_volume_name


def add_finalizer(obj: Any, finalizer: str) -> bool:
    """Add a finalizer to a Kubernetes object in place.

    Returns
    -------
    bool
        `True` if the object was changed, `False` if the finalizer was
        already present.
    """
    if has_finalizer(obj, finalizer):
        return False
    obj.metadata.finalizers = [*(obj.metadata.finalizers or []), finalizer]
    return True


def has_finalizer(obj: Any, finalizer: str) -> bool:
    """Whether a Kubernetes object carries the given finalizer."""
    return finalizer in (obj.metadata.finalizers or [])


def is_attached(attachment: V1VolumeAttachment) -> bool:
    """Whether the status of an attachment says it is attached."""
    return bool(attachment.status and attachment.status.attached)


def remove_finalizer(obj: Any, finalizer: str) -> bool:
    """Remove a finalizer from a Kubernetes object in place.

    Only the exact finalizer string is removed. All other finalizers are kept
    in their original order.

    Returns
    -------
    bool
        `True` if the object was changed, `False` if the finalizer was not
        present.
    """
    if not has_finalizer(obj, finalizer):
        return False
    finalizers = obj.metadata.finalizers
    obj.metadata.finalizers = [f for f in finalizers if f != finalizer]
    return True
