"""Management of the controller finalizer."""

from __future__ import annotations

from typing import Any, TypeVar

from structlog.stdlib import BoundLogger

from ..models.domain.attachment import (
    add_finalizer,
    has_finalizer,
    remove_finalizer,
)
from .status import ObjectStorage, StatusWriter

#: Type of Kubernetes object carrying the finalizer.
T = TypeVar("T")

__all__ = ["FinalizerManager"]


class FinalizerManager:
    """Add or remove the controller finalizer on Kubernetes objects.

    The finalizer keeps a ``VolumeAttachment`` from disappearing before the
    volume has been detached, and keeps a ``PersistentVolume`` from
    disappearing while any attachment still refers to it.

    Parameters
    ----------
    finalizer
        Finalizer owned by this controller.
    status_writer
        Used to write the changed object with retries.
    logger
        Logger to use.
    """

    def __init__(
        self, finalizer: str, status_writer: StatusWriter, logger: BoundLogger
    ) -> None:
        self._finalizer = finalizer
        self._writer = status_writer
        self._logger = logger

    @property
    def finalizer(self) -> str:
        """Finalizer owned by this controller."""
        return self._finalizer

    async def ensure(
        self, storage: ObjectStorage[T], obj: T, *, present: bool
    ) -> T | None:
        """Make sure the finalizer is present on or absent from an object.

        Only the controller's own finalizer is ever added or removed. Any
        other finalizers are left in place and in order. If the object is
        already in the desired state, nothing is written.

        Parameters
        ----------
        storage
            Storage layer for the kind of object.
        obj
            Object to change. It is not modified.
        present
            Whether the finalizer should be present.

        Returns
        -------
        object or None
            Object after the change, or `None` if it no longer exists.

        Raises
        ------
        ControllerTimeoutError
            Raised if the update timed out on every attempt.
        KubernetesError
            Raised if the update failed on every attempt.
        """

        def mutate(current: Any) -> bool:
            if present:
                return add_finalizer(current, self._finalizer)
            else:
                return remove_finalizer(current, self._finalizer)

        changed = has_finalizer(obj, self._finalizer) != present
        result = await self._writer.update_with_retry(storage, obj, mutate)
        if result is not None and changed:
            action = "Added" if present else "Removed"
            self._logger.debug(
                f"{action} finalizer",
                kind=storage.kind,
                name=result.metadata.name,
                finalizer=self._finalizer,
            )
        return result
