"""Conditional updates of attachments and volumes with bounded retries."""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Callable
from datetime import timedelta
from typing import Any, Protocol, TypeVar

from kubernetes_asyncio.client import (
    V1VolumeAttachment,
    V1VolumeAttachmentStatus,
    V1VolumeError,
)
from safir.datetime import current_datetime
from structlog.stdlib import BoundLogger

from ..exceptions import ControllerTimeoutError, KubernetesError
from ..models.domain.attachment import remove_finalizer

#: Type of Kubernetes object being updated.
T = TypeVar("T")

__all__ = ["ObjectStorage", "StatusWriter"]


class ObjectStorage(Protocol[T]):
    """Storage layer methods needed for a read-modify-write update."""

    kind: str

    async def read(self, name: str) -> T | None: ...

    async def replace(self, body: T) -> T: ...


class StatusWriter:
    """Write changes to Kubernetes objects under optimistic concurrency.

    Every change the controller makes to a ``VolumeAttachment`` or a
    ``PersistentVolume`` is a conditional replace that fails if another
    writer modified the object first. `update_with_retry` applies a mutation
    and retries it against a freshly-read object until it succeeds or the
    attempt limit is reached. The attachment status transitions are built on
    top of it.

    Parameters
    ----------
    attachment_storage
        Storage for ``VolumeAttachment`` objects.
    attempts
        Maximum number of update attempts.
    retry_delay
        Delay before the first retry, doubled for each subsequent retry.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        attachment_storage: ObjectStorage[V1VolumeAttachment],
        attempts: int,
        retry_delay: timedelta,
        logger: BoundLogger,
    ) -> None:
        self._attachments = attachment_storage
        self._attempts = attempts
        self._retry_delay = retry_delay
        self._logger = logger

    async def update_with_retry(
        self,
        storage: ObjectStorage[T],
        obj: T,
        mutate: Callable[[T], bool],
    ) -> T | None:
        """Apply a change to a Kubernetes object, retrying on failure.

        The first attempt applies ``mutate`` to a copy of ``obj``. Each later
        attempt re-reads the object and applies ``mutate`` again, so a
        conflicting write by someone else is merged rather than overwritten.
        A failed re-read counts as a failed attempt. A conflict is retried at
        once. Other failures are retried after a delay that doubles with each
        attempt.

        Parameters
        ----------
        storage
            Storage layer for the kind of object.
        obj
            Object as last seen by the caller. It is not modified.
        mutate
            Function that changes the object in place and returns whether it
            changed anything. If it returns `False`, no write is done.

        Returns
        -------
        object or None
            Object as stored after the update (or the unchanged object if no
            update was needed), or `None` if the object no longer exists.

        Raises
        ------
        ControllerTimeoutError
            Raised if the last attempt timed out.
        KubernetesError
            Raised if the last attempt failed.
        """
        name = _get_name(obj)
        delay = self._retry_delay.total_seconds()
        current: T | None = copy.deepcopy(obj)
        attempt = 0
        while True:
            attempt += 1
            try:
                # Every attempt after the first starts from a fresh read.
                if attempt > 1:
                    current = await storage.read(name)
                if current is None:
                    msg = f"{storage.kind} disappeared during update"
                    self._logger.debug(msg, name=name)
                    return None
                if not mutate(current):
                    return current
                return await storage.replace(current)
            except KubernetesError as e:
                if e.not_found:
                    msg = f"{storage.kind} disappeared during update"
                    self._logger.debug(msg, name=name)
                    return None
                if attempt >= self._attempts:
                    raise
                if e.conflict:
                    msg = f"{storage.kind} changed since read, retrying"
                    self._logger.info(msg, name=name, attempt=attempt)
                    continue
                error = str(e)
            except ControllerTimeoutError as e:
                if attempt >= self._attempts:
                    raise
                error = str(e)
            msg = f"Updating {storage.kind} failed, retrying"
            self._logger.warning(msg, name=name, attempt=attempt, error=error)
            await asyncio.sleep(delay)
            delay *= 2

    async def mark_attached(
        self, attachment: V1VolumeAttachment, metadata: dict[str, str]
    ) -> V1VolumeAttachment | None:
        """Record a successful attach.

        Sets ``attached``, clears any attach error, and stores the attachment
        metadata from the driver (if any) in a single update.

        Parameters
        ----------
        attachment
            Attachment that was attached.
        metadata
            Attachment metadata returned by the driver.

        Returns
        -------
        kubernetes_asyncio.client.models.V1VolumeAttachment or None
            Updated attachment, or `None` if it was deleted.
        """

        def mutate(va: V1VolumeAttachment) -> bool:
            status = _get_status(va)
            changed = not status.attached or status.attach_error is not None
            status.attached = True
            status.attach_error = None
            if metadata and status.attachment_metadata != metadata:
                status.attachment_metadata = metadata
                changed = True
            return changed

        return await self.update_with_retry(
            self._attachments, attachment, mutate
        )

    async def mark_detached(
        self, attachment: V1VolumeAttachment, finalizer: str
    ) -> V1VolumeAttachment | None:
        """Record a successful detach and release the attachment.

        Clears ``attached`` and any detach error and removes the controller
        finalizer in a single update, so that the attachment can be deleted
        as soon as it is marked detached.

        Parameters
        ----------
        attachment
            Attachment that was detached.
        finalizer
            Controller finalizer to remove.

        Returns
        -------
        kubernetes_asyncio.client.models.V1VolumeAttachment or None
            Updated attachment, or `None` if it was deleted.
        """

        def mutate(va: V1VolumeAttachment) -> bool:
            status = _get_status(va)
            changed = status.attached or status.detach_error is not None
            status.attached = False
            status.detach_error = None
            return remove_finalizer(va, finalizer) or changed

        return await self.update_with_retry(
            self._attachments, attachment, mutate
        )

    async def save_attach_error(
        self, attachment: V1VolumeAttachment, message: str
    ) -> V1VolumeAttachment | None:
        """Record an attach error.

        Nothing else in the status is changed. If the same message is already
        recorded, nothing is written.

        Parameters
        ----------
        attachment
            Attachment that could not be attached.
        message
            Error message.

        Returns
        -------
        kubernetes_asyncio.client.models.V1VolumeAttachment or None
            Updated attachment, or `None` if it was deleted.
        """
        self._logger.info(
            "Attach failed", attachment=_get_name(attachment), error=message
        )

        def mutate(va: V1VolumeAttachment) -> bool:
            status = _get_status(va)
            if status.attach_error and status.attach_error.message == message:
                return False
            status.attach_error = _build_error(message)
            return True

        return await self.update_with_retry(
            self._attachments, attachment, mutate
        )

    async def save_detach_error(
        self, attachment: V1VolumeAttachment, message: str
    ) -> V1VolumeAttachment | None:
        """Record a detach error.

        Nothing else in the status is changed, and the finalizer is kept. If
        the same message is already recorded, nothing is written.

        Parameters
        ----------
        attachment
            Attachment that could not be detached.
        message
            Error message.

        Returns
        -------
        kubernetes_asyncio.client.models.V1VolumeAttachment or None
            Updated attachment, or `None` if it was deleted.
        """
        self._logger.info(
            "Detach failed", attachment=_get_name(attachment), error=message
        )

        def mutate(va: V1VolumeAttachment) -> bool:
            status = _get_status(va)
            if status.detach_error and status.detach_error.message == message:
                return False
            status.detach_error = _build_error(message)
            return True

        return await self.update_with_retry(
            self._attachments, attachment, mutate
        )


def _build_error(message: str) -> V1VolumeError:
    return V1VolumeError(message=message, time=current_datetime())


def _get_name(obj: Any) -> str:
    return obj.metadata.name


def _get_status(attachment: V1VolumeAttachment) -> V1VolumeAttachmentStatus:
    """Return the status of an attachment, creating it if necessary."""
    if not attachment.status:
        attachment.status = V1VolumeAttachmentStatus(attached=False)
    return attachment.status
