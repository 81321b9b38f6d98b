"""Storage layer for ``VolumeAttachment`` objects."""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import timedelta

from kubernetes_asyncio import client
from kubernetes_asyncio.client import (
    ApiClient,
    ApiException,
    V1VolumeAttachment,
)
from structlog.stdlib import BoundLogger

from ...constants import KUBERNETES_REQUEST_TIMEOUT, WATCH_TIMEOUT
from ...exceptions import KubernetesError
from ...timeout import Timeout
from .watcher import KubernetesWatcher, WatchEvent

__all__ = ["VolumeAttachmentStorage"]


class VolumeAttachmentStorage:
    """Storage layer for ``VolumeAttachment`` objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    timeout
        Timeout for each individual API call.
    watch_timeout
        Duration of each watch before it must be restarted.
    """

    kind = "VolumeAttachment"
    """Kind of object managed by this storage class."""

    def __init__(
        self,
        api_client: ApiClient,
        logger: BoundLogger,
        *,
        timeout: timedelta = KUBERNETES_REQUEST_TIMEOUT,
        watch_timeout: timedelta = WATCH_TIMEOUT,
    ) -> None:
        self._api = client.StorageV1Api(api_client)
        self._logger = logger
        self._timeout = timeout
        self._watch_timeout = watch_timeout
        self._resource_version: str | None = None

    async def list(self) -> list[V1VolumeAttachment]:
        """List all volume attachments.

        Returns
        -------
        list of kubernetes_asyncio.client.models.V1VolumeAttachment
            List of volume attachments for all drivers.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout expired.
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        timeout = Timeout("List volume attachments", self._timeout)
        try:
            async with timeout.enforce():
                objs = await self._api.list_volume_attachment(
                    _request_timeout=timeout.left()
                )
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error listing volume attachments", e, kind=self.kind
            ) from e
        return objs.items

    async def read(self, name: str) -> V1VolumeAttachment | None:
        """Read a volume attachment.

        Parameters
        ----------
        name
            Name of the volume attachment.

        Returns
        -------
        kubernetes_asyncio.client.models.V1VolumeAttachment or None
            Volume attachment, or `None` if it does not exist.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout expired.
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        timeout = Timeout("Read volume attachment", self._timeout)
        try:
            async with timeout.enforce():
                return await self._api.read_volume_attachment(
                    name, _request_timeout=timeout.left()
                )
        except ApiException as e:
            if e.status == 404:
                return None
            raise KubernetesError.from_exception(
                "Error reading volume attachment", e, kind=self.kind, name=name
            ) from e

    async def replace(self, body: V1VolumeAttachment) -> V1VolumeAttachment:
        """Replace a volume attachment, including its status.

        The replacement is conditional on the resource version in ``body``,
        so it fails with a 409 status if the object was modified since it was
        read.

        Parameters
        ----------
        body
            Modified volume attachment.

        Returns
        -------
        kubernetes_asyncio.client.models.V1VolumeAttachment
            Volume attachment as stored by Kubernetes.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout expired.
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        name = body.metadata.name
        self._logger.debug("Updating volume attachment", name=name)
        timeout = Timeout("Update volume attachment", self._timeout)
        try:
            async with timeout.enforce():
                return await self._api.replace_volume_attachment(
                    name, body, _request_timeout=timeout.left()
                )
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error updating volume attachment",
                e,
                kind=self.kind,
                name=name,
            ) from e

    async def watch(self) -> AsyncIterator[WatchEvent[V1VolumeAttachment]]:
        """Watch all volume attachments for changes.

        The first watch starts with an ``ADDED`` event for every existing
        volume attachment. Later watches resume after the last event seen.
        Each watch ends with `TimeoutError` when the watch timeout expires,
        at which point the caller should start a new watch.

        Yields
        ------
        WatchEvent
            Change to a volume attachment.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        TimeoutError
            Raised when the watch ends.
        """
        watcher = KubernetesWatcher(
            method=self._api.list_volume_attachment,
            object_type=V1VolumeAttachment,
            kind=self.kind,
            resource_version=self._resource_version,
            timeout=self._watch_timeout,
            logger=self._logger,
        )
        try:
            async for event in watcher.watch():
                self._resource_version = event.object.metadata.resource_version
                yield event
        finally:
            await watcher.close()
