"""Storage layer for ``PersistentVolume`` objects."""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import timedelta

from kubernetes_asyncio import client
from kubernetes_asyncio.client import (
    ApiClient,
    ApiException,
    V1PersistentVolume,
)
from structlog.stdlib import BoundLogger

from ...constants import KUBERNETES_REQUEST_TIMEOUT, WATCH_TIMEOUT
from ...exceptions import KubernetesError
from ...timeout import Timeout
from .watcher import KubernetesWatcher, WatchEvent

__all__ = ["PersistentVolumeStorage"]


class PersistentVolumeStorage:
    """Storage layer for ``PersistentVolume`` objects.

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

    kind = "PersistentVolume"
    """Kind of object managed by this storage class."""

    def __init__(
        self,
        api_client: ApiClient,
        logger: BoundLogger,
        *,
        timeout: timedelta = KUBERNETES_REQUEST_TIMEOUT,
        watch_timeout: timedelta = WATCH_TIMEOUT,
    ) -> None:
        self._api = client.CoreV1Api(api_client)
        self._logger = logger
        self._timeout = timeout
        self._watch_timeout = watch_timeout
        self._resource_version: str | None = None

    async def list(self) -> list[V1PersistentVolume]:
        """List all persistent volumes.

        Returns
        -------
        list of kubernetes_asyncio.client.models.V1PersistentVolume
            List of persistent volumes.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout expired.
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        timeout = Timeout("List persistent volumes", self._timeout)
        try:
            async with timeout.enforce():
                objs = await self._api.list_persistent_volume(
                    _request_timeout=timeout.left()
                )
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error listing persistent volumes", e, kind=self.kind
            ) from e
        return objs.items

    async def read(self, name: str) -> V1PersistentVolume | None:
        """Read a persistent volume.

        Parameters
        ----------
        name
            Name of the persistent volume.

        Returns
        -------
        kubernetes_asyncio.client.models.V1PersistentVolume or None
            PersistentVolume, or `None` if it does not exist.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout expired.
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        timeout = Timeout("Read persistent volume", self._timeout)
        try:
            async with timeout.enforce():
                return await self._api.read_persistent_volume(
                    name, _request_timeout=timeout.left()
                )
        except ApiException as e:
            if e.status == 404:
                return None
            raise KubernetesError.from_exception(
                "Error reading persistent volume", e, kind=self.kind, name=name
            ) from e

    async def replace(self, body: V1PersistentVolume) -> V1PersistentVolume:
        """Replace a persistent volume.

        Only used to change finalizers. The replacement is conditional on the
        resource version in ``body``.

        Parameters
        ----------
        body
            Modified persistent volume.

        Returns
        -------
        kubernetes_asyncio.client.models.V1PersistentVolume
            Persistent volume as stored by Kubernetes.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout expired.
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        name = body.metadata.name
        self._logger.debug("Updating persistent volume", name=name)
        timeout = Timeout("Update persistent volume", self._timeout)
        try:
            async with timeout.enforce():
                return await self._api.replace_persistent_volume(
                    name, body, _request_timeout=timeout.left()
                )
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error updating persistent volume",
                e,
                kind=self.kind,
                name=name,
            ) from e

    async def watch(self) -> AsyncIterator[WatchEvent[V1PersistentVolume]]:
        """Watch all persistent volumes for changes.

        Watches after the first resume after the last event seen.

        Yields
        ------
        WatchEvent
            Change to a persistent volume.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        TimeoutError
            Raised when the watch ends.
        """
        watcher = KubernetesWatcher(
            method=self._api.list_persistent_volume,
            object_type=V1PersistentVolume,
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
