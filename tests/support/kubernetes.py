"""Mock for the parts of the Kubernetes API used by the controller.

Only the cluster-scoped ``VolumeAttachment``, ``PersistentVolume``, and
``Node`` APIs are supported. Replaces are conditional on the resource version
like the real API server, every successful update is recorded so that tests
can check exactly what was written, and failures can be injected.
"""

from __future__ import annotations

import asyncio
import copy
import os
from collections.abc import Iterator
from typing import Any
from unittest.mock import AsyncMock, Mock, patch

from kubernetes_asyncio import client, config
from kubernetes_asyncio.client import (
    ApiException,
    V1Node,
    V1PersistentVolume,
    V1PersistentVolumeList,
    V1VolumeAttachment,
    V1VolumeAttachmentList,
)

__all__ = ["MockAttacherKubernetesApi", "patch_kubernetes"]


class MockAttacherKubernetesApi:
    """Mock Kubernetes API for testing.

    Objects are stored by resource (``volumeattachments``,
    ``persistentvolumes``, or ``nodes``) and name.

    Attributes
    ----------
    updates
        Every successful replace, as a tuple of the resource and a copy of
        the object as stored.
    failed_updates
        Number of replaces that failed because of injected errors or
        conflicts.
    """

    def __init__(self) -> None:
        self.updates: list[tuple[str, Any]] = []
        self.failed_updates = 0
        self._objects: dict[str, dict[str, Any]] = {
            "volumeattachments": {},
            "persistentvolumes": {},
            "nodes": {},
        }
        self._failures: dict[tuple[str, str], list[int]] = {}
        self._resource_version = 0

    def fail_for_test(
        self, verb: str, resource: str, count: int = 1, status: int = 403
    ) -> None:
        """Make the next calls of an API fail.

        Parameters
        ----------
        verb
            One of ``read``, ``list``, or ``replace``.
        resource
            Resource to fail on.
        count
            Number of consecutive calls that should fail.
        status
            HTTP status of the failure.
        """
        self._failures[(verb, resource)] = [status] * count

    def get_for_test(self, resource: str, name: str) -> Any:
        """Return a copy of a stored object, or `None` if it is missing."""
        obj = self._objects[resource].get(name)
        return copy.deepcopy(obj)

    def get_updates_for_test(self, resource: str) -> list[Any]:
        """Return all successfully written versions of a resource."""
        return [body for r, body in self.updates if r == resource]

    def delete_for_test(self, resource: str, name: str) -> None:
        """Remove an object without going through finalizers."""
        del self._objects[resource][name]

    def set_for_test(self, resource: str, obj: Any) -> None:
        """Store an object, replacing any existing object of that name.

        A new resource version is assigned, so any copy of the object held by
        a test becomes stale.
        """
        stored = copy.deepcopy(obj)
        stored.metadata.resource_version = self._next_version()
        self._objects[resource][stored.metadata.name] = stored

    # NODE API

    async def read_node(self, name: str, **kwargs: Any) -> V1Node:
        return self._read("nodes", name)

    # PERSISTENTVOLUME API

    async def list_persistent_volume(
        self, *, watch: bool = False, **kwargs: Any
    ) -> V1PersistentVolumeList | Mock:
        if watch:
            return self._build_idle_watch()
        items = self._list("persistentvolumes")
        return V1PersistentVolumeList(items=items)

    async def read_persistent_volume(
        self, name: str, **kwargs: Any
    ) -> V1PersistentVolume:
        return self._read("persistentvolumes", name)

    async def replace_persistent_volume(
        self, name: str, body: V1PersistentVolume, **kwargs: Any
    ) -> V1PersistentVolume:
        return self._replace("persistentvolumes", name, body)

    # VOLUMEATTACHMENT API

    async def list_volume_attachment(
        self, *, watch: bool = False, **kwargs: Any
    ) -> V1VolumeAttachmentList | Mock:
        if watch:
            return self._build_idle_watch()
        items = self._list("volumeattachments")
        return V1VolumeAttachmentList(items=items)

    async def read_volume_attachment(
        self, name: str, **kwargs: Any
    ) -> V1VolumeAttachment:
        return self._read("volumeattachments", name)

    async def replace_volume_attachment(
        self, name: str, body: V1VolumeAttachment, **kwargs: Any
    ) -> V1VolumeAttachment:
        return self._replace("volumeattachments", name, body)

    # Internal helper functions.

    def _build_idle_watch(self) -> Mock:
        """Build a watch response that never returns any events.

        Tests feed events to the controller directly, so watches only need
        to wait until they are cancelled.
        """

        async def readline() -> bytes:
            await asyncio.Event().wait()
            return b""

        response = Mock()
        response.content.readline = AsyncMock()
        response.content.readline.side_effect = readline
        return response

    def _list(self, resource: str) -> list[Any]:
        self._maybe_error("list", resource)
        objects = self._objects[resource]
        return [copy.deepcopy(objects[n]) for n in sorted(objects)]

    def _maybe_error(self, verb: str, resource: str) -> None:
        failures = self._failures.get((verb, resource))
        if failures:
            status = failures.pop(0)
            if verb == "replace":
                self.failed_updates += 1
            raise ApiException(status=status, reason="Injected failure")

    def _next_version(self) -> str:
        self._resource_version += 1
        return str(self._resource_version)

    def _read(self, resource: str, name: str) -> Any:
        self._maybe_error("read", resource)
        obj = self._objects[resource].get(name)
        if obj is None:
            raise ApiException(status=404, reason=f"{name} not found")
        return copy.deepcopy(obj)

    def _replace(self, resource: str, name: str, body: Any) -> Any:
        self._maybe_error("replace", resource)
        assert body.metadata.name == name
        current = self._objects[resource].get(name)
        if current is None:
            raise ApiException(status=404, reason=f"{name} not found")
        if body.metadata.resource_version != current.metadata.resource_version:
            self.failed_updates += 1
            raise ApiException(status=409, reason=f"{name} was modified")
        stored = copy.deepcopy(body)
        stored.metadata.resource_version = self._next_version()
        self._objects[resource][name] = stored
        self.updates.append((resource, copy.deepcopy(stored)))
        return copy.deepcopy(stored)


def patch_kubernetes() -> Iterator[MockAttacherKubernetesApi]:
    """Replace the Kubernetes API with a mock class.

    Returns
    -------
    MockAttacherKubernetesApi
        The mock Kubernetes API object.
    """
    mock_api = MockAttacherKubernetesApi()
    with patch.object(config, "load_incluster_config"):
        patchers = []
        for api in ("CoreV1Api", "StorageV1Api"):
            patcher = patch.object(client, api)
            mock_class = patcher.start()
            mock_class.return_value = mock_api
            patchers.append(patcher)
        mock_api_client = Mock(spec=client.ApiClient)
        mock_api_client.close = AsyncMock()
        with patch.object(client, "ApiClient") as mock_client:
            mock_client.return_value = mock_api_client
            os.environ["KUBERNETES_PORT"] = "tcp://10.0.0.1:443"
            yield mock_api
            del os.environ["KUBERNETES_PORT"]
        for patcher in patchers:
            patcher.stop()
