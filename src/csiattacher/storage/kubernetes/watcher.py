"""Watch cluster-scoped Kubernetes objects for events."""

from __future__ import annotations

import asyncio
import math
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Generic, Self, TypeVar

from kubernetes_asyncio.client import ApiException
from kubernetes_asyncio.watch import Watch
from structlog.stdlib import BoundLogger

from ...exceptions import KubernetesError
from ...models.domain.kubernetes import WatchEventType

#: Type of Kubernetes object being watched.
T = TypeVar("T")

__all__ = [
    "KubernetesWatcher",
    "T",
    "WatchEvent",
]


@dataclass
class WatchEvent(Generic[T]):
    """Parsed event from a Kubernetes watch."""

    action: WatchEventType
    """Action the event represents."""

    object: T
    """Affected Kubernetes object."""

    @classmethod
    def from_event(cls, event: dict[str, Any], object_type: type[T]) -> Self:
        """Create a `WatchEvent` from a watch event.

        Parameters
        ----------
        event
            Event as returned by the Kubernetes watch API.
        object_type
            Expected type of the object.

        Raises
        ------
        TypeError
            Raised if the type of the object in the watch event was incorrect.
        """
        action = WatchEventType(event["type"])
        obj = event["object"]
        if not isinstance(obj, object_type):
            real_type = type(obj).__name__
            expected_type = object_type.__name__
            msg = f"Watch object was of type {real_type}, not {expected_type}"
            raise TypeError(msg)
        return cls(action=action, object=obj)


class KubernetesWatcher(Generic[T]):
    """Watch Kubernetes for events.

    This wrapper around the watch API of the Kubernetes client implements
    resource version handling and passes an explicit return type so that the
    type detection in ``kubernetes_asyncio`` is not needed.

    This class is not meant to be used directly by code outside of the
    Kubernetes storage layer. Use the ``watch`` method of one of the
    kind-specific storage classes instead.

    Parameters
    ----------
    method
        API list method that supports the watch API.
    object_type
        Type of object being watched. Must match the type of object returned
        by the method.
    kind
        Kubernetes kind of object being watched, for error reporting.
    resource_version
        Resource version at which to start the watch. If not given, the watch
        starts with synthetic ``ADDED`` events for every existing object.
    timeout
        Timeout for the watch.
    logger
        Logger to use.

    Raises
    ------
    ValueError
        Raised if ``timeout`` is specified but is less than zero.
    """

    def __init__(
        self,
        *,
        method: Callable[..., Awaitable[Any]],
        object_type: type[T],
        kind: str,
        resource_version: str | None = None,
        timeout: timedelta | None = None,
        logger: BoundLogger,
    ) -> None:
        self._method = method
        self._type = object_type
        self._kind = kind
        self._logger = logger
        self._stopped = False

        # Build the arguments to the method being watched.
        timeout_seconds = None
        if timeout:
            timeout_seconds = int(math.ceil(timeout.total_seconds()))
            if timeout_seconds <= 0:
                raise ValueError("Watch timeout specified but <= 0")
        args = {
            "resource_version": resource_version,
            "timeout_seconds": timeout_seconds,
            "_request_timeout": timeout_seconds,
        }
        self._args = {k: v for k, v in args.items() if v is not None}
        self._watch = Watch(return_type=object_type)

    async def close(self) -> None:
        """Close the internal API client used by the watch API."""
        self._watch.stop()
        await self._watch.close()

    def stop(self) -> None:
        """Stop a watch in progress."""
        self._watch.stop()
        self._stopped = True

    async def watch(self) -> AsyncIterator[WatchEvent[T]]:
        """Watch Kubernetes for events.

        If we started watching with a specific resource version, that resource
        version may be too old to still be known to Kubernetes, in which case
        the API call returns a 410 error and we retry without a resource
        version. Retrying without a resource version replays every existing
        object as an ``ADDED`` event, so nothing is missed by a controller
        whose reconciliation is idempotent.

        Yields
        ------
        WatchEvent
            Parsed event.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server during the
            watch.
        TimeoutError
            Raised if the server or client ended the watch.
        """
        args = self._args.copy()
        while True:
            try:
                async with self._watch.stream(self._method, **args) as s:
                    async for event in s:
                        yield WatchEvent.from_event(event, self._type)

                # Server timeouts just end the iterator. Calling the stop
                # method also ends the iterator; distinguish by looking at
                # self._stopped.
                if self._stopped:
                    break
                raise TimeoutError(f"{self._kind} watch ended by server")
            except ApiException as e:
                if e.status == 410 and "resource_version" in args:
                    version = args["resource_version"]
                    msg = f"Resource version {version} expired, retrying watch"
                    self._logger.info(msg, kind=self._kind)
                    del args["resource_version"]
                    continue
                if e.status == 410:
                    msg = "Watch expired (no resource version), retrying"
                    self._logger.info(msg, kind=self._kind)
                    await asyncio.sleep(1)
                    continue
                raise KubernetesError.from_exception(
                    "Error watching objects", e, kind=self._kind
                ) from e
