"""Storage layer for Kubernetes node objects."""

from __future__ import annotations

from datetime import timedelta

from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiClient, ApiException, V1Node
from structlog.stdlib import BoundLogger

from ...constants import KUBERNETES_REQUEST_TIMEOUT
from ...exceptions import KubernetesError
from ...timeout import Timeout

__all__ = ["NodeStorage"]


class NodeStorage:
    """Storage layer for Kubernetes node objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    timeout
        Timeout for each individual API call.
    """

    def __init__(
        self,
        api_client: ApiClient,
        logger: BoundLogger,
        *,
        timeout: timedelta = KUBERNETES_REQUEST_TIMEOUT,
    ) -> None:
        self._api = client.CoreV1Api(api_client)
        self._logger = logger
        self._timeout = timeout

    async def read(self, name: str) -> V1Node | None:
        """Read a node.

        Parameters
        ----------
        name
            Name of the node.

        Returns
        -------
        kubernetes_asyncio.client.models.V1Node or None
            Node, or `None` if it does not exist.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout expired.
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        timeout = Timeout("Read node", self._timeout)
        try:
            async with timeout.enforce():
                return await self._api.read_node(
                    name, _request_timeout=timeout.left()
                )
        except ApiException as e:
            if e.status == 404:
                return None
            raise KubernetesError.from_exception(
                "Error reading node", e, kind="Node", name=name
            ) from e
