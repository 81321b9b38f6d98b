"""Client for the storage driver's attach and detach operations."""

from __future__ import annotations

from datetime import timedelta
from typing import Protocol

from httpx import AsyncClient, HTTPError, Response
from pydantic import BaseModel, ValidationError
from structlog.stdlib import BoundLogger

from ..exceptions import DriverError, DriverWebError
from ..models.v1.driver import (
    AttachReply,
    AttachRequest,
    DetachRequest,
    DriverErrorReply,
)

__all__ = ["DriverGateway", "HttpDriverGateway"]


class DriverGateway(Protocol):
    """Interface to the attach and detach operations of a storage driver.

    Both operations must be safe to repeat. A failure is reported by raising
    `~csiattacher.exceptions.DriverError` or
    `~csiattacher.exceptions.DriverWebError`, whose string form is suitable
    for display in the status of the attachment. Any other exception is a
    controller bug and is reported as such.
    """

    async def attach(
        self,
        volume_handle: str,
        node_id: str,
        *,
        read_only: bool,
        metadata: dict[str, str] | None = None,
    ) -> dict[str, str]:
        """Attach a volume to a node and return the attachment metadata."""

    async def detach(self, volume_handle: str, node_id: str) -> None:
        """Detach a volume from a node."""


class HttpDriverGateway:
    """Call a storage driver that exposes attach and detach over HTTP.

    The driver accepts JSON POST requests to ``attach`` and ``detach`` under
    its base URL. A successful reply has a 2xx status. A failed reply has any
    other status and, ideally, a JSON body with an ``error`` key holding the
    message to show the user.

    Parameters
    ----------
    url
        Base URL of the driver.
    http_client
        Shared HTTP client.
    timeout
        Timeout for each call to the driver.
    logger
        Logger for messages.
    """

    def __init__(
        self,
        *,
        url: str,
        http_client: AsyncClient,
        timeout: timedelta,
        logger: BoundLogger,
    ) -> None:
        self._url = url.rstrip("/")
        self._client = http_client
        self._timeout = timeout
        self._logger = logger

    async def attach(
        self,
        volume_handle: str,
        node_id: str,
        *,
        read_only: bool,
        metadata: dict[str, str] | None = None,
    ) -> dict[str, str]:
        """Attach a volume to a node.

        Parameters
        ----------
        volume_handle
            Driver identifier of the volume.
        node_id
            Driver identifier of the node.
        read_only
            Whether to attach the volume read-only.
        metadata
            Attachment metadata from a previous attach, if any.

        Returns
        -------
        dict of str
            Attachment metadata returned by the driver.

        Raises
        ------
        DriverError
            Raised if the driver reported a failure.
        DriverWebError
            Raised if the driver could not be contacted or its reply could
            not be parsed.
        """
        request = AttachRequest(
            volume_handle=volume_handle,
            node_id=node_id,
            read_only=read_only,
            attachment_metadata=metadata or {},
        )
        r = await self._post("attach", request)
        if not r.content:
            return {}
        try:
            reply = AttachReply.model_validate(r.json())
        except (ValidationError, ValueError) as e:
            msg = f"Cannot parse attach reply from driver: {e!s}"
            raise DriverWebError(msg) from e
        return reply.attachment_metadata

    async def detach(self, volume_handle: str, node_id: str) -> None:
        """Detach a volume from a node.

        Parameters
        ----------
        volume_handle
            Driver identifier of the volume.
        node_id
            Driver identifier of the node.

        Raises
        ------
        DriverError
            Raised if the driver reported a failure.
        DriverWebError
            Raised if the driver could not be contacted.
        """
        request = DetachRequest(volume_handle=volume_handle, node_id=node_id)
        await self._post("detach", request)

    async def _post(self, operation: str, request: BaseModel) -> Response:
        """Send a request to the driver and check for errors."""
        url = f"{self._url}/{operation}"
        body = request.model_dump(mode="json", by_alias=True)
        self._logger.debug(f"Sending {operation} to driver", request=body)
        try:
            r = await self._client.post(
                url, json=body, timeout=self._timeout.total_seconds()
            )
        except HTTPError as e:
            raise DriverWebError.from_exception(e) from e
        if r.is_error:
            raise DriverError(self._parse_error(operation, r))
        return r

    def _parse_error(self, operation: str, r: Response) -> str:
        """Extract the driver's error message from a failed reply."""
        try:
            return DriverErrorReply.model_validate(r.json()).error
        except (ValidationError, ValueError):
            if r.text:
                return r.text
            return f"{operation} failed with status {r.status_code}"
