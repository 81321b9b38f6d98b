"""Mock storage driver."""

from __future__ import annotations

from dataclasses import dataclass, field

import respx
from httpx import Request, Response

from csiattacher.models.v1.driver import AttachRequest, DetachRequest

__all__ = ["DriverCall", "MockDriver", "register_mock_driver"]


@dataclass
class DriverCall:
    """Record of one call to the driver."""

    operation: str
    """Either ``attach`` or ``detach``."""

    volume_handle: str
    """Driver identifier of the volume."""

    node_id: str
    """Driver identifier of the node."""

    read_only: bool = False
    """Whether an attach was read-only."""

    metadata: dict[str, str] = field(default_factory=dict)
    """Attachment metadata passed to an attach."""


class MockDriver:
    """Mock storage driver that records calls and returns scripted results.

    Attributes
    ----------
    calls
        All calls made to the driver, in order.
    attachment_metadata
        Metadata returned by successful attach calls.
    """

    def __init__(self) -> None:
        self.calls: list[DriverCall] = []
        self.attachment_metadata: dict[str, str] = {}
        self._failures: dict[str, list[str]] = {"attach": [], "detach": []}

    def fail_for_test(
        self, operation: str, message: str, count: int = 1
    ) -> None:
        """Make the next calls of an operation fail.

        Parameters
        ----------
        operation
            Either ``attach`` or ``detach``.
        message
            Error message the driver returns.
        count
            Number of consecutive calls that should fail.
        """
        self._failures[operation] = [message] * count

    def attach(self, request: Request) -> Response:
        body = AttachRequest.model_validate_json(request.content)
        self.calls.append(
            DriverCall(
                operation="attach",
                volume_handle=body.volume_handle,
                node_id=body.node_id,
                read_only=body.read_only,
                metadata=body.attachment_metadata,
            )
        )
        if self._failures["attach"]:
            error = self._failures["attach"].pop(0)
            return Response(500, json={"error": error})
        metadata = self.attachment_metadata
        return Response(200, json={"attachmentMetadata": metadata})

    def detach(self, request: Request) -> Response:
        body = DetachRequest.model_validate_json(request.content)
        self.calls.append(
            DriverCall(
                operation="detach",
                volume_handle=body.volume_handle,
                node_id=body.node_id,
            )
        )
        if self._failures["detach"]:
            error = self._failures["detach"].pop(0)
            return Response(500, json={"error": error})
        return Response(204)


def register_mock_driver(
    respx_mock: respx.Router, base_url: str
) -> MockDriver:
    """Mock out a storage driver.

    Parameters
    ----------
    respx_mock
        Mock router.
    base_url
        Base URL of the driver.

    Returns
    -------
    MockDriver
        Mock driver object.
    """
    mock = MockDriver()
    base_url = base_url.rstrip("/")
    respx_mock.post(f"{base_url}/attach").mock(side_effect=mock.attach)
    respx_mock.post(f"{base_url}/detach").mock(side_effect=mock.detach)
    return mock
