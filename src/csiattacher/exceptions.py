"""Exceptions for the volume attachment controller."""

from __future__ import annotations

from datetime import datetime
from typing import Self, override

from kubernetes_asyncio.client import ApiException
from safir.datetime import format_datetime_for_logging
from safir.slack.blockkit import (
    SlackBaseField,
    SlackCodeBlock,
    SlackException,
    SlackMessage,
    SlackTextBlock,
    SlackTextField,
    SlackWebException,
)

__all__ = [
    "AttachmentInputError",
    "ControllerTimeoutError",
    "DriverError",
    "DriverWebError",
    "KubernetesError",
    "NodeIDError",
]


class AttachmentInputError(Exception):
    """An attachment could not be resolved to a volume and a node.

    These errors are recorded in the status of the ``VolumeAttachment`` and
    never reported elsewhere, so the message is exactly what is shown to the
    user.
    """


class NodeIDError(AttachmentInputError):
    """The node does not carry the driver's node ID annotation.

    Parameters
    ----------
    node
        Name of the node.
    """

    def __init__(self, node: str) -> None:
        super().__init__(f'node "{node}" has no NodeID annotation')
        self.node = node


class DriverError(Exception):
    """The storage driver reported a failure.

    The message is the driver's own message, which is copied verbatim into
    the status of the ``VolumeAttachment``.
    """
class DriverWebError(SlackWebException):
    """An HTTP request to the storage driver failed."""


class ControllerTimeoutError(SlackException):
    """A call to the Kubernetes API server did not finish in time.

    Parameters
    ----------
    operation
        Operation that timed out.
    started_at
        Start time of the operation.
    failed_at
        Time at which the operation timed out.
    """

    def __init__(
        self, operation: str, *, started_at: datetime, failed_at: datetime
    ) -> None:
        self.operation = operation
        self.started_at = started_at
        elapsed = (failed_at - started_at).total_seconds()
        super().__init__(
            f"{operation} timed out after {elapsed}s", failed_at=failed_at
        )

    @override
    def to_slack(self) -> SlackMessage:
        started_at = format_datetime_for_logging(self.started_at)
        failed_at = format_datetime_for_logging(self.failed_at)
        fields: list[SlackBaseField] = [
            SlackTextField(heading="Started at", text=started_at),
            SlackTextField(heading="Failed at", text=failed_at),
        ]
        return SlackMessage(message=str(self), fields=fields)


class KubernetesError(SlackException):
    """An API call to Kubernetes failed.

    Both ``VolumeAttachment`` and ``PersistentVolume`` objects are
    cluster-scoped, so the kind and name are enough to identify the object.

    Parameters
    ----------
    message
        Summary of error.
    kind
        Kind of object being acted on.
    name
        Name of object being acted on.
    status
        HTTP status of the failed call, if any.
    body
        Body of the failure reply, if any.
    """

    @classmethod
    def from_exception(
        cls,
        message: str,
        exc: ApiException,
        *,
        kind: str | None = None,
        name: str | None = None,
    ) -> Self:
        """Create an exception from a Kubernetes API exception.

        Parameters
        ----------
        message
            Brief explanation of what was being attempted.
        exc
            Kubernetes API exception.
        kind
            Kind of object being acted on.
        name
            Name of object being acted on.

        Returns
        -------
        KubernetesError
            Newly-created exception.
        """
        body = exc.body or exc.reason
        return cls(message, kind=kind, name=name, status=exc.status, body=body)

    def __init__(
        self,
        message: str,
        *,
        kind: str | None = None,
        name: str | None = None,
        status: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.name = name
        self.status = status
        self.body = body

    @override
    def __str__(self) -> str:
        if self.body:
            return f"{self._summary()}: {self.body}"
        return self._summary()

    @property
    def conflict(self) -> bool:
        """Whether the object changed since it was read."""
        return self.status == 409

    @property
    def not_found(self) -> bool:
        """Whether the error was caused by the object not existing."""
        return self.status == 404

    @override
    def to_slack(self) -> SlackMessage:
        message = super().to_slack()
        message.message = self._summary()
        if self.status:
            field = SlackTextField(heading="Status", text=str(self.status))
            message.fields.append(field)
        if target := self._target():
            block = SlackTextBlock(heading="Object", text=target)
            message.blocks.append(block)
        if self.body:
            code = SlackCodeBlock(heading="Error", code=self.body)
            message.blocks.append(code)
        return message

    def _summary(self) -> str:
        """Summarize the exception on a single line.

        Used for the main part of the Slack message and as the start of the
        string form of the exception.
        """
        details = []
        if target := self._target():
            details.append(target)
        if self.status:
            details.append(f"status {self.status}")
        if not details:
            return self.message
        return f"{self.message} ({', '.join(details)})"

    def _target(self) -> str | None:
        """Describe the object being acted on, if known."""
        if self.kind and self.name:
            return f"{self.kind} {self.name}"
        return self.name or self.kind
