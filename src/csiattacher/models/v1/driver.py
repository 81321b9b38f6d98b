"""Wire models for the storage driver attach/detach API."""

from __future__ import annotations

from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

__all__ = [
    "AttachReply",
    "AttachRequest",
    "DetachRequest",
    "DriverErrorReply",
]


class DriverModel(BaseModel):
    """Base class for driver API models, which use camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="ignore", populate_by_name=True
    )


class AttachRequest(DriverModel):
    """Request to attach a volume to a node."""

    volume_handle: Annotated[
        str,
        Field(
            title="Volume handle",
            description="Driver-opaque identifier of the volume",
        ),
    ]

    node_id: Annotated[
        str,
        Field(
            title="Node ID",
            description="Driver-opaque identifier of the node",
        ),
    ]

    read_only: Annotated[
        bool, Field(title="Whether to attach the volume read-only")
    ] = False

    attachment_metadata: Annotated[
        dict[str, str],
        Field(
            title="Existing attachment metadata",
            description=(
                "Metadata returned by a previous successful attach, passed"
                " back to the driver as a hint"
            ),
        ),
    ] = {}


class AttachReply(DriverModel):
    """Reply to a successful attach."""

    attachment_metadata: Annotated[
        dict[str, str],
        Field(
            title="Attachment metadata",
            description=(
                "Information needed by the node to use the attached volume,"
                " stored in the status of the VolumeAttachment"
            ),
        ),
    ] = {}


class DetachRequest(DriverModel):
    """Request to detach a volume from a node."""

    volume_handle: Annotated[str, Field(title="Volume handle")]

    node_id: Annotated[str, Field(title="Node ID")]


class DriverErrorReply(DriverModel):
    """Reply from the driver when an operation failed."""

    error: Annotated[
        str,
        Field(
            title="Error message",
            description="Stored verbatim in the VolumeAttachment status",
        ),
    ]
