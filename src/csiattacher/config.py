"""Global configuration parsing."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Self

import yaml
from pydantic import BaseModel, ConfigDict, Field, HttpUrl, SecretStr
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict
from safir.logging import LogLevel, Profile
from safir.pydantic import HumanTimedelta

from .constants import (
    DEFAULT_FINALIZER_PREFIX,
    DRIVER_TIMEOUT,
    KUBERNETES_REQUEST_TIMEOUT,
    RESYNC_INTERVAL,
    RETRY_BASE_DELAY,
    RETRY_MAX_DELAY,
    WATCH_TIMEOUT,
    WORKER_COUNT,
    WRITE_ATTEMPTS,
    WRITE_RETRY_DELAY,
)
from .models.domain.attachment import get_finalizer, get_node_id_annotation

__all__ = ["Config", "DriverConfig"]


class DriverConfig(BaseModel):
    """How to reach the storage driver."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    url: Annotated[
        HttpUrl,
        Field(
            title="Driver URL",
            description=(
                "Base URL of the driver's attach/detach API. Requests are sent"
                " to the ``attach`` and ``detach`` routes under this URL."
            ),
            examples=["http://csi-driver.csi-system:8080/"],
        ),
    ]

    timeout: Annotated[
        HumanTimedelta,
        Field(
            title="Driver call timeout",
            description="Timeout for a single attach or detach call",
        ),
    ] = DRIVER_TIMEOUT


class Config(BaseSettings):
    """Volume attachment controller configuration."""

    model_config = SettingsConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    driver_name: Annotated[
        str,
        Field(
            title="CSI driver name",
            description=(
                "Only VolumeAttachment objects whose ``spec.attacher`` matches"
                " this name are handled"
            ),
            examples=["csi.example.com"],
        ),
    ]

    driver: Annotated[DriverConfig, Field(title="Driver connection")]

    finalizer_prefix: Annotated[
        str,
        Field(
            title="Finalizer prefix",
            description=(
                "The finalizer added to VolumeAttachment and PersistentVolume"
                " objects is this prefix, a slash, and the driver name"
            ),
        ),
    ] = DEFAULT_FINALIZER_PREFIX

    kubernetes_timeout: Annotated[
        HumanTimedelta,
        Field(
            title="Kubernetes call timeout",
            description="Timeout for a single Kubernetes API call",
        ),
    ] = KUBERNETES_REQUEST_TIMEOUT

    log_level: Annotated[
        LogLevel,
        Field(
            title="Log level",
            description="Python logging level",
            examples=[LogLevel.INFO],
        ),
    ] = LogLevel.INFO

    name: Annotated[
        str,
        Field(
            title="Name of application",
            description="Used when reporting problems to Slack",
        ),
    ] = "csi-attacher"

    path_prefix: Annotated[
        str, Field(title="URL prefix for controller API")
    ] = "/csi-attacher"

    profile: Annotated[
        Profile,
        Field(
            title="Application logging profile",
            description=(
                "``production`` uses JSON logging. ``development`` uses"
                " logging that may be easier for humans to read but that"
                " cannot be easily parsed by computers."
            ),
            examples=[Profile.development],
        ),
    ] = Profile.production

    resync_interval: Annotated[
        HumanTimedelta,
        Field(
            title="Resync interval",
            description=(
                "How often to requeue every VolumeAttachment and"
                " PersistentVolume, even if no change was seen"
            ),
        ),
    ] = RESYNC_INTERVAL

    retry_base_delay: Annotated[
        HumanTimedelta,
        Field(
            title="Initial requeue delay",
            description=(
                "Delay before a failed reconciliation is retried. The delay"
                " doubles with each consecutive failure of the same object."
            ),
        ),
    ] = RETRY_BASE_DELAY

    retry_max_delay: Annotated[
        HumanTimedelta,
        Field(title="Maximum requeue delay"),
    ] = RETRY_MAX_DELAY

    slack_webhook: Annotated[
        SecretStr | None,
        Field(
            title="Slack webhook for alerts",
            description=(
                "If set, uncaught exceptions in the controller will be"
                " reported to Slack via this webhook"
            ),
            validation_alias="CSI_ATTACHER_SLACK_WEBHOOK",
        ),
    ] = None

    watch_timeout: Annotated[
        HumanTimedelta,
        Field(
            title="Watch duration",
            description="How long each Kubernetes watch runs before restart",
        ),
    ] = WATCH_TIMEOUT

    workers: Annotated[
        int,
        Field(
            title="Worker count",
            description="Number of objects reconciled in parallel",
            ge=1,
        ),
    ] = WORKER_COUNT

    write_attempts: Annotated[
        int,
        Field(
            title="Update attempts",
            description=(
                "Number of times a conflicting or failed update of a"
                " Kubernetes object is attempted before the reconciliation"
                " fails and is requeued"
            ),
            ge=1,
        ),
    ] = WRITE_ATTEMPTS

    write_retry_delay: Annotated[
        HumanTimedelta,
        Field(
            title="Update retry delay",
            description=(
                "Delay before retrying a failed update, doubled on each"
                " further attempt"
            ),
        ),
    ] = WRITE_RETRY_DELAY

    @property
    def finalizer(self) -> str:
        """Finalizer placed on objects managed by this controller."""
        return get_finalizer(self.finalizer_prefix, self.driver_name)

    @property
    def node_id_annotation(self) -> str:
        """Node annotation holding the node ID for this driver."""
        return get_node_id_annotation(self.driver_name)

    @classmethod
    def from_file(cls, path: Path) -> Self:
        """Load the controller configuration from a YAML file.

        Parameters
        ----------
        path
            Path to the configuration file.
        """
        with path.open("r") as f:
            return cls.model_validate(yaml.safe_load(f))
