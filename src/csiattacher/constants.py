"""Global constants."""

from datetime import timedelta
from pathlib import Path

__all__ = [
    "CONFIGURATION_PATH",
    "CONFIGURATION_PATH_ENV_VAR",
    "DEFAULT_FINALIZER_PREFIX",
    "DRIVER_TIMEOUT",
    "KUBERNETES_REQUEST_TIMEOUT",
    "NODE_ID_ANNOTATION_PREFIX",
    "RESYNC_INTERVAL",
    "RETRY_BASE_DELAY",
    "RETRY_MAX_DELAY",
    "WATCH_RETRY_DELAY",
    "WATCH_TIMEOUT",
    "WORKER_COUNT",
    "WRITE_ATTEMPTS",
    "WRITE_RETRY_DELAY",
]

CONFIGURATION_PATH = Path("/etc/csi-attacher/config.yaml")
"""Default path to controller configuration."""

CONFIGURATION_PATH_ENV_VAR = "CSI_ATTACHER_CONFIG_PATH"
"""Environment variable that, if set, overrides the configuration path."""

DEFAULT_FINALIZER_PREFIX = "external-attacher"
"""Prefix of the finalizer placed on attachments and persistent volumes.

The full finalizer is this prefix, a slash, and the sanitized driver name.
"""

DRIVER_TIMEOUT = timedelta(minutes=2)
"""Default timeout for a single attach or detach call to the driver."""

KUBERNETES_REQUEST_TIMEOUT = timedelta(seconds=30)
"""Default timeout for a single Kubernetes API call."""

NODE_ID_ANNOTATION_PREFIX = "nodeid.csi.volume.kubernetes.io/"
"""Prefix of the node annotation holding the driver's node ID.

The annotation key is this prefix followed by the sanitized driver name.
"""

RESYNC_INTERVAL = timedelta(minutes=10)
"""How frequently to requeue every known attachment and volume."""

RETRY_BASE_DELAY = timedelta(seconds=1)
"""Initial delay before a failed key is retried by the work queue."""

RETRY_MAX_DELAY = timedelta(minutes=5)
"""Maximum delay before a failed key is retried by the work queue."""

WATCH_RETRY_DELAY = timedelta(seconds=1)
"""How long to wait before restarting a watch that failed with an error."""

WATCH_TIMEOUT = timedelta(minutes=5)
"""Duration of a single Kubernetes watch before it is restarted."""

WORKER_COUNT = 10
"""Default number of concurrent reconciliation workers."""

WRITE_ATTEMPTS = 5
"""Default number of attempts for a conditional update before giving up."""

WRITE_RETRY_DELAY = timedelta(milliseconds=100)
"""Delay before the first retry of a failed conditional update.

The delay doubles with each subsequent attempt.
"""
