"""Tests for exceptions."""

from __future__ import annotations

import datetime

from kubernetes_asyncio.client import ApiException

from csiattacher.exceptions import ControllerTimeoutError, KubernetesError


def test_controller_timeout_error_slack() -> None:
    started_at = datetime.datetime(2001, 11, 30, tzinfo=datetime.UTC)
    failed_at = datetime.datetime(2001, 11, 30, 0, 0, 30, tzinfo=datetime.UTC)

    error = ControllerTimeoutError(
        "Read volume attachment", started_at=started_at, failed_at=failed_at
    )
    assert str(error) == "Read volume attachment timed out after 30.0s"

    slack = error.to_slack().to_slack()
    message = slack["blocks"][0]["text"]["text"]
    assert message.startswith("Read volume attachment timed out")
    fields = slack["blocks"][1]["fields"]
    assert fields[0]["text"] == "*Started at*\n2001-11-30 00:00:00"
    assert fields[1]["text"] == "*Failed at*\n2001-11-30 00:00:30"


def test_kubernetes_error() -> None:
    exc = ApiException(status=409, reason="Conflict")
    error = KubernetesError.from_exception(
        "Error updating object", exc, kind="VolumeAttachment", name="csi-1"
    )
    assert error.conflict
    assert not error.not_found
    expected = "Error updating object (VolumeAttachment csi-1, status 409)"
    assert str(error) == f"{expected}: Conflict"

    slack = error.to_slack().to_slack()
    assert slack["blocks"][0]["text"]["text"] == expected
    texts = [b["text"]["text"] for b in slack["blocks"] if "text" in b]
    assert "*Object*\nVolumeAttachment csi-1" in texts

    error = KubernetesError("Error listing objects", kind="PersistentVolume")
    assert str(error) == "Error listing objects (PersistentVolume)"
    error = KubernetesError("Error listing objects")
    assert str(error) == "Error listing objects"
