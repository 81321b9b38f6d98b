"""Tests for conditional updates with retries."""

from __future__ import annotations

import pytest

from csiattacher.exceptions import KubernetesError
from csiattacher.factory import Factory

from ..support.kubernetes import MockAttacherKubernetesApi
from ..support.objects import FINALIZER, VA_NAME, build_attachment


@pytest.mark.asyncio
async def test_conflict(
    factory: Factory, mock_kubernetes: MockAttacherKubernetesApi
) -> None:
    mock_kubernetes.set_for_test("volumeattachments", build_attachment())
    stale = mock_kubernetes.get_for_test("volumeattachments", VA_NAME)

    # Someone else modifies the object after it was read.
    va = mock_kubernetes.get_for_test("volumeattachments", VA_NAME)
    va.metadata.labels = {"changed": "true"}
    mock_kubernetes.set_for_test("volumeattachments", va)

    writer = factory.create_status_writer()
    result = await writer.save_attach_error(stale, "some error")
    assert result
    assert mock_kubernetes.failed_updates == 1

    # Both changes survive.
    va = mock_kubernetes.get_for_test("volumeattachments", VA_NAME)
    assert va.metadata.labels == {"changed": "true"}
    assert va.status.attach_error.message == "some error"

    # The object passed in is not modified.
    assert stale.status.attach_error is None


@pytest.mark.asyncio
async def test_deleted(
    factory: Factory, mock_kubernetes: MockAttacherKubernetesApi
) -> None:
    mock_kubernetes.set_for_test("volumeattachments", build_attachment())
    va = mock_kubernetes.get_for_test("volumeattachments", VA_NAME)
    mock_kubernetes.delete_for_test("volumeattachments", VA_NAME)

    writer = factory.create_status_writer()
    assert await writer.mark_attached(va, {}) is None
    assert mock_kubernetes.updates == []


@pytest.mark.asyncio
async def test_retries(
    factory: Factory, mock_kubernetes: MockAttacherKubernetesApi
) -> None:
    mock_kubernetes.set_for_test("volumeattachments", build_attachment())
    va = mock_kubernetes.get_for_test("volumeattachments", VA_NAME)
    writer = factory.create_status_writer()

    mock_kubernetes.fail_for_test("replace", "volumeattachments", count=4)
    result = await writer.mark_attached(va, {"key": "value"})
    assert result
    assert result.status.attached
    assert result.status.attachment_metadata == {"key": "value"}
    assert mock_kubernetes.failed_updates == 4

    mock_kubernetes.fail_for_test("replace", "volumeattachments", count=5)
    with pytest.raises(KubernetesError) as excinfo:
        await writer.save_attach_error(result, "error")
    assert excinfo.value.status == 403
    assert excinfo.value.kind == "VolumeAttachment"
    assert mock_kubernetes.failed_updates == 9


@pytest.mark.asyncio
async def test_no_change(
    factory: Factory, mock_kubernetes: MockAttacherKubernetesApi
) -> None:
    va = build_attachment(
        attached=True, finalizers=[FINALIZER], attach_error="error"
    )
    mock_kubernetes.set_for_test("volumeattachments", va)
    va = mock_kubernetes.get_for_test("volumeattachments", VA_NAME)
    writer = factory.create_status_writer()

    assert await writer.save_attach_error(va, "error") == va
    assert mock_kubernetes.updates == []

    # Marking an attachment attached clears the error.
    result = await writer.mark_attached(va, {})
    assert result
    assert result.status.attach_error is None
    assert await writer.mark_attached(result, {}) == result
    assert len(mock_kubernetes.updates) == 1


@pytest.mark.asyncio
async def test_error_fields_independent(
    factory: Factory, mock_kubernetes: MockAttacherKubernetesApi
) -> None:
    va = build_attachment(attached=True, finalizers=[FINALIZER], deleted=True)
    mock_kubernetes.set_for_test("volumeattachments", va)
    va = mock_kubernetes.get_for_test("volumeattachments", VA_NAME)
    writer = factory.create_status_writer()

    result = await writer.save_detach_error(va, "cannot detach")
    assert result
    assert result.status.detach_error.message == "cannot detach"
    assert result.status.attach_error is None
    assert result.status.attached
    assert result.metadata.finalizers == [FINALIZER]

    result = await writer.mark_detached(result, FINALIZER)
    assert result
    assert not result.status.attached
    assert result.status.detach_error is None
    assert not result.metadata.finalizers


@pytest.mark.asyncio
async def test_read_failures(
    factory: Factory, mock_kubernetes: MockAttacherKubernetesApi
) -> None:
    mock_kubernetes.set_for_test("volumeattachments", build_attachment())
    va = mock_kubernetes.get_for_test("volumeattachments", VA_NAME)
    writer = factory.create_status_writer()

    # A failed re-read is retried like a failed write.
    mock_kubernetes.fail_for_test("replace", "volumeattachments")
    mock_kubernetes.fail_for_test("read", "volumeattachments", status=500)
    result = await writer.save_attach_error(va, "some error")
    assert result
    assert result.status.attach_error.message == "some error"
    assert mock_kubernetes.failed_updates == 1

    # Failed re-reads use up attempts.
    mock_kubernetes.fail_for_test("replace", "volumeattachments")
    mock_kubernetes.fail_for_test(
        "read", "volumeattachments", count=4, status=500
    )
    with pytest.raises(KubernetesError) as excinfo:
        await writer.save_attach_error(result, "other error")
    assert excinfo.value.status == 500
    assert mock_kubernetes.failed_updates == 2
    va = mock_kubernetes.get_for_test("volumeattachments", VA_NAME)
    assert va.status.attach_error.message == "some error"
