"""Attach a volume to a node for a ``VolumeAttachment``."""

from __future__ import annotations

from kubernetes_asyncio.client import V1VolumeAttachment
from structlog.stdlib import BoundLogger

from ..exceptions import (
    AttachmentInputError,
    ControllerTimeoutError,
    DriverError,
    DriverWebError,
    KubernetesError,
)
from ..models.domain.attachment import (
    ReconcileOutcome,
    get_volume_name,
    is_attached,
)
from ..storage.driver import DriverGateway
from ..storage.kubernetes.attachment import VolumeAttachmentStorage
from ..storage.kubernetes.pv import PersistentVolumeStorage
from .finalizer import FinalizerManager
from .inputs import AttachmentInputResolver
from .status import StatusWriter

__all__ = ["AttachReconciler"]


class AttachReconciler:
    """Drive a ``VolumeAttachment`` that is not being deleted to attached.

    The steps are ordered so that each one is only taken once the previous
    one is safely recorded in Kubernetes: the attachment finalizer first,
    then the volume finalizer, then the driver call, then the status. Any
    step interrupted by a crash is therefore repeated by the next
    reconciliation, and every step is idempotent.

    Parameters
    ----------
    attachment_storage
        Storage for volume attachments.
    pv_storage
        Storage for persistent volumes.
    inputs
        Resolves the volume and node of an attachment.
    finalizers
        Manages the controller finalizer.
    status_writer
        Writes attachment status.
    driver
        Storage driver.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        attachment_storage: VolumeAttachmentStorage,
        pv_storage: PersistentVolumeStorage,
        inputs: AttachmentInputResolver,
        finalizers: FinalizerManager,
        status_writer: StatusWriter,
        driver: DriverGateway,
        logger: BoundLogger,
    ) -> None:
        self._attachment_storage = attachment_storage
        self._pv_storage = pv_storage
        self._inputs = inputs
        self._finalizers = finalizers
        self._status = status_writer
        self._driver = driver
        self._logger = logger

    async def reconcile(
        self, attachment: V1VolumeAttachment
    ) -> ReconcileOutcome:
        """Attach the volume of an attachment, if not already attached.

        Parameters
        ----------
        attachment
            Volume attachment, freshly read, with no deletion timestamp.

        Returns
        -------
        ReconcileOutcome
            `ReconcileOutcome.RETRY` if the attachment failed and the error
            was recorded in its status, otherwise `ReconcileOutcome.DONE`.

        Raises
        ------
        ControllerTimeoutError
            Raised if a finalizer or status update timed out on every
            attempt.
        KubernetesError
            Raised if a finalizer or status update failed on every attempt.
        """
        logger = self._logger.bind(
            attachment=attachment.metadata.name,
            volume=get_volume_name(attachment),
            node=attachment.spec.node_name,
        )
        if is_attached(attachment):
            logger.debug("Volume already attached")
            return ReconcileOutcome.DONE

        # The attachment finalizer must be in place before anything else so
        # that deleting the attachment always goes through detach.
        try:
            va = await self._finalizers.ensure(
                self._attachment_storage, attachment, present=True
            )
        except (KubernetesError, ControllerTimeoutError) as e:
            msg = f"could not add VolumeAttachment finalizer: {e!s}"
            await self._save_error(attachment, msg, logger)
            raise
        if va is None:
            logger.debug("Volume attachment was deleted")
            return ReconcileOutcome.DONE

        try:
            pv = await self._inputs.get_volume(va)
        except AttachmentInputError as e:
            await self._status.save_attach_error(va, str(e))
            return ReconcileOutcome.RETRY
        if pv.metadata.deletion_timestamp:
            name = pv.metadata.name
            msg = f'PersistentVolume "{name}" is marked for deletion'
            await self._status.save_attach_error(va, msg)
            return ReconcileOutcome.RETRY

        try:
            updated_pv = await self._finalizers.ensure(
                self._pv_storage, pv, present=True
            )
        except (KubernetesError, ControllerTimeoutError) as e:
            msg = f"could not add PersistentVolume finalizer: {e!s}"
            await self._save_error(va, msg, logger)
            raise
        if updated_pv is None:
            msg = f'persistentvolume "{pv.metadata.name}" not found'
            await self._status.save_attach_error(va, msg)
            return ReconcileOutcome.RETRY

        try:
            node_id = await self._inputs.get_node_id(va)
        except AttachmentInputError as e:
            await self._status.save_attach_error(va, str(e))
            return ReconcileOutcome.RETRY

        csi = updated_pv.spec.csi
        existing = va.status.attachment_metadata if va.status else None
        logger.info("Attaching volume", node_id=node_id)
        try:
            metadata = await self._driver.attach(
                csi.volume_handle,
                node_id,
                read_only=bool(csi.read_only),
                metadata=existing,
            )
        except (DriverError, DriverWebError) as e:
            await self._status.save_attach_error(va, str(e))
            return ReconcileOutcome.RETRY

        await self._status.mark_attached(va, metadata)
        logger.info("Volume attached")
        return ReconcileOutcome.DONE

    async def _save_error(
        self, attachment: V1VolumeAttachment, message: str, logger: BoundLogger
    ) -> None:
        """Record an attach error, logging rather than raising on failure.

        Used when reporting a failed update, so the original exception is
        the one that should propagate.
        """
        try:
            await self._status.save_attach_error(attachment, message)
        except (KubernetesError, ControllerTimeoutError) as e:
            logger.warning("Cannot save attach error", error=str(e))
