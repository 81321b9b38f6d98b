"""Detach a volume from a node for a deleted ``VolumeAttachment``."""

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
    has_finalizer,
    is_attached,
)
from ..storage.driver import DriverGateway
from .inputs import AttachmentInputResolver
from .status import StatusWriter

__all__ = ["DetachReconciler"]


class DetachReconciler:
    """Detach the volume of a ``VolumeAttachment`` that is being deleted.

    The controller finalizer holds the attachment until the driver has
    confirmed the detach, and is removed in the same update that marks the
    attachment detached.

    Parameters
    ----------
    finalizer
        Finalizer owned by this controller.
    inputs
        Resolves the volume and node of an attachment.
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
        finalizer: str,
        inputs: AttachmentInputResolver,
        status_writer: StatusWriter,
        driver: DriverGateway,
        logger: BoundLogger,
    ) -> None:
        self._finalizer = finalizer
        self._inputs = inputs
        self._status = status_writer
        self._driver = driver
        self._logger = logger

    async def reconcile(
        self, attachment: V1VolumeAttachment
    ) -> ReconcileOutcome:
        """Detach the volume of an attachment and release the attachment.

        An attachment that is not attached is still detached if it carries
        the controller finalizer, since an earlier attach may have reached
        the driver before its result was recorded.

        Parameters
        ----------
        attachment
            Volume attachment, freshly read, with a deletion timestamp.

        Returns
        -------
        ReconcileOutcome
            `ReconcileOutcome.RETRY` if the detach failed and the error was
            recorded in the status, otherwise `ReconcileOutcome.DONE`.

        Raises
        ------
        ControllerTimeoutError
            Raised if the final status update timed out on every attempt.
        KubernetesError
            Raised if the final status update failed on every attempt.
        """
        logger = self._logger.bind(
            attachment=attachment.metadata.name,
            volume=get_volume_name(attachment),
            node=attachment.spec.node_name,
        )
        attached = is_attached(attachment)
        if not attached and not has_finalizer(attachment, self._finalizer):
            logger.debug("Volume already detached")
            return ReconcileOutcome.DONE

        # An attach only reaches the driver after the volume was resolved, so
        # an unattached attachment whose volume cannot be resolved was never
        # attached and can be released without calling the driver.
        try:
            pv = await self._inputs.get_volume(attachment)
        except AttachmentInputError as e:
            if not attached:
                msg = "Releasing attachment that never reached the driver"
                logger.info(msg, error=str(e))
                return await self._release(attachment, logger)
            await self._status.save_detach_error(attachment, str(e))
            return ReconcileOutcome.RETRY
        try:
            node_id = await self._inputs.get_node_id(attachment)
        except AttachmentInputError as e:
            await self._status.save_detach_error(attachment, str(e))
            return ReconcileOutcome.RETRY

        logger.info("Detaching volume", node_id=node_id, attached=attached)
        try:
            await self._driver.detach(pv.spec.csi.volume_handle, node_id)
        except (DriverError, DriverWebError) as e:
            await self._status.save_detach_error(attachment, str(e))
            return ReconcileOutcome.RETRY
        outcome = await self._release(attachment, logger)
        logger.info("Volume detached")
        return outcome

    async def _release(
        self, attachment: V1VolumeAttachment, logger: BoundLogger
    ) -> ReconcileOutcome:
        """Mark an attachment detached and remove the controller finalizer."""
        try:
            await self._status.mark_detached(attachment, self._finalizer)
        except (KubernetesError, ControllerTimeoutError) as e:
            msg = f"could not mark as detached: {e!s}"
            try:
                await self._status.save_detach_error(attachment, msg)
            except (KubernetesError, ControllerTimeoutError) as save_exc:
                logger.warning("Cannot save detach error", error=str(save_exc))
            raise
        return ReconcileOutcome.DONE
