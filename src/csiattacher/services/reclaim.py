"""Release persistent volumes that no attachment refers to any more."""

from __future__ import annotations

from structlog.stdlib import BoundLogger

from ..models.domain.attachment import (
    ReconcileOutcome,
    get_volume_name,
    has_finalizer,
)
from ..storage.kubernetes.attachment import VolumeAttachmentStorage
from ..storage.kubernetes.pv import PersistentVolumeStorage
from .finalizer import FinalizerManager

__all__ = ["VolumeFinalizerReclaimer"]


class VolumeFinalizerReclaimer:
    """Remove the controller finalizer from deleted persistent volumes.

    The finalizer is added to a persistent volume when it is first attached.
    Once the volume is marked for deletion and no attachment for this driver
    refers to it, the finalizer is removed so that Kubernetes can finish
    deleting the volume.

    Parameters
    ----------
    driver_name
        Name of the CSI driver.
    attachment_storage
        Storage for volume attachments.
    pv_storage
        Storage for persistent volumes.
    finalizers
        Manages the controller finalizer.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        driver_name: str,
        attachment_storage: VolumeAttachmentStorage,
        pv_storage: PersistentVolumeStorage,
        finalizers: FinalizerManager,
        logger: BoundLogger,
    ) -> None:
        self._driver_name = driver_name
        self._attachment_storage = attachment_storage
        self._pv_storage = pv_storage
        self._finalizers = finalizers
        self._logger = logger

    async def reclaim(self, name: str) -> ReconcileOutcome:
        """Remove the finalizer from a persistent volume if it is unused.

        Parameters
        ----------
        name
            Name of the persistent volume.

        Returns
        -------
        ReconcileOutcome
            Always `ReconcileOutcome.DONE`. A volume still in use is
            requeued when the last attachment referring to it is deleted.

        Raises
        ------
        ControllerTimeoutError
            Raised if a Kubernetes API call timed out.
        KubernetesError
            Raised if a Kubernetes API call failed.
        """
        pv = await self._pv_storage.read(name)
        if not pv or not has_finalizer(pv, self._finalizers.finalizer):
            return ReconcileOutcome.DONE
        if not pv.metadata.deletion_timestamp:
            return ReconcileOutcome.DONE

        for attachment in await self._attachment_storage.list():
            if attachment.spec.attacher != self._driver_name:
                continue
            if get_volume_name(attachment) == name:
                self._logger.debug(
                    "Persistent volume still in use",
                    volume=name,
                    attachment=attachment.metadata.name,
                )
                return ReconcileOutcome.DONE

        await self._finalizers.ensure(self._pv_storage, pv, present=False)
        self._logger.info("Released persistent volume", volume=name)
        return ReconcileOutcome.DONE
