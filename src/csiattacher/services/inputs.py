"""Resolve the volume and node an attachment refers to."""

from __future__ import annotations

from kubernetes_asyncio.client import V1PersistentVolume, V1VolumeAttachment

from ..exceptions import AttachmentInputError
from ..models.domain.attachment import get_volume_name
from ..storage.kubernetes.node import NodeStorage
from ..storage.kubernetes.pv import PersistentVolumeStorage
from .nodeid import NodeIDResolver

__all__ = ["AttachmentInputResolver"]


class AttachmentInputResolver:
    """Look up the objects needed to call the driver for an attachment.

    All failures raise `~csiattacher.exceptions.AttachmentInputError` with
    the message that should be recorded in the status of the attachment.

    Parameters
    ----------
    pv_storage
        Storage for persistent volumes.
    node_storage
        Storage for nodes.
    node_id_resolver
        Maps nodes to driver node IDs.
    """

    def __init__(
        self,
        pv_storage: PersistentVolumeStorage,
        node_storage: NodeStorage,
        node_id_resolver: NodeIDResolver,
    ) -> None:
        self._pv_storage = pv_storage
        self._node_storage = node_storage
        self._node_id_resolver = node_id_resolver

    async def get_volume(
        self, attachment: V1VolumeAttachment
    ) -> V1PersistentVolume:
        """Return the CSI persistent volume an attachment refers to.

        Parameters
        ----------
        attachment
            Volume attachment.

        Returns
        -------
        kubernetes_asyncio.client.models.V1PersistentVolume
            Referenced persistent volume, which is guaranteed to have a CSI
            source.

        Raises
        ------
        AttachmentInputError
            Raised if the attachment has no volume reference, or the volume
            does not exist or is not a CSI volume.
        ControllerTimeoutError
            Raised if the Kubernetes API call timed out.
        KubernetesError
            Raised if the Kubernetes API call failed.
        """
        name = get_volume_name(attachment)
        if not name:
            msg = "VolumeAttachment.spec.persistentVolumeName is empty"
            raise AttachmentInputError(msg)
        pv = await self._pv_storage.read(name)
        if not pv:
            raise AttachmentInputError(f'persistentvolume "{name}" not found')
        if not pv.spec.csi:
            msg = f'PersistentVolume "{name}" is not a CSI volume'
            raise AttachmentInputError(msg)
        return pv

    async def get_node_id(self, attachment: V1VolumeAttachment) -> str:
        """Return the driver node ID of the node an attachment refers to.

        Parameters
        ----------
        attachment
            Volume attachment.

        Returns
        -------
        str
            Node ID to pass to the driver.

        Raises
        ------
        AttachmentInputError
            Raised if the node does not exist or has no node ID for this
            driver.
        ControllerTimeoutError
            Raised if the Kubernetes API call timed out.
        KubernetesError
            Raised if the Kubernetes API call failed.
        """
        name = attachment.spec.node_name
        node = await self._node_storage.read(name)
        if not node:
            raise AttachmentInputError(f'node "{name}" not found')
        return self._node_id_resolver.resolve(node)
