"""Route Kubernetes events to the reconcilers."""

from __future__ import annotations

import asyncio

from kubernetes_asyncio.client import V1PersistentVolume, V1VolumeAttachment
from safir.slack.blockkit import SlackException
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from ..constants import WATCH_RETRY_DELAY
from ..models.domain.attachment import (
    ReconcileOutcome,
    WorkKey,
    WorkKind,
    get_volume_name,
    has_finalizer,
)
from ..models.domain.kubernetes import WatchEventType
from ..storage.kubernetes.attachment import VolumeAttachmentStorage
from ..storage.kubernetes.pv import PersistentVolumeStorage
from ..storage.kubernetes.watcher import WatchEvent
from .attach import AttachReconciler
from .detach import DetachReconciler
from .queue import WorkQueue
from .reclaim import VolumeFinalizerReclaimer

__all__ = ["Dispatcher"]


class Dispatcher:
    """Turn Kubernetes events into work and run the workers.

    Watch events only ever add keys to the work queue. The workers then
    read the current state of the object and decide what to do, so events
    can be lost, duplicated, or reordered without harm.

    Parameters
    ----------
    driver_name
        Name of the CSI driver. Attachments for other drivers are ignored.
    finalizer
        Finalizer owned by this controller.
    queue
        Work queue shared by all workers.
    attachment_storage
        Storage for volume attachments.
    pv_storage
        Storage for persistent volumes.
    attacher
        Reconciler for attachments that are not being deleted.
    detacher
        Reconciler for attachments that are being deleted.
    reclaimer
        Reconciler for persistent volumes.
    slack_client
        Optional Slack webhook client for alerts.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        driver_name: str,
        finalizer: str,
        queue: WorkQueue[WorkKey],
        attachment_storage: VolumeAttachmentStorage,
        pv_storage: PersistentVolumeStorage,
        attacher: AttachReconciler,
        detacher: DetachReconciler,
        reclaimer: VolumeFinalizerReclaimer,
        slack_client: SlackWebhookClient | None = None,
        logger: BoundLogger,
    ) -> None:
        self._driver_name = driver_name
        self._finalizer = finalizer
        self._queue = queue
        self._attachment_storage = attachment_storage
        self._pv_storage = pv_storage
        self._attacher = attacher
        self._detacher = detacher
        self._reclaimer = reclaimer
        self._slack = slack_client
        self._logger = logger

    def handle_attachment_event(
        self, event: WatchEvent[V1VolumeAttachment]
    ) -> None:
        """Queue work for a change to a volume attachment.

        Parameters
        ----------
        event
            Watch event for the attachment.
        """
        attachment = event.object
        if attachment.spec.attacher != self._driver_name:
            return
        if event.action == WatchEventType.DELETED:
            # The persistent volume may now be unused.
            volume = get_volume_name(attachment)
            if volume:
                self._queue.add(WorkKey(WorkKind.VOLUME, volume))
        else:
            name = attachment.metadata.name
            self._queue.add(WorkKey(WorkKind.ATTACHMENT, name))

    def handle_volume_event(
        self, event: WatchEvent[V1PersistentVolume]
    ) -> None:
        """Queue work for a change to a persistent volume.

        Only persistent volumes that carry the controller finalizer are of
        interest, since those are the only ones that may need releasing.

        Parameters
        ----------
        event
            Watch event for the persistent volume.
        """
        if event.action == WatchEventType.DELETED:
            return
        pv = event.object
        if has_finalizer(pv, self._finalizer):
            self._queue.add(WorkKey(WorkKind.VOLUME, pv.metadata.name))

    async def process(self, key: WorkKey) -> ReconcileOutcome:
        """Reconcile the object identified by a work key.

        Parameters
        ----------
        key
            Key to reconcile.

        Returns
        -------
        ReconcileOutcome
            Whether the key needs to be retried.

        Raises
        ------
        ControllerTimeoutError
            Raised if a Kubernetes API call timed out.
        KubernetesError
            Raised if a Kubernetes API call failed.
        """
        if key.kind == WorkKind.VOLUME:
            return await self._reclaimer.reclaim(key.name)
        attachment = await self._attachment_storage.read(key.name)
        if not attachment:
            self._logger.debug("Volume attachment is gone", key=str(key))
            return ReconcileOutcome.DONE
        if attachment.spec.attacher != self._driver_name:
            return ReconcileOutcome.DONE
        if attachment.metadata.deletion_timestamp:
            return await self._detacher.reconcile(attachment)
        else:
            return await self._attacher.reconcile(attachment)

    async def run_worker(self) -> None:
        """Process keys from the work queue until it is shut down."""
        while (key := await self._queue.get()) is not None:
            try:
                outcome = await self.process(key)
            except Exception as e:
                await self._report(f"Error reconciling {key}", e)
                self._queue.add_rate_limited(key)
            else:
                if outcome == ReconcileOutcome.DONE:
                    self._queue.forget(key)
                else:
                    self._queue.add_rate_limited(key)
            finally:
                self._queue.done(key)

    async def resync(self) -> None:
        """Queue every volume attachment and persistent volume.

        This catches any changes missed by the watches and retries any
        condition that does not produce further events.

        Raises
        ------
        ControllerTimeoutError
            Raised if a Kubernetes API call timed out.
        KubernetesError
            Raised if a Kubernetes API call failed.
        """
        self._logger.debug("Resynchronizing with Kubernetes")
        modified = WatchEventType.MODIFIED
        for attachment in await self._attachment_storage.list():
            event = WatchEvent(action=modified, object=attachment)
            self.handle_attachment_event(event)
        for pv in await self._pv_storage.list():
            self.handle_volume_event(WatchEvent(action=modified, object=pv))

    async def watch_attachments(self) -> None:
        """Watch volume attachments and queue work for each change.

        Runs until cancelled. The watch is restarted whenever it ends.
        """
        while True:
            try:
                async for event in self._attachment_storage.watch():
                    self.handle_attachment_event(event)
            except TimeoutError:
                self._logger.debug("Restarting volume attachment watch")
            except Exception as e:
                msg = "Error watching volume attachments"
                await self._report(msg, e)
                await asyncio.sleep(WATCH_RETRY_DELAY.total_seconds())

    async def watch_volumes(self) -> None:
        """Watch persistent volumes and queue work for each change.

        Runs until cancelled. The watch is restarted whenever it ends.
        """
        while True:
            try:
                async for event in self._pv_storage.watch():
                    self.handle_volume_event(event)
            except TimeoutError:
                self._logger.debug("Restarting persistent volume watch")
            except Exception as e:
                msg = "Error watching persistent volumes"
                await self._report(msg, e)
                await asyncio.sleep(WATCH_RETRY_DELAY.total_seconds())

    async def _report(self, message: str, exc: Exception) -> None:
        """Log an exception and report it to Slack if configured."""
        self._logger.exception(message)
        if self._slack:
            if isinstance(exc, SlackException):
                await self._slack.post_exception(exc)
            else:
                await self._slack.post_uncaught_exception(exc)
