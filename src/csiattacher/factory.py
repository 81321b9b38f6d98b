"""Component factory and process-wide context management."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import aclosing, asynccontextmanager
from dataclasses import dataclass, field
from typing import Self

import structlog
from httpx import AsyncClient
from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiClient
from safir.dependencies.http_client import http_client_dependency
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from .background import BackgroundTaskManager
from .config import Config
from .models.domain.attachment import WorkKey
from .services.attach import AttachReconciler
from .services.detach import DetachReconciler
from .services.dispatcher import Dispatcher
from .services.finalizer import FinalizerManager
from .services.inputs import AttachmentInputResolver
from .services.nodeid import NodeIDResolver
from .services.queue import WorkQueue
from .services.reclaim import VolumeFinalizerReclaimer
from .services.status import StatusWriter
from .storage.driver import DriverGateway, HttpDriverGateway
from .storage.kubernetes.attachment import VolumeAttachmentStorage
from .storage.kubernetes.node import NodeStorage
from .storage.kubernetes.pv import PersistentVolumeStorage

__all__ = ["Factory", "ProcessContext"]


@dataclass(slots=True)
class ProcessContext:
    """Per-process global application state.

    This object holds all of the per-process singletons and is managed by
    `~csiattacher.dependencies.context.ContextDependency`. It is used by the
    `Factory` class as a source of dependencies to inject into created
    service and storage objects.
    """

    config: Config
    """Controller configuration."""

    http_client: AsyncClient
    """Shared HTTP client, used to talk to the driver."""

    kubernetes_client: ApiClient
    """Shared Kubernetes client."""

    queue: WorkQueue[WorkKey]
    """Work queue shared by the watchers and the workers."""

    slack_client: SlackWebhookClient | None
    """Optional Slack webhook client for alerts."""

    _background: BackgroundTaskManager | None = field(
        default=None, init=False
    )

    @classmethod
    async def from_config(cls, config: Config) -> Self:
        """Create a new process context from the controller configuration.

        Parameters
        ----------
        config
            Controller configuration.

        Returns
        -------
        ProcessContext
            Shared context for a controller process.
        """
        slack_client = None
        if config.slack_webhook:
            logger = structlog.get_logger(__name__)
            slack_client = SlackWebhookClient(
                config.slack_webhook.get_secret_value(), config.name, logger
            )
        return cls(
            config=config,
            http_client=await http_client_dependency(),
            kubernetes_client=client.ApiClient(),
            queue=WorkQueue(
                base_delay=config.retry_base_delay,
                max_delay=config.retry_max_delay,
            ),
            slack_client=slack_client,
        )

    @property
    def is_running(self) -> bool:
        """Whether the background tasks are running."""
        return self._background is not None

    async def aclose(self) -> None:
        """Free allocated resources."""
        await self.kubernetes_client.close()

    async def start(self) -> None:
        """Start the background tasks running."""
        if self._background:
            return

        # This logger is used only by process-global singletons.
        logger = structlog.get_logger(__name__)
        factory = Factory(self, logger)
        self._background = factory.create_background_task_manager()
        await self._background.start()

    async def stop(self) -> None:
        """Stop the background tasks.

        Called during shutdown, or before recreating the process context
        using a different configuration.
        """
        if self._background:
            await self._background.stop()
            self._background = None


class Factory:
    """Build controller components.

    Uses the contents of a `ProcessContext` to construct the components of
    the application on demand.

    Parameters
    ----------
    context
        Shared process context.
    logger
        Logger to use for messages.
    """

    @classmethod
    @asynccontextmanager
    async def standalone(cls, config: Config) -> AsyncIterator[Self]:
        """Async context manager for controller components.

        Intended for the test suite.

        Parameters
        ----------
        config
            Controller configuration.

        Yields
        ------
        Factory
            Newly-created factory. Must be used as a context manager.
        """
        logger = structlog.get_logger(__name__)
        context = await ProcessContext.from_config(config)
        factory = cls(context, logger)
        async with aclosing(factory):
            yield factory

    def __init__(self, context: ProcessContext, logger: BoundLogger) -> None:
        self._context = context
        self._logger = logger

    @property
    def queue(self) -> WorkQueue[WorkKey]:
        """Global work queue, from the `ProcessContext`."""
        return self._context.queue

    async def aclose(self) -> None:
        """Shut down the factory.

        After this method is called, the factory object is no longer valid
        and must not be used.
        """
        await self._context.stop()
        await self._context.aclose()

    def create_attach_reconciler(self) -> AttachReconciler:
        """Create the reconciler for attachments that are not being deleted.

        Returns
        -------
        AttachReconciler
            Newly-created attach reconciler.
        """
        status_writer = self.create_status_writer()
        return AttachReconciler(
            attachment_storage=self.create_attachment_storage(),
            pv_storage=self.create_pv_storage(),
            inputs=self.create_input_resolver(),
            finalizers=self.create_finalizer_manager(status_writer),
            status_writer=status_writer,
            driver=self.create_driver(),
            logger=self._logger,
        )

    def create_attachment_storage(self) -> VolumeAttachmentStorage:
        """Create Kubernetes storage object for volume attachments.

        Returns
        -------
        VolumeAttachmentStorage
            Newly-created volume attachment storage.
        """
        config = self._context.config
        return VolumeAttachmentStorage(
            self._context.kubernetes_client,
            self._logger,
            timeout=config.kubernetes_timeout,
            watch_timeout=config.watch_timeout,
        )

    def create_background_task_manager(self) -> BackgroundTaskManager:
        """Create the manager of the controller background tasks.

        Returns
        -------
        BackgroundTaskManager
            Newly-created background task manager.
        """
        config = self._context.config
        return BackgroundTaskManager(
            dispatcher=self.create_dispatcher(),
            queue=self._context.queue,
            workers=config.workers,
            resync_interval=config.resync_interval,
            slack_client=self._context.slack_client,
            logger=self._logger,
        )

    def create_detach_reconciler(self) -> DetachReconciler:
        """Create the reconciler for attachments that are being deleted.

        Returns
        -------
        DetachReconciler
            Newly-created detach reconciler.
        """
        return DetachReconciler(
            finalizer=self._context.config.finalizer,
            inputs=self.create_input_resolver(),
            status_writer=self.create_status_writer(),
            driver=self.create_driver(),
            logger=self._logger,
        )

    def create_dispatcher(self) -> Dispatcher:
        """Create the dispatcher that routes events to the reconcilers.

        Returns
        -------
        Dispatcher
            Newly-created dispatcher.
        """
        config = self._context.config
        return Dispatcher(
            driver_name=config.driver_name,
            finalizer=config.finalizer,
            queue=self._context.queue,
            attachment_storage=self.create_attachment_storage(),
            pv_storage=self.create_pv_storage(),
            attacher=self.create_attach_reconciler(),
            detacher=self.create_detach_reconciler(),
            reclaimer=self.create_reclaimer(),
            slack_client=self._context.slack_client,
            logger=self._logger,
        )

    def create_driver(self) -> DriverGateway:
        """Create the client for the storage driver.

        Returns
        -------
        DriverGateway
            Newly-created driver client.
        """
        config = self._context.config.driver
        return HttpDriverGateway(
            url=str(config.url),
            http_client=self._context.http_client,
            timeout=config.timeout,
            logger=self._logger,
        )

    def create_finalizer_manager(
        self, status_writer: StatusWriter | None = None
    ) -> FinalizerManager:
        """Create the service that manages the controller finalizer.

        Parameters
        ----------
        status_writer
            Status writer to use. A new one is created if not given.

        Returns
        -------
        FinalizerManager
            Newly-created finalizer manager.
        """
        return FinalizerManager(
            self._context.config.finalizer,
            status_writer or self.create_status_writer(),
            self._logger,
        )

    def create_input_resolver(self) -> AttachmentInputResolver:
        """Create the service that resolves attachment volumes and nodes.

        Returns
        -------
        AttachmentInputResolver
            Newly-created input resolver.
        """
        config = self._context.config
        return AttachmentInputResolver(
            self.create_pv_storage(),
            NodeStorage(
                self._context.kubernetes_client,
                self._logger,
                timeout=config.kubernetes_timeout,
            ),
            NodeIDResolver(config.node_id_annotation),
        )

    def create_pv_storage(self) -> PersistentVolumeStorage:
        """Create Kubernetes storage object for persistent volumes.

        Returns
        -------
        PersistentVolumeStorage
            Newly-created persistent volume storage.
        """
        config = self._context.config
        return PersistentVolumeStorage(
            self._context.kubernetes_client,
            self._logger,
            timeout=config.kubernetes_timeout,
            watch_timeout=config.watch_timeout,
        )

    def create_reclaimer(self) -> VolumeFinalizerReclaimer:
        """Create the service that releases unused persistent volumes.

        Returns
        -------
        VolumeFinalizerReclaimer
            Newly-created reclaimer.
        """
        return VolumeFinalizerReclaimer(
            driver_name=self._context.config.driver_name,
            attachment_storage=self.create_attachment_storage(),
            pv_storage=self.create_pv_storage(),
            finalizers=self.create_finalizer_manager(),
            logger=self._logger,
        )

    def create_status_writer(self) -> StatusWriter:
        """Create the service that writes changes with retries.

        Returns
        -------
        StatusWriter
            Newly-created status writer.
        """
        config = self._context.config
        return StatusWriter(
            attachment_storage=self.create_attachment_storage(),
            attempts=config.write_attempts,
            retry_delay=config.write_retry_delay,
            logger=self._logger,
        )

    async def start_background_services(self) -> None:
        """Start the background tasks managed by the process context.

        These are normally started by the context dependency when running as
        a FastAPI app, but the test suite may want the background tasks
        running while testing with only a factory.
        """
        await self._context.start()
