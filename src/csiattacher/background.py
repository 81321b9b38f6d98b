"""Volume attachment controller background processing."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import timedelta

from aiojobs import Scheduler
from safir.datetime import current_datetime
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from .models.domain.attachment import WorkKey
from .services.dispatcher import Dispatcher
from .services.queue import WorkQueue

__all__ = ["BackgroundTaskManager"]


class BackgroundTaskManager:
    """Manage the controller background tasks.

    All of the work of the controller happens in background tasks, namely:

    #. Watch volume attachments and queue work for changes.
    #. Watch persistent volumes and queue work for changes.
    #. Periodically queue every known object, to catch anything missed.
    #. Run a pool of workers that reconcile queued objects.

    This class only does the task management. The work is done by the
    `~csiattacher.services.dispatcher.Dispatcher`.

    Parameters
    ----------
    dispatcher
        Turns events into work and processes it.
    queue
        Work queue shared by the workers.
    workers
        Number of workers to run.
    resync_interval
        How often to queue every known object.
    slack_client
        Optional Slack webhook client for alerts.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        dispatcher: Dispatcher,
        queue: WorkQueue[WorkKey],
        workers: int,
        resync_interval: timedelta,
        slack_client: SlackWebhookClient | None,
        logger: BoundLogger,
    ) -> None:
        self._dispatcher = dispatcher
        self._queue = queue
        self._workers = workers
        self._resync_interval = resync_interval
        self._slack = slack_client
        self._logger = logger

        self._scheduler: Scheduler | None = None

    async def start(self) -> None:
        """Start all background tasks."""
        if self._scheduler:
            msg = "Background tasks already running, cannot start"
            self._logger.warning(msg)
            return
        self._scheduler = Scheduler()
        coros = [
            self._dispatcher.watch_attachments(),
            self._dispatcher.watch_volumes(),
            self._loop(
                self._dispatcher.resync,
                self._resync_interval,
                "resynchronizing with Kubernetes",
            ),
        ]
        workers = (self._dispatcher.run_worker() for _ in range(self._workers))
        coros.extend(workers)
        self._logger.info("Starting background tasks", workers=self._workers)
        for coro in coros:
            await self._scheduler.spawn(coro)

    async def stop(self) -> None:
        """Stop the background tasks."""
        if not self._scheduler:
            msg = "Background tasks were already stopped"
            self._logger.warning(msg)
            return
        self._logger.info("Stopping background tasks")
        self._queue.shutdown()
        await self._scheduler.close()
        self._scheduler = None

    async def _loop(
        self,
        call: Callable[[], Awaitable[None]],
        interval: timedelta,
        description: str,
    ) -> None:
        """Wrap a coroutine in a periodic scheduling loop.

        The provided coroutine is run immediately and then on every interval.

        Parameters
        ----------
        call
            Async function to run repeatedly.
        interval
            Scheduling interval to use.
        description
            Description of the background task for error reporting.
        """
        while True:
            start = current_datetime(microseconds=True)
            try:
                await call()
            except Exception as e:
                # Log the failure but keep the schedule, which gives the
                # problem time to be resolved.
                msg = f"Uncaught exception {description}"
                self._logger.exception(msg)
                if self._slack:
                    await self._slack.post_uncaught_exception(e)
            delay = interval - (current_datetime(microseconds=True) - start)
            if delay.total_seconds() < 1:
                msg = f"{description.capitalize()} is running continuously"
                self._logger.warning(msg)
            else:
                await asyncio.sleep(delay.total_seconds())
