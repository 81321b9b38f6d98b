"""Process context management.

The controller does all of its work in background tasks, so unlike most
FastAPI applications, no per-request context is needed. This dependency only
owns the process-global `~csiattacher.factory.ProcessContext` and ties its
lifetime to that of the application.
"""

from ..config import Config
from ..factory import ProcessContext

__all__ = ["ContextDependency", "context_dependency"]


class ContextDependency:
    """Manage the process-global context of the controller."""

    def __init__(self) -> None:
        self._process_context: ProcessContext | None = None

    async def __call__(self) -> ProcessContext:
        """Return the process context."""
        if not self._process_context:
            raise RuntimeError("ContextDependency not initialized")
        return self._process_context

    @property
    def is_initialized(self) -> bool:
        """Whether the process context has been initialized."""
        return self._process_context is not None

    async def initialize(self, config: Config) -> None:
        """Initialize the process-global shared context.

        Starts the background tasks that watch Kubernetes and reconcile
        volume attachments.

        Parameters
        ----------
        config
            Controller configuration.
        """
        if self._process_context:
            await self._process_context.stop()
            await self._process_context.aclose()
        self._process_context = await ProcessContext.from_config(config)
        await self._process_context.start()

    async def aclose(self) -> None:
        """Stop the background tasks and free resources."""
        if self._process_context:
            await self._process_context.stop()
            await self._process_context.aclose()
        self._process_context = None


context_dependency = ContextDependency()
"""The dependency that will return the process context."""
