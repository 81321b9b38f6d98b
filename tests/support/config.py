"""Build test configurations for the volume attachment controller."""

from __future__ import annotations

from pathlib import Path

from csiattacher.config import Config
from csiattacher.dependencies.config import config_dependency
from csiattacher.dependencies.context import context_dependency

__all__ = ["configure", "config_path"]


def config_path(directory: str) -> Path:
    """Return the path to a test configuration file.

    Parameters
    ----------
    directory
        Configuration directory to use.
    """
    base = Path(__file__).parent.parent / "data" / directory / "input"
    return base / "config.yaml"


async def configure(directory: str) -> Config:
    """Configure or reconfigure with a test configuration.

    If the global process context was already initialized, stop the
    background tasks and restart them with the new configuration.

    Parameters
    ----------
    directory
        Configuration directory to use.

    Returns
    -------
    Config
        New configuration.
    """
    config_dependency.set_path(config_path(directory))
    config = config_dependency.config
    if context_dependency.is_initialized:
        await context_dependency.aclose()
        await context_dependency.initialize(config)
    return config
