"""Lifecycle interface for components that run beside the session controller."""

from __future__ import annotations

from abc import ABC, abstractmethod


class Service(ABC):
    """Started after the config is loaded, stopped before the process exits.

    Subclasses name themselves through ``service_name`` and report liveness
    through ``running``; ``health_check`` is derived from it.
    """

    service_name: str = "service"

    @property
    @abstractmethod
    def running(self) -> bool: ...

    @abstractmethod
    async def start(self) -> None: ...

    @abstractmethod
    async def stop(self) -> None: ...

    async def health_check(self) -> bool:
        return self.running
