"""
Observation queue.

Boundary between capture backends (one per monitored interface) and the
ingestion workers. Capture backends decode frames and push normalized
observations; workers pull them and run the pipeline.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from iotsentinel.registry.models import Observation


logger = logging.getLogger(__name__)


class QueueClosedError(RuntimeError):
    """Raised when putting to a closed queue."""


class ObservationQueue:
    """
    Async FIFO queue of observations for one interface.

    ``put`` applies backpressure when the queue is full; ``offer`` drops
    the observation instead and counts the drop.
    """

    def __init__(self, interface: str = "eth0", maxsize: int = 1000) -> None:
        """
        Initialize the queue.

        Args:
            interface: Interface name the observations come from
            maxsize: Maximum queue size (0 for unlimited)
        """
        self.interface = interface
        self._queue: asyncio.Queue[Observation] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self._dropped = 0

    def _prepare(self, observation: Observation | dict[str, Any]) -> Observation:
        if self._closed:
            raise QueueClosedError(f"Observation queue for {self.interface} is closed")
        if isinstance(observation, dict):
            observation = Observation.from_dict(observation)
        if observation.interface is None:
            observation.interface = self.interface
        return observation

    async def put(self, observation: Observation | dict[str, Any]) -> None:
        """
        Add an observation, waiting for room if the queue is full.

        Args:
            observation: Observation or its dictionary payload
        """
        await self._queue.put(self._prepare(observation))

    def offer(self, observation: Observation | dict[str, Any]) -> bool:
        """Add an observation without blocking. Returns False if it was dropped."""
        try:
            self._queue.put_nowait(self._prepare(observation))
        except asyncio.QueueFull:
            self._dropped += 1
            logger.warning("Observation queue for %s full; dropping observation", self.interface)
            return False
        return True

    async def get(self) -> Observation:
        """Get the next observation (oldest first)."""
        return await self._queue.get()

    def get_nowait(self) -> Observation | None:
        """Get the next observation, or None if the queue is empty."""
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def task_done(self) -> None:
        self._queue.task_done()

    async def join(self) -> None:
        """Wait until every queued observation has been processed."""
        await self._queue.join()

    def close(self) -> None:
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def qsize(self) -> int:
        return self._queue.qsize()

    @property
    def empty(self) -> bool:
        return self._queue.empty()

    @property
    def dropped(self) -> int:
        return self._dropped
