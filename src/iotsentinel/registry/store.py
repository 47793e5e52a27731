"""
Device Registry.

Authoritative in-memory store of known devices, shared by the ingestion
workers and the periodic workers. Every read-modify-write of a device runs
under that device's lock; creation runs under the registry-wide lock so a
hardware address is created exactly once.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, TypeVar

from iotsentinel.registry.models import Device, Observation, normalize_hardware_address


logger = logging.getLogger(__name__)

T = TypeVar("T")


class UnknownDeviceError(KeyError):
    """Raised when an operation targets a hardware address that is not registered."""


class DeviceRegistry:
    """
    Concurrency-safe device store.

    Callers never hold references to the stored records: reads return deep
    copies and writes go through ``update``/``locked``.
    """

    def __init__(self) -> None:
        self._devices: dict[str, Device] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._create_lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._devices)

    def __contains__(self, hardware_address: object) -> bool:
        if not isinstance(hardware_address, str):
            return False
        return normalize_hardware_address(hardware_address) in self._devices

    def addresses(self) -> list[str]:
        """Hardware addresses of all registered devices, in creation order."""
        return list(self._devices)

    async def observe(self, observation: Observation) -> tuple[Device, bool]:
        """
        Record an observation.

        Creates the device on the first observation of a hardware address,
        otherwise merges the observation into the existing record.

        Returns:
            Tuple of (device copy, created). ``created`` is True for exactly
            one caller per hardware address.
        """
        key = observation.hardware_address
        async with self._create_lock:
            if key not in self._devices:
                device = Device.from_observation(observation)
                self._devices[key] = device
                self._locks[key] = asyncio.Lock()
                logger.debug("Registered new device %s", key)
                return copy.deepcopy(device), True

        async with self._locks[key]:
            device = self._devices[key]
            device.apply_observation(observation)
            return copy.deepcopy(device), False

    async def get(self, hardware_address: str) -> Device | None:
        """Get a copy of a device, or None if unknown."""
        key = normalize_hardware_address(hardware_address)
        lock = self._locks.get(key)
        if lock is None:
            return None
        async with lock:
            return copy.deepcopy(self._devices[key])

    async def update(
        self,
        hardware_address: str,
        mutator: Callable[[Device], T],
    ) -> tuple[Device, T]:
        """
        Apply ``mutator`` to a device atomically.

        Returns:
            Tuple of (device copy after mutation, mutator return value)

        Raises:
            UnknownDeviceError: If the device is not registered
        """
        key = normalize_hardware_address(hardware_address)
        async with self.locked(key) as device:
            result = mutator(device)
            return copy.deepcopy(device), result

    @asynccontextmanager
    async def locked(self, hardware_address: str) -> AsyncIterator[Device]:
        """
        Hold a device's lock and yield the stored record for in-place edits.

        The record must not be kept after the block exits.
        """
        key = normalize_hardware_address(hardware_address)
        lock = self._locks.get(key)
        if lock is None:
            raise UnknownDeviceError(key)
        async with lock:
            yield self._devices[key]

    async def snapshot(self) -> list[Device]:
        """Copies of all devices, each taken under its own lock."""
        devices = []
        for key in self.addresses():
            device = await self.get(key)
            if device is not None:
                devices.append(device)
        return devices

    async def remove(self, hardware_address: str) -> bool:
        """Remove a device (operator pruning). Returns True if it existed."""
        key = normalize_hardware_address(hardware_address)
        async with self._create_lock:
            lock = self._locks.get(key)
            if lock is None:
                return False
            async with lock:
                del self._devices[key]
                del self._locks[key]
        logger.info("Removed device %s from registry", key)
        return True
