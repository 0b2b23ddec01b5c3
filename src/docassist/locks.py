"""Per-key asyncio locks that are created on demand and dropped once unused."""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict


@dataclass(slots=True)
class _Slot:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class KeyedLocks:
    """One lock per key; a key's lock lives only while someone holds or awaits it."""

    def __init__(self) -> None:
        self._slots: Dict[str, _Slot] = {}

    def __len__(self) -> int:
        return len(self._slots)

    def locked(self, key: str) -> bool:
        slot = self._slots.get(key)
        return slot is not None and slot.lock.locked()

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        slot = self._slots.get(key)
        if slot is None:
            slot = self._slots[key] = _Slot()
        slot.users += 1
        try:
            async with slot.lock:
                yield
        finally:
            slot.users -= 1
            if slot.users == 0:
                del self._slots[key]


__all__ = ["KeyedLocks"]
