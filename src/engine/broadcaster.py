# src/engine/broadcaster.py
"""
Broadcaster: fan-out of session events to every connected observer.
"""

import asyncio
import logging
from typing import Any, List, Protocol


class Observer(Protocol):
    async def send_json(self, data: Any) -> None: ...


def make_message(event: str, data: Any = None) -> dict:
    return {"event": event, "data": data}


class Broadcaster:
    def __init__(self):
        self.observers: List[Observer] = []
        # one writer at a time keeps every observer's messages in emission order
        self.lock = asyncio.Lock()

    async def attach(self, observer: Observer, snapshot: dict) -> None:
        """Register an observer and resync it with an `init` message."""
        async with self.lock:
            self.observers.append(observer)
            await self._deliver(observer, make_message("init", snapshot))
        logging.info(f"[ws] Observer attached, {len(self.observers)} connected")

    def detach(self, observer: Observer) -> None:
        if observer in self.observers:
            self.observers.remove(observer)
            logging.info(f"[ws] Observer detached, {len(self.observers)} connected")

    async def publish(self, event: str, data: Any = None) -> None:
        message = make_message(event, data)
        async with self.lock:
            for observer in list(self.observers):
                await self._deliver(observer, message)

    async def send(self, observer: Observer, event: str, data: Any = None) -> None:
        """Reply to a single observer, e.g. the result of its own command."""
        async with self.lock:
            await self._deliver(observer, make_message(event, data))

    async def _deliver(self, observer: Observer, message: dict) -> None:
        try:
            await observer.send_json(message)
        except Exception as e:
            # A dead observer must not break delivery to the others or the scan.
            logging.error(f"[ws] Dropping observer after failed '{message['event']}' send: {e}")
            self.detach(observer)
