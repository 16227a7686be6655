# src/engine/scan_session.py
"""
ScanSession: state machine for the single scan this service runs at a time.

idle/end --start--> scanning --(work unit terminates)--> end

All mutations happen on the event loop; telemetry goes out through the
Broadcaster as soon as it is recorded.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from engine.broadcaster import Broadcaster, Observer
from engine.errors import CommandRejected, StorageError
from engine.settings import Settings, SettingsStore
from storage.facade import StorageFacade
from tools.base import ScanRunner


class ScanStatus(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    END = "end"


@dataclass
class SessionState:
    status: ScanStatus = ScanStatus.IDLE
    logs: str = ""
    status_text: List[str] = field(default_factory=list)
    percentage: float = 0
    exit_code: Optional[int] = None
    stopped: bool = False


def clamp_percentage(value) -> float:
    return max(0.0, min(100.0, float(value)))


class ScanSession:
    def __init__(
        self,
        settings_store: SettingsStore,
        runner_factory: Callable[[Settings], ScanRunner],
        broadcaster: Optional[Broadcaster] = None,
        storage_factory: Callable[[Settings], StorageFacade] = StorageFacade,
    ):
        self.settings_store = settings_store
        self.settings = settings_store.load()
        self.state = SessionState()
        self.broadcaster = broadcaster or Broadcaster()
        self.runner: Optional[ScanRunner] = None
        self._runner_factory = runner_factory
        self._storage_factory = storage_factory
        self._task: Optional[asyncio.Task] = None
        self._stop_requested = False
        self._saving = False

    @property
    def scanning(self) -> bool:
        return self.state.status == ScanStatus.SCANNING

    # --- commands ---

    async def start(self) -> None:
        if self.scanning:
            raise CommandRejected("start-scan", "a scan is already running")
        try:
            runner = self._runner_factory(self.settings)
        except Exception as e:
            logging.error(f"[scan] Cannot create scanner: {e}")
            raise CommandRejected("start-scan", f"cannot launch the scanner: {e}") from e
        self.runner = runner
        self.state = SessionState(status=ScanStatus.SCANNING)
        self._stop_requested = False
        self._saving = False
        logging.info(f"[scan] Scan started db_type={self.settings.db_type} cores={self.settings.cores}")
        await self.broadcaster.publish("start-scan")
        self._task = asyncio.create_task(self._run(self.runner))

    async def stop(self) -> None:
        if not self.scanning:
            raise CommandRejected("stop-scan", "no scan is running")
        if self._saving:
            raise CommandRejected("stop-scan", "saving results")
        if self._stop_requested:
            return
        self._stop_requested = True
        logging.info("[scan] Stop requested, waiting for the scanner to exit")
        self.runner.cancel()

    async def change_settings(self, data: dict) -> Settings:
        if self.scanning:
            raise CommandRejected("change-settings", "settings cannot change while scanning")
        settings = Settings.model_validate(data)
        self.settings_store.save(settings)
        self.settings = settings
        await self.broadcaster.publish("settings", settings.to_wire())
        return settings

    async def wait(self) -> None:
        if self._task is not None:
            await self._task

    # --- telemetry from the work unit ---

    async def append_log(self, text: str) -> None:
        self.state.logs += text
        if self.settings.logging:
            for line in text.splitlines():
                logging.info(f"[scan] {line}")
        # The whole buffer is resent so a missed message never leaves a gap.
        await self.broadcaster.publish("logs", self.state.logs)

    async def update_status(self, lines: List[str], percentage: float) -> None:
        self.state.status_text = list(lines)
        self.state.percentage = clamp_percentage(percentage)
        await self.broadcaster.publish("status", {
            "text": self.state.status_text,
            "percentage": self.state.percentage,
        })

    # --- observers ---

    def snapshot(self) -> dict:
        payload = {
            "config": self.settings.to_wire(),
            "status": self.state.status.value,
            "logs": self.state.logs,
        }
        if self.state.status == ScanStatus.SCANNING:
            payload["text"] = self.state.status_text
            payload["percentage"] = self.state.percentage
        elif self.state.status == ScanStatus.END:
            payload["code"] = self.state.exit_code
            payload["stopped"] = self.state.stopped
        return payload

    async def attach(self, observer: Observer) -> None:
        await self.broadcaster.attach(observer, self.snapshot())

    def detach(self, observer: Observer) -> None:
        self.broadcaster.detach(observer)

    # --- lifecycle ---

    async def _run(self, runner: ScanRunner) -> None:
        try:
            code = await runner.run(self)
        except Exception as e:
            logging.error(f"[scan] Scan work unit failed: {e}")
            await self.append_log(f"Scan failed: {e}\n")
            code = 1
        stopped = self._stop_requested
        if code == 0 and not stopped and runner.flows:
            code = await self._save_results(runner.flows)
        self.state.status = ScanStatus.END
        self.state.exit_code = code
        self.state.stopped = stopped
        logging.info(f"[scan] Scan ended code={code} stopped={stopped}")
        await self.broadcaster.publish("end", {"code": code, "stopped": stopped})

    async def _save_results(self, records: List[dict]) -> int:
        # Past this point the results are written out; a stop request is refused.
        self._saving = True
        await self.update_status(self.state.status_text + ["Saving results"], self.state.percentage)
        try:
            # Drivers block on network I/O; keep the loop free for telemetry.
            await asyncio.to_thread(self._persist, records)
        except StorageError as e:
            logging.error(f"[scan] Saving results failed: {e}")
            await self.append_log(f"{e}\n")
            return 1
        finally:
            self._saving = False
        return 0

    def _persist(self, records: List[dict]) -> None:
        storage = self._storage_factory(self.settings)
        storage.connect()
        try:
            storage.setup()
            storage.persist_all(records)
        finally:
            storage.disconnect()
