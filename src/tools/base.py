# src/tools/base.py
from abc import ABC, abstractmethod
from typing import List, Protocol


class ScanReporter(Protocol):
    async def append_log(self, text: str) -> None: ...

    async def update_status(self, lines: List[str], percentage: float) -> None: ...


class ScanRunner(ABC):
    """
    A single scan work unit. run() resolves to the exit code once the scan has
    actually terminated; cancel() only asks it to stop.
    """

    def __init__(self):
        self.flows: List[dict] = []

    @abstractmethod
    async def run(self, reporter: ScanReporter) -> int:
        pass

    @abstractmethod
    def cancel(self) -> None:
        pass
