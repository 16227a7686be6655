# src/storage/base.py
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from api.schemas import FlowRecord


class DatabaseDriver(ABC):
    """
    One concrete database technology. Drivers are used once per scan:
    connect, setup, persist each flow, disconnect.
    """

    name = "Database"

    @abstractmethod
    def connect(self, config) -> Any:
        pass

    @abstractmethod
    def setup(self) -> None:
        pass

    @abstractmethod
    def persist(self, flow: FlowRecord) -> None:
        pass

    @abstractmethod
    def disconnect(self) -> None:
        pass

    @abstractmethod
    def normalize_timestamp(self, instant: datetime) -> Any:
        pass
