# src/storage/facade.py
"""
StorageFacade: the one entry point the rest of the service uses to write scan
results. The backend is chosen once, from settings.db_type.
"""
import logging
from typing import Callable, Dict, Iterable, Tuple

from pydantic import ValidationError

from api.schemas import FlowInput, FlowRecord
from engine.errors import PersistError
from engine.settings import Settings
from storage.base import DatabaseDriver
from storage.mongo_driver import MongoDriver
from storage.sql_driver import SqlDriver

# db_type -> (driver factory, name of the settings section holding its config)
DRIVERS: Dict[str, Tuple[Callable[[], DatabaseDriver], str]] = {
    "sql": (SqlDriver, "mysql"),
    "mongo": (MongoDriver, "mongo"),
}


class StorageFacade:
    def __init__(self, settings: Settings, drivers: Dict[str, Tuple[Callable[[], DatabaseDriver], str]] = DRIVERS):
        if settings.db_type not in drivers:
            raise ValueError(f"Unsupported database type: {settings.db_type}")
        factory, section = drivers[settings.db_type]
        self.db_type = settings.db_type
        self.driver = factory()
        self.config = getattr(settings, section)

    def connect(self):
        return self.driver.connect(self.config)

    def setup(self) -> None:
        self.driver.setup()

    def persist(self, flow: FlowInput) -> None:
        if not isinstance(flow, FlowRecord):
            try:
                flow = FlowRecord.model_validate(flow)
            except ValidationError as e:
                raise PersistError("flow", flow.get("id") if isinstance(flow, dict) else None, reason=str(e)) from e
        self.driver.persist(flow)

    def persist_all(self, records: Iterable[FlowInput]) -> int:
        count = 0
        for record in records:
            self.persist(record)
            count += 1
        logging.info(f"[{self.driver.name}] {count} flows saved")
        return count

    def disconnect(self) -> None:
        self.driver.disconnect()
