# src/storage/mongo_driver.py
"""
MongoDriver: document report store on top of pymongo.

Unlike the relational store, setup() never drops anything: it only selects the
database. Existing collections are left as they are.
"""
import logging
from datetime import datetime
from typing import Callable, Optional

from pymongo import MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

from api.schemas import FlowRecord
from engine.errors import BackendConnectionError, PersistError, ProvisionError
from engine.settings import MongoSettings
from storage.base import DatabaseDriver
from storage.models import flows, reviews


def _as_document(row: dict, table) -> dict:
    return {column.name: row[column.key] for column in table.columns}


class MongoDriver(DatabaseDriver):
    name = "Mongo"

    def __init__(self, client_factory: Callable[..., MongoClient] = MongoClient):
        self.client_factory = client_factory
        self.client: Optional[MongoClient] = None
        self.db: Optional[Database] = None
        self.db_name: Optional[str] = None

    def connect(self, config: MongoSettings) -> MongoClient:
        options = {"serverSelectionTimeoutMS": config.timeout_ms, **config.options}
        try:
            client = self.client_factory(config.uri, **options)
            client.admin.command("ping")
        except PyMongoError as e:
            raise BackendConnectionError(f"Cannot connect to {config.uri}: {e}") from e
        self.client = client
        self.db_name = config.db_name
        logging.info(f"[Mongo] Server connected on {config.uri}")
        return client

    def setup(self) -> None:
        if self.client is None:
            raise ProvisionError("Mongo client is not connected")
        self.db = self.client[self.db_name]
        logging.info(f"[Mongo] Database {self.db_name} connected!")

    def persist(self, flow: FlowRecord) -> None:
        if self.db is None:
            raise PersistError("flow", flow.id, reason="database not selected, call setup() first")
        try:
            self.db[flows.name].insert_one(_as_document(flow.to_row(self.normalize_timestamp), flows))
        except PyMongoError as e:
            raise PersistError("flow", flow.id, reason=str(e)) from e
        for index, review in enumerate(flow.reviews):
            try:
                self.db[reviews.name].insert_one(
                    _as_document(review.to_row(flow.id, self.normalize_timestamp), reviews)
                )
            except PyMongoError as e:
                raise PersistError("review", flow.id, index=index, reason=str(e)) from e

    def disconnect(self) -> None:
        if self.client is not None:
            self.client.close()
            logging.info("[Mongo] Connection closed")

    def normalize_timestamp(self, instant: datetime) -> datetime:
        # BSON has a native date type.
        return instant
