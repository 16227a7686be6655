# src/storage/sql_driver.py
"""
SqlDriver: relational report store on top of SQLAlchemy.

The report store is disposable: every setup() drops the named database and
builds the tables again from the catalog in storage.models.
"""
import logging
from datetime import datetime
from typing import Optional, Union

from sqlalchemy import create_engine, insert, text
from sqlalchemy.engine import URL, Engine
from sqlalchemy.exc import SQLAlchemyError

from api.schemas import FlowRecord
from engine.errors import BackendConnectionError, PersistError, ProvisionError
from engine.settings import MySqlSettings
from storage.base import DatabaseDriver
from storage.models import flows, metadata, reviews

SQL_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"


class SqlDriver(DatabaseDriver):
    name = "Sql"

    def __init__(self):
        self.engine: Optional[Engine] = None
        self.url: Optional[URL] = None
        self.db_name: Optional[str] = None
        self._connect_args: dict = {}

    @property
    def is_file_database(self) -> bool:
        return self.url is not None and self.url.get_backend_name() == "sqlite"

    def connect(self, config: MySqlSettings) -> Engine:
        if config.dialect.startswith("sqlite"):
            # The file is the database; there is no server to log into.
            url = URL.create(config.dialect, database=config.db_name)
            connect_args = {"check_same_thread": False}
        else:
            url = URL.create(
                config.dialect,
                username=config.user or None,
                password=config.password or None,
                host=config.host,
                port=config.port,
            )
            connect_args = {"connect_timeout": config.connect_timeout}
        try:
            engine = create_engine(url, connect_args=connect_args)
            with engine.connect():
                pass
        except SQLAlchemyError as e:
            raise BackendConnectionError(f"Cannot connect to {config.host}: {e}") from e
        logging.info(f"[Sql] Server connected on host {config.host}")
        self.engine = engine
        self.url = url
        self.db_name = config.db_name
        self._connect_args = connect_args
        return engine

    def setup(self) -> None:
        try:
            if self.is_file_database:
                metadata.drop_all(self.engine)
            else:
                self._recreate_database()
            metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise ProvisionError(f"Cannot provision database {self.db_name}: {e}") from e
        for table in metadata.sorted_tables:
            logging.info(f"[Sql] Table {table.name} created!")

    def _recreate_database(self) -> None:
        quoted = self.engine.dialect.identifier_preparer.quote(self.db_name)
        with self.engine.begin() as conn:
            logging.info(f"[Sql] Dropping database '{self.db_name}' if it exists...")
            conn.execute(text(f"DROP DATABASE IF EXISTS {quoted}"))
            conn.execute(text(f"CREATE DATABASE {quoted}"))
        logging.info(f"[Sql] Database {self.db_name} created")
        # Bind every further statement to the fresh database.
        self.engine.dispose()
        self.url = self.url.set(database=self.db_name)
        self.engine = create_engine(self.url, connect_args=self._connect_args)

    def persist(self, flow: FlowRecord) -> None:
        try:
            with self.engine.begin() as conn:
                try:
                    conn.execute(insert(flows), flow.to_row(self.normalize_timestamp))
                except SQLAlchemyError as e:
                    raise PersistError("flow", flow.id, reason=str(e)) from e
                for index, review in enumerate(flow.reviews):
                    try:
                        conn.execute(insert(reviews), review.to_row(flow.id, self.normalize_timestamp))
                    except SQLAlchemyError as e:
                        raise PersistError("review", flow.id, index=index, reason=str(e)) from e
        except SQLAlchemyError as e:
            raise PersistError("flow", flow.id, reason=str(e)) from e

    def disconnect(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
            logging.info("[Sql] Connection closed")

    def normalize_timestamp(self, instant: Union[datetime, int, float]) -> str:
        """
        Render an instant as a MySQL DATETIME string in local time.
        Numbers are epoch milliseconds; naive datetimes are already local.
        """
        if isinstance(instant, (int, float)):
            instant = datetime.fromtimestamp(instant / 1000)
        elif instant.tzinfo is not None:
            instant = instant.astimezone().replace(tzinfo=None)
        return instant.strftime(SQL_DATETIME_FORMAT)
