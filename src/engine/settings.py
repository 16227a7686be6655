# src/engine/settings.py
"""
Settings: pydantic models for the service configuration and a YAML-backed store.
Field aliases follow the camelCase names the web UI sends over the socket.
"""
import os
import logging
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field

CONFIG_ENV_VAR = "AUTOMATE_SCANNER_CONFIG"
DEFAULT_CONFIG_PATH = "config.yml"
DEFAULT_DB_NAME = "automate-scanner"


class MySqlSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    host: str = "localhost"
    user: str = "root"
    password: str = ""
    db_name: str = Field(DEFAULT_DB_NAME, alias="dbName")
    port: Optional[int] = None
    dialect: str = "mysql+pymysql"
    connect_timeout: int = Field(10, alias="connectTimeout", ge=1)


class MongoSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    uri: str = "mongodb://localhost/"
    options: Dict[str, Any] = Field(default_factory=dict)
    db_name: str = Field(DEFAULT_DB_NAME, alias="dbName")
    timeout_ms: int = Field(5000, alias="timeoutMs", ge=1)


class ServerSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    port: int = 8080
    open_browser: bool = Field(False, alias="openBrowser")


class ScannerSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    command: List[str] = Field(default_factory=lambda: ["automate-flow-scanner"], min_length=1)
    # A flow line carries the base64 payload, so lines can be large.
    max_line_bytes: int = Field(64 * 1024 * 1024, alias="maxLineBytes", ge=1024)


class Settings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    db_type: Literal["sql", "mongo"] = Field("sql", alias="dbType")
    mysql: MySqlSettings = Field(default_factory=MySqlSettings)
    mongo: MongoSettings = Field(default_factory=MongoSettings)
    cores: int = Field(8, ge=1)
    logging: bool = True
    server: ServerSettings = Field(default_factory=ServerSettings)
    scanner: ScannerSettings = Field(default_factory=ScannerSettings)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)


class SettingsStore:
    def __init__(self, path: Optional[str] = None):
        self.path = path or os.environ.get(CONFIG_ENV_VAR, DEFAULT_CONFIG_PATH)

    def load(self) -> Settings:
        if not os.path.exists(self.path):
            logging.info(f"[config] {self.path} not found, using defaults")
            return Settings()
        with open(self.path, "r") as f:
            data = yaml.safe_load(f) or {}
        return Settings.model_validate(data)

    def save(self, settings: Settings) -> None:
        folder = os.path.dirname(self.path)
        if folder:
            os.makedirs(folder, exist_ok=True)
        with open(self.path, "w") as f:
            yaml.safe_dump(settings.to_wire(), f, sort_keys=False)
        logging.info(f"[config] Settings written to {self.path}")
