# src/storage/models.py
from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, MetaData, String, Table, Text
from sqlalchemy.dialects.mysql import LONGTEXT

metadata = MetaData()

# Timestamps are written in their canonical text form; SQLite has no native
# DATETIME so the column is plain text there.
Timestamp = DateTime().with_variant(String(19), "sqlite")

flows = Table(
    "flows",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("user_id", String(64), nullable=False),
    Column("category_id", String(64), nullable=False),
    Column("title", String(255), nullable=False),
    Column("description", Text, nullable=True),
    Column("downloads", Integer, nullable=False, default=0),
    Column("featured", Boolean, nullable=False, default=False),
    Column("created", Timestamp, nullable=False),
    Column("modified", Timestamp, nullable=False),
    Column("upload-version", String(32), key="upload_version", nullable=True),
    Column("data-version", String(32), key="data_version", nullable=True),
    Column("base64-data", Text().with_variant(LONGTEXT(), "mysql"), key="base64_data", nullable=True),
)

reviews = Table(
    "reviews",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("user_id", String(64), nullable=False),
    Column("flow_id", String(64), ForeignKey("flows.id"), nullable=False),
    Column("comment", Text, nullable=True),
    Column("rating", Float, nullable=False),
    Column("created", Timestamp, nullable=False),
    Column("modified", Timestamp, nullable=False),
)
