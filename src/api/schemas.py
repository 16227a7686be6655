# src/api/schemas.py
# Pydantic models for scan results and socket messages
from datetime import datetime
from typing import Any, Callable, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


def _flatten_ref(data: Any, ref: str, target: str) -> Any:
    # The scanner emits {"user": {"id": ...}}; storage wants the bare id.
    if isinstance(data, dict) and target not in data and isinstance(data.get(ref), dict):
        data = {**data, target: data[ref].get("id")}
    return data


def _as_text(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


class ReviewRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    user_id: str = Field(..., validation_alias=AliasChoices("userId", "user_id"))
    flow_id: Optional[str] = Field(None, validation_alias=AliasChoices("flowId", "flow_id"))
    comment: Optional[str] = None
    rating: float = Field(..., ge=0, le=5, description="Review score")
    created: datetime
    modified: datetime

    @model_validator(mode="before")
    @classmethod
    def _refs(cls, data):
        return _flatten_ref(data, "user", "userId")

    @field_validator("id", "user_id", "flow_id", mode="before")
    @classmethod
    def _ids_as_text(cls, value):
        return _as_text(value)

    def to_row(self, flow_id: str, normalize: Callable[[datetime], Any]) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "flow_id": flow_id,
            "comment": self.comment,
            "rating": self.rating,
            "created": normalize(self.created),
            "modified": normalize(self.modified),
        }


class FlowRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    user_id: str = Field(..., validation_alias=AliasChoices("userId", "user_id"))
    category_id: str = Field(..., validation_alias=AliasChoices("categoryId", "category_id"))
    title: str
    description: Optional[str] = None
    downloads: int = Field(0, ge=0)
    featured: bool = False
    created: datetime
    modified: datetime
    upload_version: Optional[str] = Field(None, validation_alias=AliasChoices("uploadVersion", "upload_version"))
    data_version: Optional[str] = Field(None, validation_alias=AliasChoices("dataVersion", "data_version"))
    payload: Optional[str] = Field(None, validation_alias=AliasChoices("b64Data", "payload"), description="Base64 flow data")
    reviews: List[ReviewRecord] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _refs(cls, data):
        data = _flatten_ref(data, "user", "userId")
        return _flatten_ref(data, "category", "categoryId")

    @field_validator("id", "user_id", "category_id", "upload_version", "data_version", mode="before")
    @classmethod
    def _ids_as_text(cls, value):
        return _as_text(value)

    def to_row(self, normalize: Callable[[datetime], Any]) -> dict:
        """Column values keyed by the `flows` table column keys."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "category_id": self.category_id,
            "title": self.title,
            "description": self.description,
            "downloads": self.downloads,
            "featured": self.featured,
            "created": normalize(self.created),
            "modified": normalize(self.modified),
            "upload_version": self.upload_version,
            "data_version": self.data_version,
            "base64_data": self.payload,
        }


class StatusUpdate(BaseModel):
    text: List[str] = Field(default_factory=list, description="Stage lines, oldest first")
    percentage: float = 0


class SocketMessage(BaseModel):
    event: str = Field(..., description="Event name, e.g. 'start-scan'")
    data: Optional[Any] = None


class CommandResult(BaseModel):
    success: bool
    status: str
    error: Optional[str] = None


FlowInput = Union[FlowRecord, dict]
