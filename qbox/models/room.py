"""Pydantic models for rooms. Rooms are owned by the backend; the feed only reads them."""

from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator


class RoomVisibility(str, Enum):
    """Who sees which questions in a room."""
    PUBLIC = "public"    # everyone sees every question
    PRIVATE = "private"  # each participant sees only their own


class RoomStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"


class ViewerRole(str, Enum):
    """How the local user takes part in a room."""
    PARTICIPANT = "participant"
    INSTRUCTOR = "instructor"


class Room(BaseModel):
    """A Q&A room as seen by the client."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(default="", validation_alias=AliasChoices("_id", "id", "roomId"))
    code: str = Field(validation_alias=AliasChoices("roomCode", "code"))
    name: Optional[str] = Field(default=None, validation_alias=AliasChoices("roomName", "name"))
    lecturer_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("lecturerName", "lecturer_name"))
    visibility: RoomVisibility = RoomVisibility.PUBLIC
    status: RoomStatus = RoomStatus.ACTIVE

    @model_validator(mode="before")
    @classmethod
    def _from_backend_flags(cls, data: Any) -> Any:
        # The backend reports visibility as a `questionsVisible` boolean
        if isinstance(data, dict) and "visibility" not in data and "questionsVisible" in data:
            data = dict(data)
            data["visibility"] = RoomVisibility.PUBLIC if data["questionsVisible"] else RoomVisibility.PRIVATE
        return data

    @property
    def is_closed(self) -> bool:
        return self.status == RoomStatus.CLOSED
