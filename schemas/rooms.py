from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class FeedModel(BaseModel):
    """Records stored in the feed use camelCase keys."""

    model_config = ConfigDict(populate_by_name=True)

    def to_feed(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class Identity(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    persisted: bool = True


class Room(FeedModel):
    id: str
    created_at: int = Field(alias="createdAt")

    def to_feed(self) -> dict:
        return {"createdAt": self.created_at}


class Participant(FeedModel):
    id: str
    name: str
    joined_at: int = Field(alias="joinedAt")


class Message(FeedModel):
    id: str
    from_id: str = Field(alias="fromId")
    from_name: str = Field(alias="fromName")
    text: str
    at: int


class SessionStatus(str, Enum):
    IDLE = "idle"
    JOINING = "joining"
    JOINED = "joined"
    LEAVING = "leaving"


class SessionState(BaseModel):
    room_id: Optional[str] = None
    joined: bool = False
    status: SessionStatus = SessionStatus.IDLE
    identity_id: str
    display_name: str
    participants: list[Participant] = []
    messages: list[Message] = []


class CreateRoomResponse(BaseModel):
    room_id: str
    created_at: int


class RoomDetailsResponse(BaseModel):
    room_id: str
    created_at: Optional[int] = None
    online_count: int
    participants: list[Participant] = []
