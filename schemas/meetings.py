from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import List, Optional


def normalize_meeting_code(code: str) -> str:
    return code.strip().upper()


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


class CreateClassroomMeetingRequest(CamelModel):
    classroom_id: int
    host_user_id: int


class CreateNormalMeetingRequest(CamelModel):
    host_user_id: int
    title: Optional[str] = None


class JoinMeetingRequest(CamelModel):
    meeting_code: str = Field(min_length=1)
    user_id: int

    @field_validator("meeting_code")
    @classmethod
    def _normalize_code(cls, value: str) -> str:
        return normalize_meeting_code(value)


class MeetingRecord(BaseModel):
    """A meeting as stored in the registry."""

    meeting_id: str
    meeting_code: str
    title: Optional[str] = None
    host_user_id: int
    classroom_id: Optional[int] = None
    active: bool
    created_at: datetime
    ended_at: Optional[datetime] = None

    @property
    def is_classroom_meeting(self) -> bool:
        return self.classroom_id is not None


class MeetingResponse(CamelModel):
    meeting_id: str
    meeting_code: str
    title: Optional[str]
    classroom_id: Optional[int]
    host_user_id: int
    active: bool
    created_at: datetime
    ended_at: Optional[datetime]
    is_classroom_meeting: bool
    signaling_token: str
    participants: Optional[List[str]] = None
