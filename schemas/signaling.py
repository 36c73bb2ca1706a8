"""Wire models for the ``/ws/meet`` signaling protocol.

Inbound frames are validated against a union discriminated on ``type``.
User ids arrive as string-encoded integers (plain JSON numbers are accepted
too) and are normalized to their decimal string form.
"""
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, TypeAdapter
from typing import Annotated, Any, Dict, List, Literal, Optional, Union


def _coerce_user_id(value: Any) -> str:
    if isinstance(value, bool):
        raise ValueError("user id must be an integer")
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        try:
            return str(int(value.strip()))
        except ValueError:
            raise ValueError(f"user id {value!r} is not an integer")
    raise ValueError("user id must be an integer")


UserId = Annotated[str, BeforeValidator(_coerce_user_id)]


class SignalMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    meeting_code: Optional[str] = Field(None, alias="meetingCode")
    from_user_id: Optional[UserId] = Field(None, alias="fromUserId")


def _lenient_text(value: Any) -> Optional[str]:
    # Join auth fields that are not text are rejected by the join handler
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


class JoinMessage(SignalMessage):
    type: Literal["join"]
    meeting_code: Annotated[Optional[str], BeforeValidator(_lenient_text)] = Field(None, alias="meetingCode")
    from_user_id: UserId = Field(alias="fromUserId")
    payload: Any = None

    @property
    def token(self) -> Optional[str]:
        if not isinstance(self.payload, dict):
            return None
        token = self.payload.get("token")
        if token is None or isinstance(token, str):
            return token
        if isinstance(token, (int, float, bool)):
            return str(token)
        return ""


class RelayMessage(SignalMessage):
    type: Literal["offer", "answer", "ice-candidate"]
    to_user_id: UserId = Field(alias="toUserId")
    payload: Any = None


class RoomBroadcastMessage(SignalMessage):
    type: Literal["chat-message", "raise-hand"]
    payload: Any = None


class MediaStateMessage(SignalMessage):
    type: Literal["mic-state", "cam-state"]
    is_on: bool = Field(False, alias="isOn")


class EndMeetingMessage(SignalMessage):
    type: Literal["end-meeting"]


class LeaveMessage(SignalMessage):
    type: Literal["leave"]


InboundMessage = Annotated[
    Union[JoinMessage, RelayMessage, RoomBroadcastMessage, MediaStateMessage, EndMeetingMessage, LeaveMessage],
    Field(discriminator="type"),
]

inbound_message_adapter = TypeAdapter(InboundMessage)

MESSAGE_TYPES = frozenset(
    ["join", "offer", "answer", "ice-candidate", "chat-message", "raise-hand", "mic-state", "cam-state", "end-meeting", "leave"]
)


# Outbound frames built by the server

def error_message(message: str) -> Dict[str, Any]:
    return {"type": "error", "message": message}


def existing_participants_message(meeting_code: str, user_ids: List[str]) -> Dict[str, Any]:
    return {"type": "existing-participants", "meetingCode": meeting_code, "participants": list(user_ids)}


def participant_joined_message(meeting_code: str, user_id: str) -> Dict[str, Any]:
    return {"type": "participant-joined", "meetingCode": meeting_code, "userId": user_id}


def participant_left_message(meeting_code: str, user_id: str) -> Dict[str, Any]:
    return {"type": "participant-left", "meetingCode": meeting_code, "userId": user_id}


def media_state_message(kind: str, meeting_code: str, user_id: str, is_on: bool) -> Dict[str, Any]:
    # userId is numeric here, unlike participant-joined/left
    return {"type": kind, "meetingCode": meeting_code, "userId": int(user_id), "isOn": is_on}


def end_meeting_message(meeting_code: str, from_user_id: str) -> Dict[str, Any]:
    return {"type": "end-meeting", "meetingCode": meeting_code, "fromUserId": int(from_user_id)}
