import secrets
import uuid
from datetime import datetime
from typing import Callable, Optional
from backend import RedisBackend, MeetingCodeCollisionError
from constants import MEETING_CODE_ALPHABET, MEETING_CODE_LENGTH, MEETING_CODE_MAX_ATTEMPTS
from schemas.meetings import MeetingRecord, normalize_meeting_code
from logging_config import get_logger

logger = get_logger(__name__)


class MeetingError(Exception):
    pass


class MeetingNotFoundError(MeetingError):
    pass


class MeetingForbiddenError(MeetingError):
    pass


class MeetingCodeAllocationError(MeetingError):
    pass


def generate_meeting_code(length: int = MEETING_CODE_LENGTH) -> str:
    return "".join(secrets.choice(MEETING_CODE_ALPHABET) for _ in range(length))


class MeetingService:
    """Meeting registry: creation with unique codes, join authorization, ending."""

    def __init__(
        self,
        backend: RedisBackend,
        code_generator: Callable[[], str] = generate_meeting_code,
        max_attempts: int = MEETING_CODE_MAX_ATTEMPTS,
    ):
        self.backend = backend
        self.code_generator = code_generator
        self.max_attempts = max_attempts

    @staticmethod
    def _to_record(data: Optional[dict]) -> Optional[MeetingRecord]:
        return MeetingRecord.model_validate(data) if data else None

    def _allocate(self, title: str, host_user_id: int, classroom_id: Optional[int] = None) -> MeetingRecord:
        meeting_id = str(uuid.uuid4())
        for attempt in range(1, self.max_attempts + 1):
            record = MeetingRecord(
                meeting_id=meeting_id,
                meeting_code=self.code_generator(),
                title=title,
                host_user_id=host_user_id,
                classroom_id=classroom_id,
                active=True,
                created_at=datetime.now(),
            )
            try:
                self.backend.create_meeting(record.model_dump(mode="json"))
                return record
            except MeetingCodeCollisionError:
                logger.warning(f"Meeting code collision detected, retrying... Attempt {attempt}/{self.max_attempts}")
        raise MeetingCodeAllocationError(f"Unable to generate unique meeting code after {self.max_attempts} attempts")

    def create_classroom_meeting(self, classroom_id: int, host_user_id: int) -> MeetingRecord:
        logger.info(f"Creating classroom meeting for classroom {classroom_id} by user {host_user_id}")
        classroom = self.backend.get_classroom(classroom_id)
        if not classroom:
            raise MeetingNotFoundError(f"Classroom not found with id: {classroom_id}")
        if str(classroom.get("teacher_id")) != str(host_user_id):
            raise MeetingForbiddenError("Only the classroom teacher can create a classroom meeting")

        existing = self._to_record(self.backend.get_active_meeting_for_classroom(classroom_id))
        if existing:
            logger.info(f"Active meeting already exists for classroom {classroom_id}")
            return existing

        name = classroom.get("name") or f"Classroom {classroom_id}"
        meeting = self._allocate(f"{name} - Meeting", host_user_id, classroom_id=classroom_id)
        logger.info(f"Classroom meeting created with id {meeting.meeting_id} and code {meeting.meeting_code} for classroom {classroom_id}")
        return meeting

    def create_normal_meeting(self, host_user_id: int, title: Optional[str] = None) -> MeetingRecord:
        logger.info(f"Creating normal meeting by user {host_user_id}")
        existing = self._to_record(self.backend.get_active_meeting_for_host(host_user_id))
        if existing:
            logger.info(f"User {host_user_id} already has an active meeting")
            return existing

        meeting = self._allocate(title or f"User {host_user_id}'s Meeting", host_user_id)
        logger.info(f"Normal meeting created with id {meeting.meeting_id} and code {meeting.meeting_code}")
        return meeting

    def join_meeting(self, meeting_code: str, user_id: int) -> MeetingRecord:
        meeting_code = normalize_meeting_code(meeting_code)
        logger.info(f"User {user_id} attempting to join meeting with code {meeting_code}")
        meeting = self.get_active_meeting_by_code(meeting_code)
        if meeting is None:
            raise MeetingNotFoundError(f"No active meeting found with code: {meeting_code}")

        if meeting.is_classroom_meeting:
            classroom = self.backend.get_classroom(meeting.classroom_id) or {}
            is_teacher = str(classroom.get("teacher_id")) == str(user_id)
            if not is_teacher and not self.backend.is_classroom_member(meeting.classroom_id, user_id):
                logger.warning(f"User {user_id} is not a member of classroom {meeting.classroom_id}")
                raise MeetingForbiddenError(
                    "You are not authorized to join this classroom meeting. Please contact the classroom teacher."
                )

        kind = "Classroom" if meeting.is_classroom_meeting else "Normal"
        logger.info(f"User {user_id} authorized to join meeting {meeting.meeting_id} (code: {meeting_code}) - Type: {kind}")
        return meeting

    def end_meeting(self, meeting_code: str, user_id: int) -> MeetingRecord:
        meeting_code = normalize_meeting_code(meeting_code)
        logger.info(f"User {user_id} attempting to end meeting with code {meeting_code}")
        meeting = self.get_active_meeting_by_code(meeting_code)
        if meeting is None:
            raise MeetingNotFoundError(f"No active meeting found with code: {meeting_code}")
        if meeting.host_user_id != user_id:
            raise MeetingForbiddenError("Only the meeting host can end the meeting")

        ended_at = datetime.now()
        self.backend.end_meeting(meeting.model_dump(mode="json"), ended_at.isoformat())
        logger.info(f"Meeting {meeting.meeting_id} (code: {meeting_code}) ended by host {user_id}")
        return meeting.model_copy(update={"active": False, "ended_at": ended_at})

    def get_active_meeting_by_code(self, meeting_code: str) -> Optional[MeetingRecord]:
        record = self._to_record(self.backend.get_active_meeting_by_code(normalize_meeting_code(meeting_code)))
        # The active pointer and the hash are written separately; trust the hash
        if record is not None and not record.active:
            return None
        return record

    def get_meeting_by_code(self, meeting_code: str) -> Optional[MeetingRecord]:
        return self._to_record(self.backend.get_latest_meeting_by_code(normalize_meeting_code(meeting_code)))
