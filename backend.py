import redis
from typing import Optional
from constants import REDIS_HOST, REDIS_PORT, REDIS_PASSWORD, REDIS_DB
from redis_keys import (
    REDIS_MEETING_KEY,
    REDIS_ACTIVE_CODE_KEY,
    REDIS_LATEST_CODE_KEY,
    REDIS_CLASSROOM_ACTIVE_KEY,
    REDIS_HOST_ACTIVE_KEY,
    REDIS_CLASSROOM_KEY,
    REDIS_CLASSROOM_MEMBERS_KEY,
)
from logging_config import get_logger

logger = get_logger(__name__)


class MeetingCodeCollisionError(Exception):
    """The candidate meeting code is already held by an active meeting."""

    def __init__(self, meeting_code: str):
        super().__init__(f"Meeting code {meeting_code} is already in use")
        self.meeting_code = meeting_code


def create_redis_client() -> redis.Redis:
    # Connection is lazy; RedisBackend.ping() is called at application startup
    return redis.Redis(host=REDIS_HOST, port=REDIS_PORT, password=REDIS_PASSWORD, db=REDIS_DB, decode_responses=True)


def _to_redis_hash(data: dict) -> dict:
    result = {}
    for k, v in data.items():
        if v is None:
            continue  # Skip None values
        if isinstance(v, bool):
            result[k] = "true" if v else "false"
        else:
            result[k] = str(v)
    return result


class RedisBackend:
    def __init__(self, redis_client: Optional[redis.Redis] = None):
        self.redis_client = redis_client if redis_client is not None else create_redis_client()

    def ping(self) -> bool:
        try:
            self.redis_client.ping()
            logger.info("Redis client connected successfully")
            return True
        except redis.RedisError as e:
            logger.error(f"Failed to connect to Redis: {e}", exc_info=True)
            raise

    # Meetings

    def create_meeting(self, meeting: dict) -> dict:
        """Persist a new active meeting.

        The active-code key is claimed with SET NX first; if another active
        meeting already holds the code nothing is written and
        MeetingCodeCollisionError is raised so the caller can pick a new code.
        """
        meeting_id = meeting["meeting_id"]
        code = meeting["meeting_code"]
        code_key = REDIS_ACTIVE_CODE_KEY.format(code=code)
        if not self.redis_client.set(code_key, meeting_id, nx=True):
            logger.debug(f"Active code key {code_key} already claimed")
            raise MeetingCodeCollisionError(code)

        pipe = self.redis_client.pipeline()
        pipe.hset(REDIS_MEETING_KEY.format(meeting_id=meeting_id), mapping=_to_redis_hash(meeting))
        pipe.set(REDIS_LATEST_CODE_KEY.format(code=code), meeting_id)
        if meeting.get("classroom_id") is not None:
            pipe.set(REDIS_CLASSROOM_ACTIVE_KEY.format(classroom_id=meeting["classroom_id"]), meeting_id)
        else:
            pipe.set(REDIS_HOST_ACTIVE_KEY.format(host_user_id=meeting["host_user_id"]), meeting_id)
        pipe.execute()
        logger.debug(f"Meeting {meeting_id} stored with code {code}")
        return meeting

    def get_meeting(self, meeting_id: str) -> Optional[dict]:
        data = self.redis_client.hgetall(REDIS_MEETING_KEY.format(meeting_id=meeting_id))
        if not data:
            logger.debug(f"Meeting {meeting_id} not found in Redis")
            return None
        return data

    def get_active_meeting_by_code(self, meeting_code: str) -> Optional[dict]:
        meeting_id = self.redis_client.get(REDIS_ACTIVE_CODE_KEY.format(code=meeting_code))
        return self.get_meeting(meeting_id) if meeting_id else None

    def get_latest_meeting_by_code(self, meeting_code: str) -> Optional[dict]:
        meeting_id = self.redis_client.get(REDIS_LATEST_CODE_KEY.format(code=meeting_code))
        return self.get_meeting(meeting_id) if meeting_id else None

    def get_active_meeting_for_classroom(self, classroom_id: int) -> Optional[dict]:
        meeting_id = self.redis_client.get(REDIS_CLASSROOM_ACTIVE_KEY.format(classroom_id=classroom_id))
        return self.get_meeting(meeting_id) if meeting_id else None

    def get_active_meeting_for_host(self, host_user_id: int) -> Optional[dict]:
        meeting_id = self.redis_client.get(REDIS_HOST_ACTIVE_KEY.format(host_user_id=host_user_id))
        return self.get_meeting(meeting_id) if meeting_id else None

    def end_meeting(self, meeting: dict, ended_at: str) -> None:
        """Mark a meeting inactive and release every active pointer to it."""
        meeting_id = meeting["meeting_id"]
        pipe = self.redis_client.pipeline()
        pipe.hset(REDIS_MEETING_KEY.format(meeting_id=meeting_id), mapping={"active": "false", "ended_at": ended_at})
        pipe.delete(REDIS_ACTIVE_CODE_KEY.format(code=meeting["meeting_code"]))
        if meeting.get("classroom_id") is not None:
            pipe.delete(REDIS_CLASSROOM_ACTIVE_KEY.format(classroom_id=meeting["classroom_id"]))
        else:
            pipe.delete(REDIS_HOST_ACTIVE_KEY.format(host_user_id=meeting["host_user_id"]))
        pipe.execute()
        logger.debug(f"Meeting {meeting_id} marked inactive, code {meeting['meeting_code']} released")

    # Classrooms (owned elsewhere, read-only for meetings)

    def get_classroom(self, classroom_id: int) -> Optional[dict]:
        data = self.redis_client.hgetall(REDIS_CLASSROOM_KEY.format(classroom_id=classroom_id))
        return data or None

    def is_classroom_member(self, classroom_id: int, user_id: int) -> bool:
        return bool(self.redis_client.sismember(REDIS_CLASSROOM_MEMBERS_KEY.format(classroom_id=classroom_id), str(user_id)))

    def save_classroom(self, classroom_id: int, name: str, teacher_id: int) -> None:
        self.redis_client.hset(
            REDIS_CLASSROOM_KEY.format(classroom_id=classroom_id),
            mapping=_to_redis_hash({"id": classroom_id, "name": name, "teacher_id": teacher_id}),
        )
        logger.info(f"Classroom {classroom_id} saved with teacher {teacher_id}")

    def add_classroom_member(self, classroom_id: int, user_id: int) -> None:
        self.redis_client.sadd(REDIS_CLASSROOM_MEMBERS_KEY.format(classroom_id=classroom_id), str(user_id))
        logger.debug(f"User {user_id} added to classroom {classroom_id}")
