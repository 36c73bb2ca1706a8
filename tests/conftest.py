import json
import fakeredis
import pytest
from fastapi.testclient import TestClient
from app import create_app
from backend import RedisBackend
from meetings import MeetingService
from signaling import PeerConnection, SignalingEngine
from tokens import encode_join_token


class FakeWebSocket:
    """Records what the engine writes to a connection."""

    def __init__(self, fail_sends: bool = False):
        self.sent = []
        self.close_code = None
        self.close_reason = None
        self.fail_sends = fail_sends

    async def send_text(self, data: str):
        if self.fail_sends or self.close_code is not None:
            raise RuntimeError("connection closed")
        self.sent.append(json.loads(data))

    async def close(self, code: int = 1000, reason: str = ""):
        self.close_code = code
        self.close_reason = reason

    def of_type(self, message_type):
        return [m for m in self.sent if m.get("type") == message_type]


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def backend(redis_client):
    return RedisBackend(redis_client)


@pytest.fixture
def meeting_service(backend):
    return MeetingService(backend)


@pytest.fixture
def engine(meeting_service):
    return SignalingEngine(meeting_service)


@pytest.fixture
async def peers():
    created = []

    def make(fail_sends: bool = False, max_pending: int = 256) -> PeerConnection:
        peer = PeerConnection(FakeWebSocket(fail_sends=fail_sends), max_pending=max_pending)
        peer.start()
        created.append(peer)
        return peer

    yield make
    for peer in created:
        await peer.shutdown(timeout=0.1)


@pytest.fixture
def client(redis_client):
    with TestClient(create_app(redis_client)) as test_client:
        yield test_client


@pytest.fixture
def join_frame():
    def build(meeting, user_id, token=None):
        if token is None:
            token = encode_join_token(meeting.meeting_id)
        return json.dumps({
            "type": "join",
            "meetingCode": meeting.meeting_code,
            "fromUserId": str(user_id),
            "payload": {"token": token},
        })

    return build
