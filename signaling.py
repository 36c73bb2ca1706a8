import asyncio
import json
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union
from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from constants import (
    OUTBOUND_QUEUE_SIZE,
    CLOSE_FLUSH_TIMEOUT,
    WS_CLOSE_NORMAL,
    WS_CLOSE_POLICY_VIOLATION,
)
from meetings import MeetingService
from schemas.meetings import MeetingRecord, normalize_meeting_code
from schemas.signaling import (
    MESSAGE_TYPES,
    EndMeetingMessage,
    JoinMessage,
    LeaveMessage,
    MediaStateMessage,
    RelayMessage,
    RoomBroadcastMessage,
    inbound_message_adapter,
    error_message,
    existing_participants_message,
    participant_joined_message,
    participant_left_message,
    media_state_message,
    end_meeting_message,
)
from tokens import MalformedTokenError, decode_join_token
from logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class _Close:
    code: int
    reason: str


class PeerConnection:
    """Outbound side of one WebSocket.

    Frames are queued and written by a dedicated task so that broadcasting
    never awaits a slow peer. At most ``max_pending`` frames wait in the
    queue; further frames for this peer are dropped.
    """

    def __init__(self, websocket: WebSocket, connection_id: Optional[str] = None, max_pending: int = OUTBOUND_QUEUE_SIZE):
        self.websocket = websocket
        self.connection_id = connection_id or str(uuid.uuid4())
        self.max_pending = max_pending
        self.closing = False
        self._queue: asyncio.Queue = asyncio.Queue()
        self._writer: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._writer is None:
            self._writer = asyncio.create_task(self._write_loop())

    def send(self, message: Union[Dict[str, Any], str]) -> bool:
        if self.closing:
            return False
        if self._queue.qsize() >= self.max_pending:
            logger.warning(f"Outbound queue full for connection {self.connection_id}, dropping frame")
            return False
        self._queue.put_nowait(message if isinstance(message, str) else json.dumps(message))
        return True

    def close(self, code: int = WS_CLOSE_NORMAL, reason: str = "") -> None:
        """Queue a close after any frames already pending."""
        if self.closing:
            return
        self.closing = True
        self._queue.put_nowait(_Close(code, reason))

    async def drain(self) -> None:
        await self._queue.join()

    async def shutdown(self, timeout: float = CLOSE_FLUSH_TIMEOUT) -> None:
        if self._writer is None:
            return
        if self.closing and not self._writer.done():
            try:
                await asyncio.wait_for(asyncio.shield(self._writer), timeout)
                return
            except asyncio.TimeoutError:
                logger.warning(f"Connection {self.connection_id} did not flush within {timeout}s")
        self._writer.cancel()
        try:
            await self._writer
        except asyncio.CancelledError:
            pass

    async def _write_loop(self) -> None:
        try:
            while True:
                item = await self._queue.get()
                try:
                    if isinstance(item, _Close):
                        try:
                            await self.websocket.close(code=item.code, reason=item.reason)
                        except Exception as e:
                            logger.debug(f"Error closing WebSocket {self.connection_id}: {e}")
                        return
                    try:
                        await self.websocket.send_text(item)
                    except Exception as e:
                        # Transport is gone; the reader side will run cleanup
                        logger.warning(f"Error sending to connection {self.connection_id}: {e}")
                        self.closing = True
                        return
                finally:
                    self._queue.task_done()
        finally:
            self._discard_pending()

    def _discard_pending(self) -> None:
        # Nothing will write these; settle them so drain() returns
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            self._queue.task_done()


@dataclass(frozen=True)
class Participant:
    user_id: str
    peer: PeerConnection


@dataclass(frozen=True)
class SessionInfo:
    meeting_code: str
    user_id: str


@dataclass
class Room:
    meeting_code: str
    meeting_id: str
    host_user_id: str
    participants: Dict[str, Participant] = field(default_factory=dict)  # connection_id -> Participant


class RoomTable:
    """Live membership: rooms keyed by meeting code plus the reverse session index.

    Every mutation happens under one lock, and a room and its sessions are
    always changed together. Readers get list snapshots, never live dicts.
    """

    def __init__(self):
        self._rooms: Dict[str, Room] = {}
        self._sessions: Dict[str, SessionInfo] = {}
        self._lock = asyncio.Lock()

    async def add(
        self, connection_id: str, participant: Participant, meeting: MeetingRecord
    ) -> Tuple[List[Participant], Optional[Room]]:
        """Insert a participant, creating the room if needed.

        Returns the participants that were present before the insert, and the
        evicted room if the code was still held by a room of an earlier meeting.
        A room only ever holds participants of one meeting.
        """
        code = meeting.meeting_code
        async with self._lock:
            stale = None
            room = self._rooms.get(code)
            if room is not None and room.meeting_id != meeting.meeting_id:
                stale = self._rooms.pop(code)
                for stale_connection_id in stale.participants:
                    self._sessions.pop(stale_connection_id, None)
                room = None
            if room is None:
                room = Room(meeting_code=code, meeting_id=meeting.meeting_id, host_user_id=str(meeting.host_user_id))
                self._rooms[code] = room
            existing = list(room.participants.values())
            room.participants[connection_id] = participant
            self._sessions[connection_id] = SessionInfo(meeting_code=code, user_id=participant.user_id)
            return existing, stale

    async def remove(self, connection_id: str) -> Optional[Tuple[SessionInfo, List[Participant]]]:
        """Remove a connection; returns its session and the remaining participants.

        Returns None if the connection is not in any room.
        """
        async with self._lock:
            info = self._sessions.pop(connection_id, None)
            if info is None:
                return None
            remaining: List[Participant] = []
            room = self._rooms.get(info.meeting_code)
            if room is not None:
                room.participants.pop(connection_id, None)
                if room.participants:
                    remaining = list(room.participants.values())
                else:
                    del self._rooms[info.meeting_code]
                    logger.debug(f"Room {info.meeting_code} is empty, removed")
            return info, remaining

    async def close_room(self, meeting_code: str, host_user_id: Optional[str] = None) -> Optional[List[Participant]]:
        """Remove a room and all of its sessions; returns who was in it.

        With ``host_user_id`` the room is only closed if that user is its host.
        Returns None when no room was closed.
        """
        async with self._lock:
            room = self._rooms.get(meeting_code)
            if room is None:
                return None
            if host_user_id is not None and room.host_user_id != host_user_id:
                return None
            del self._rooms[meeting_code]
            for connection_id in room.participants:
                self._sessions.pop(connection_id, None)
            return list(room.participants.values())

    def session(self, connection_id: str) -> Optional[SessionInfo]:
        return self._sessions.get(connection_id)

    def room(self, meeting_code: str) -> Optional[Room]:
        return self._rooms.get(meeting_code)

    def participants(self, meeting_code: str) -> List[Participant]:
        room = self._rooms.get(meeting_code)
        return list(room.participants.values()) if room else []

    def meeting_codes(self) -> List[str]:
        return list(self._rooms)

    def session_ids(self) -> List[str]:
        return list(self._sessions)

    def connection_ids(self) -> List[str]:
        return [connection_id for room in self._rooms.values() for connection_id in room.participants]


class SignalingEngine:
    def __init__(self, meeting_service: MeetingService, rooms: Optional[RoomTable] = None):
        self.meeting_service = meeting_service
        self.rooms = rooms if rooms is not None else RoomTable()

    async def serve(self, websocket: WebSocket) -> None:
        """Run one connection from accept to cleanup."""
        await websocket.accept()
        peer = PeerConnection(websocket)
        peer.start()
        logger.info(f"WebSocket connection {peer.connection_id} accepted")

        try:
            message_count = 0
            while not peer.closing:
                try:
                    data = await websocket.receive_text()
                except WebSocketDisconnect:
                    logger.info(f"WebSocket disconnected for connection {peer.connection_id}")
                    break
                message_count += 1
                logger.debug(f"Received message #{message_count} from connection {peer.connection_id}")
                await self.handle_text(peer, data)
        except Exception as e:
            logger.error(f"WebSocket error for connection {peer.connection_id}: {e}", exc_info=True)
        finally:
            await self.disconnect(peer)
            await peer.shutdown()

    async def handle_text(self, peer: PeerConnection, data: str) -> None:
        try:
            raw = json.loads(data)
        except json.JSONDecodeError:
            logger.warning(f"Dropping non-JSON frame from connection {peer.connection_id}")
            return
        if not isinstance(raw, dict) or not isinstance(raw.get("type"), str):
            logger.warning(f"Received message without type from connection {peer.connection_id}")
            return
        if raw["type"] not in MESSAGE_TYPES:
            logger.warning(f"Unknown meeting message type: {raw['type']}")
            return
        try:
            message = inbound_message_adapter.validate_python(raw)
        except ValidationError as e:
            logger.warning(f"Dropping invalid {raw['type']} frame from connection {peer.connection_id}: {e.error_count()} error(s)")
            return

        if isinstance(message, JoinMessage):
            await self.handle_join(peer, message)
            return

        info = self.rooms.session(peer.connection_id)
        if info is None:
            logger.warning(f"Dropping {message.type} from connection {peer.connection_id}: not joined")
            return
        if message.meeting_code is not None and normalize_meeting_code(message.meeting_code) != info.meeting_code:
            logger.warning(
                f"Dropping {message.type} from user {info.user_id}: meeting code {message.meeting_code} "
                f"does not match joined meeting {info.meeting_code}"
            )
            return

        if isinstance(message, RelayMessage):
            self.relay(info, message, raw)
        elif isinstance(message, RoomBroadcastMessage):
            self.broadcast(info.meeting_code, raw)
        elif isinstance(message, MediaStateMessage):
            logger.debug(f"User {info.user_id} {message.type} changed to {message.is_on} in meeting {info.meeting_code}")
            self.broadcast(info.meeting_code, media_state_message(message.type, info.meeting_code, info.user_id, message.is_on))
        elif isinstance(message, EndMeetingMessage):
            await self.end_meeting(info)
        elif isinstance(message, LeaveMessage):
            await self.disconnect(peer)
            peer.close(WS_CLOSE_NORMAL, "Left meeting")

    def _reject(self, peer: PeerConnection, reason: str) -> None:
        peer.send(error_message(reason))
        peer.close(WS_CLOSE_POLICY_VIOLATION, "Join rejected")

    async def handle_join(self, peer: PeerConnection, message: JoinMessage) -> None:
        if self.rooms.session(peer.connection_id) is not None:
            logger.warning(f"Connection {peer.connection_id} sent join while already joined, ignoring")
            return

        meeting_code = normalize_meeting_code(message.meeting_code or "")
        user_id = message.from_user_id

        meeting = self.meeting_service.get_active_meeting_by_code(meeting_code) if meeting_code else None
        if meeting is None:
            logger.warning(f"User {user_id} attempted to join non-existent meeting with code {meeting_code}")
            self._reject(peer, "No active meeting exists with this code. Please check the code or ask the host to start a meeting.")
            return

        token = message.token
        if not token:
            logger.warning(f"User {user_id} attempted to join meeting {meeting_code} without signaling token")
            self._reject(peer, "Authentication required. Please join the meeting through the official interface.")
            return

        try:
            token_meeting_id = decode_join_token(token).meeting_id
        except MalformedTokenError as e:
            logger.warning(f"Failed to parse signaling token from user {user_id}: {e}")
            token_meeting_id = None
        if token_meeting_id != meeting.meeting_id:
            logger.warning(f"User {user_id} attempted to join meeting {meeting_code} with invalid signaling token")
            self._reject(peer, "Invalid authentication token. Please rejoin the meeting.")
            return

        existing, stale = await self.rooms.add(peer.connection_id, Participant(user_id=user_id, peer=peer), meeting)
        if stale is not None:
            stale_participants = list(stale.participants.values())
            logger.warning(
                f"Code {meeting_code} reused by meeting {meeting.meeting_id}; closing room of ended meeting "
                f"{stale.meeting_id} with {len(stale_participants)} participants"
            )
            self._terminate(stale.meeting_code, stale_participants, stale.host_user_id)
        existing_user_ids = [p.user_id for p in existing]

        peer.send(existing_participants_message(meeting_code, existing_user_ids))
        if existing:
            self._send_all(existing, participant_joined_message(meeting_code, user_id))

        logger.info(f"User {user_id} joined meeting with code {meeting_code} ({len(existing)} existing peers)")

    def relay(self, info: SessionInfo, message: RelayMessage, raw: Dict[str, Any]) -> None:
        for participant in self.rooms.participants(info.meeting_code):
            if participant.user_id == message.to_user_id:
                participant.peer.send(json.dumps(raw))
                return
        logger.debug(f"Relay target {message.to_user_id} not in meeting {info.meeting_code}, dropping {message.type}")

    def broadcast(self, meeting_code: str, message: Dict[str, Any]) -> int:
        return self._send_all(self.rooms.participants(meeting_code), message)

    @staticmethod
    def _send_all(participants: List[Participant], message: Dict[str, Any]) -> int:
        payload = json.dumps(message)
        delivered = 0
        for participant in participants:
            if participant.peer.send(payload):
                delivered += 1
        return delivered

    def _terminate(self, meeting_code: str, participants: List[Participant], from_user_id: str) -> None:
        self._send_all(participants, end_meeting_message(meeting_code, from_user_id))
        for participant in participants:
            participant.peer.close(WS_CLOSE_NORMAL, "Meeting ended")

    async def end_meeting(self, info: SessionInfo) -> None:
        participants = await self.rooms.close_room(info.meeting_code, host_user_id=info.user_id)
        if participants is None:
            logger.warning(f"User {info.user_id} is not the host of meeting {info.meeting_code}, ignoring end-meeting")
            return

        logger.info(f"Host {info.user_id} ending meeting {info.meeting_code} - broadcasting to all {len(participants)} participants")
        self._terminate(info.meeting_code, participants, info.user_id)
        logger.info(f"Meeting {info.meeting_code} terminated. All {len(participants)} participants disconnected.")

    async def disconnect(self, peer: PeerConnection) -> None:
        """Drop a connection from its room; safe to call more than once."""
        removed = await self.rooms.remove(peer.connection_id)
        if removed is None:
            return
        info, remaining = removed
        if remaining:
            self._send_all(remaining, participant_left_message(info.meeting_code, info.user_id))
        logger.info(f"User {info.user_id} left meeting {info.meeting_code}")
