"""Join tokens handed out by the meeting REST endpoints.

A token is the URL-safe base64 (unpadded) encoding of ``"<meeting_id>:<issued_at_ms>"``.
It only correlates a signaling join with a meeting the REST layer already
authorized; it carries no signature.
"""
import base64
import binascii
import time
from typing import NamedTuple, Optional


class MalformedTokenError(ValueError):
    pass


class JoinToken(NamedTuple):
    meeting_id: str
    issued_at: int  # epoch milliseconds


def encode_join_token(meeting_id: str, issued_at: Optional[int] = None) -> str:
    if issued_at is None:
        issued_at = int(time.time() * 1000)
    raw = f"{meeting_id}:{issued_at}".encode("utf-8")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def decode_join_token(token: str) -> JoinToken:
    if not isinstance(token, str) or not token:
        raise MalformedTokenError("Token is empty")
    try:
        padded = token + "=" * (-len(token) % 4)
        decoded = base64.b64decode(padded.encode("ascii"), altchars=b"-_", validate=True).decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError) as e:
        raise MalformedTokenError(f"Token is not valid base64: {e}") from e

    meeting_id, sep, issued_at = decoded.rpartition(":")
    if not sep or not meeting_id or not (issued_at.isascii() and issued_at.isdigit()):
        raise MalformedTokenError("Token does not contain a meeting id and issue time")
    return JoinToken(meeting_id=meeting_id, issued_at=int(issued_at))
