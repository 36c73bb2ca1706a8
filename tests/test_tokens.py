import base64
import pytest
from tokens import JoinToken, MalformedTokenError, decode_join_token, encode_join_token


def test_encode_decode_carries_meeting_id_and_issue_time():
    token = encode_join_token("3f1c2a9e-0000-4000-8000-000000000001", issued_at=1700000000000)
    assert decode_join_token(token) == JoinToken("3f1c2a9e-0000-4000-8000-000000000001", 1700000000000)


def test_token_is_url_safe_without_padding():
    token = encode_join_token("m", issued_at=1)
    assert "=" not in token
    assert base64.urlsafe_b64decode(token + "=" * (-len(token) % 4)) == b"m:1"


def test_encode_stamps_current_time():
    token = decode_join_token(encode_join_token("abc"))
    assert token.meeting_id == "abc"
    assert token.issued_at > 1_600_000_000_000


@pytest.mark.parametrize("token", [
    "",
    "not base64 at all!",
    base64.urlsafe_b64encode(b"no-separator").decode(),
    base64.urlsafe_b64encode(b":1700000000000").decode(),
    base64.urlsafe_b64encode(b"abc:not-a-time").decode(),
    base64.urlsafe_b64encode(b"\xff\xfe:12").decode(),
])
def test_malformed_tokens_are_rejected(token):
    with pytest.raises(MalformedTokenError):
        decode_join_token(token)
