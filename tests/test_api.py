import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect
from tokens import decode_join_token, encode_join_token


def join_payload(meeting, user_id, token=None):
    return {
        "type": "join",
        "meetingCode": meeting["meetingCode"],
        "fromUserId": str(user_id),
        "payload": {"token": token if token is not None else meeting["signalingToken"]},
    }


def create_meeting(client: TestClient, host_user_id: int = 1) -> dict:
    response = client.post("/api/meetings/createNormalMeeting", json={"hostUserId": host_user_id})
    assert response.status_code == 201
    return response.json()


def test_create_normal_meeting_returns_token(client):
    meeting = create_meeting(client, 1)
    assert meeting["active"] is True
    assert meeting["hostUserId"] == 1
    assert meeting["isClassroomMeeting"] is False
    assert len(meeting["meetingCode"]) == 6
    assert decode_join_token(meeting["signalingToken"]).meeting_id == meeting["meetingId"]


def test_create_classroom_meeting(client, backend):
    backend.save_classroom(5, "Biology", teacher_id=1)
    response = client.post("/api/meetings/createClassroomMeeting", json={"classroomId": 5, "hostUserId": 1})
    assert response.status_code == 201
    assert response.json()["classroomId"] == 5
    assert response.json()["isClassroomMeeting"] is True

    forbidden = client.post("/api/meetings/createClassroomMeeting", json={"classroomId": 5, "hostUserId": 2})
    assert forbidden.status_code == 403
    missing = client.post("/api/meetings/createClassroomMeeting", json={"classroomId": 6, "hostUserId": 1})
    assert missing.status_code == 404


def test_join_endpoint(client, backend):
    meeting = create_meeting(client, 1)
    response = client.post("/api/meetings/join", json={"meetingCode": meeting["meetingCode"].lower(), "userId": 2})
    assert response.status_code == 200
    assert response.json()["meetingId"] == meeting["meetingId"]

    assert client.post("/api/meetings/join", json={"meetingCode": "ZZZZZZ", "userId": 2}).status_code == 404
    assert client.post("/api/meetings/join", json={"meetingCode": "", "userId": 2}).status_code == 422


def test_classroom_join_requires_membership(client, backend):
    backend.save_classroom(5, "Biology", teacher_id=1)
    backend.add_classroom_member(5, 2)
    meeting = client.post("/api/meetings/createClassroomMeeting", json={"classroomId": 5, "hostUserId": 1}).json()

    assert client.post("/api/meetings/join", json={"meetingCode": meeting["meetingCode"], "userId": 2}).status_code == 200
    assert client.post("/api/meetings/join", json={"meetingCode": meeting["meetingCode"], "userId": 3}).status_code == 403


def test_end_and_status(client):
    meeting = create_meeting(client, 1)
    code = meeting["meetingCode"]

    assert client.post("/api/meetings/end", params={"meetingCode": code, "userId": 2}).status_code == 403
    assert client.post("/api/meetings/end", params={"meetingCode": code, "userId": 1}).status_code == 204
    assert client.post("/api/meetings/end", params={"meetingCode": code, "userId": 1}).status_code == 404

    status = client.get(f"/api/meetings/status/{code}").json()
    assert status["active"] is False
    assert status["endedAt"] is not None
    assert client.get("/api/meetings/status/ZZZZZZ").status_code == 404


def test_status_lists_live_participants(client):
    meeting = create_meeting(client, 1)
    with client.websocket_connect("/ws/meet") as host:
        host.send_json(join_payload(meeting, 1))
        assert host.receive_json()["type"] == "existing-participants"

        status = client.get(f"/api/meetings/status/{meeting['meetingCode']}").json()
        assert status["participants"] == ["1"]


def test_websocket_join_flow(client):
    meeting = create_meeting(client, 1)
    with client.websocket_connect("/ws/meet") as host:
        host.send_json(join_payload(meeting, 1))
        assert host.receive_json() == {
            "type": "existing-participants", "meetingCode": meeting["meetingCode"], "participants": []
        }

        with client.websocket_connect("/ws/meet") as guest:
            guest.send_json(join_payload(meeting, 2))
            assert guest.receive_json() == {
                "type": "existing-participants", "meetingCode": meeting["meetingCode"], "participants": ["1"]
            }
            assert host.receive_json() == {
                "type": "participant-joined", "meetingCode": meeting["meetingCode"], "userId": "2"
            }

            offer = {"type": "offer", "meetingCode": meeting["meetingCode"], "fromUserId": "1", "toUserId": "2",
                     "payload": {"type": "offer", "sdp": "v=0"}}
            host.send_json(offer)
            assert guest.receive_json() == offer

            guest.send_json({"type": "mic-state", "meetingCode": meeting["meetingCode"], "fromUserId": "2", "isOn": True})
            expected = {"type": "mic-state", "meetingCode": meeting["meetingCode"], "userId": 2, "isOn": True}
            assert guest.receive_json() == expected
            assert host.receive_json() == expected

        assert host.receive_json() == {
            "type": "participant-left", "meetingCode": meeting["meetingCode"], "userId": "2"
        }


def test_websocket_rejects_mismatched_token(client):
    meeting = create_meeting(client, 1)
    other = create_meeting(client, 9)
    with client.websocket_connect("/ws/meet") as host:
        host.send_json(join_payload(meeting, 1))
        host.receive_json()

        with client.websocket_connect("/ws/meet") as intruder:
            intruder.send_json(join_payload(meeting, 2, token=encode_join_token(other["meetingId"])))
            error = intruder.receive_json()
            assert error["type"] == "error"
            with pytest.raises(WebSocketDisconnect) as closed:
                intruder.receive_json()
            assert closed.value.code == 1008

        status = client.get(f"/api/meetings/status/{meeting['meetingCode']}").json()
        assert status["participants"] == ["1"]


def test_websocket_end_meeting(client):
    meeting = create_meeting(client, 1)
    code = meeting["meetingCode"]
    with client.websocket_connect("/ws/meet") as host, client.websocket_connect("/ws/meet") as guest:
        host.send_json(join_payload(meeting, 1))
        host.receive_json()
        guest.send_json(join_payload(meeting, 2))
        guest.receive_json()
        host.receive_json()

        assert client.post("/api/meetings/end", params={"meetingCode": code, "userId": 1}).status_code == 204
        host.send_json({"type": "end-meeting", "meetingCode": code, "fromUserId": "1"})

        expected = {"type": "end-meeting", "meetingCode": code, "fromUserId": 1}
        for peer in (host, guest):
            assert peer.receive_json() == expected
            with pytest.raises(WebSocketDisconnect) as closed:
                peer.receive_json()
            assert closed.value.code == 1000

    assert client.get(f"/api/meetings/status/{code}").json()["participants"] == []
    with client.websocket_connect("/ws/meet") as late:
        late.send_json(join_payload(meeting, 2))
        assert late.receive_json()["type"] == "error"
        with pytest.raises(WebSocketDisconnect) as closed:
            late.receive_json()
        assert closed.value.code == 1008
