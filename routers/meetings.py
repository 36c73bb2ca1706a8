from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from meetings import (
    MeetingService,
    MeetingError,
    MeetingNotFoundError,
    MeetingForbiddenError,
    MeetingCodeAllocationError,
)
from schemas.meetings import (
    CreateClassroomMeetingRequest,
    CreateNormalMeetingRequest,
    JoinMeetingRequest,
    MeetingRecord,
    MeetingResponse,
)
from signaling import SignalingEngine
from tokens import encode_join_token
from typing import List, Optional
from logging_config import get_logger

logger = get_logger(__name__)

meetings_router = APIRouter(prefix="/api/meetings", tags=["meetings"])


def get_meeting_service(request: Request) -> MeetingService:
    return request.app.state.meeting_service


def get_signaling_engine(request: Request) -> SignalingEngine:
    return request.app.state.signaling_engine


def to_meeting_response(meeting: MeetingRecord, participants: Optional[List[str]] = None) -> MeetingResponse:
    # Fresh token on every response; the signaling join checks it against meeting_id
    return MeetingResponse(
        meeting_id=meeting.meeting_id,
        meeting_code=meeting.meeting_code,
        title=meeting.title,
        classroom_id=meeting.classroom_id,
        host_user_id=meeting.host_user_id,
        active=meeting.active,
        created_at=meeting.created_at,
        ended_at=meeting.ended_at,
        is_classroom_meeting=meeting.is_classroom_meeting,
        signaling_token=encode_join_token(meeting.meeting_id),
        participants=participants,
    )


def to_http_exception(error: MeetingError) -> HTTPException:
    if isinstance(error, MeetingNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, MeetingForbiddenError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(error))
    if isinstance(error, MeetingCodeAllocationError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Failed to allocate a meeting code")
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))


@meetings_router.post("/createClassroomMeeting", response_model=MeetingResponse, status_code=status.HTTP_201_CREATED)
async def create_classroom_meeting(body: CreateClassroomMeetingRequest, service: MeetingService = Depends(get_meeting_service)):
    try:
        meeting = service.create_classroom_meeting(body.classroom_id, body.host_user_id)
    except MeetingError as e:
        logger.warning(f"Classroom meeting creation failed for classroom {body.classroom_id}: {e}")
        raise to_http_exception(e)
    return to_meeting_response(meeting)


@meetings_router.post("/createNormalMeeting", response_model=MeetingResponse, status_code=status.HTTP_201_CREATED)
async def create_normal_meeting(body: CreateNormalMeetingRequest, service: MeetingService = Depends(get_meeting_service)):
    try:
        meeting = service.create_normal_meeting(body.host_user_id, body.title)
    except MeetingError as e:
        logger.warning(f"Normal meeting creation failed for user {body.host_user_id}: {e}")
        raise to_http_exception(e)
    return to_meeting_response(meeting)


@meetings_router.post("/join", response_model=MeetingResponse)
async def join_meeting(body: JoinMeetingRequest, service: MeetingService = Depends(get_meeting_service)):
    # Validates access only; the user enters the live room over /ws/meet with the returned token
    try:
        meeting = service.join_meeting(body.meeting_code, body.user_id)
    except MeetingError as e:
        logger.warning(f"Join meeting failed for {body.meeting_code}: {e}")
        raise to_http_exception(e)
    return to_meeting_response(meeting)


@meetings_router.post("/end", status_code=status.HTTP_204_NO_CONTENT)
async def end_meeting(
    meeting_code: str = Query(..., alias="meetingCode"),
    user_id: int = Query(..., alias="userId"),
    service: MeetingService = Depends(get_meeting_service),
):
    try:
        service.end_meeting(meeting_code, user_id)
    except MeetingError as e:
        logger.warning(f"End meeting failed for {meeting_code}: {e}")
        raise to_http_exception(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@meetings_router.get("/status/{meeting_code}", response_model=MeetingResponse)
async def get_meeting_status(
    meeting_code: str,
    service: MeetingService = Depends(get_meeting_service),
    engine: SignalingEngine = Depends(get_signaling_engine),
):
    """
    Get the most recent meeting that used this code, active or ended.

    Returns the meeting record plus:
    - signalingToken: join token for the signaling connection
    - participants: user ids currently connected to the live room
    """
    meeting = service.get_meeting_by_code(meeting_code)
    if meeting is None:
        logger.warning(f"Meeting status failed: no meeting with code {meeting_code}")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Meeting not found with code: {meeting_code}")
    participants = [p.user_id for p in engine.rooms.participants(meeting.meeting_code)] if meeting.active else []
    return to_meeting_response(meeting, participants)
