from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, Response
from fastapi.responses import StreamingResponse
from typing import Optional
from schemas.rooms import ErrorResponse, HealthResponse, JoinRequest, JoinResponse, LeaveRequest, Peer, SignalRequest
from signaling import SignalingService
from streams import SSE_HEADERS
from logging_config import get_logger

logger = get_logger(__name__)

rooms_router = APIRouter(tags=["rooms"])


def get_signaling(request: Request) -> SignalingService:
    return request.app.state.signaling


def _client_host(request: Request) -> str:
    return request.client.host if request.client else "unknown"


@rooms_router.post(
    "/join",
    response_model=JoinResponse,
    responses={400: {"model": ErrorResponse}},
)
@rooms_router.post(
    "/api/join",
    response_model=JoinResponse,
    responses={400: {"model": ErrorResponse}},
    include_in_schema=False,
)
async def join_room(
    join_request: JoinRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    signaling: SignalingService = Depends(get_signaling),
):
    # POST /join Body: { "room": "lobby", "name": "Ada" }
    # Response 200: { "clientId": "...", "room": "lobby", "peers": [{ "clientId": "...", "name": "Grace" }] }
    logger.info(f"Join request for room {join_request.room} from {_client_host(request)}, name: {join_request.name}")
    result = await signaling.join(join_request.room, join_request.name)

    # Background tasks run after the response is sent, so the joiner's
    # confirmation always precedes peer-joined on the other streams.
    background_tasks.add_task(signaling.announce_join, result)

    return JoinResponse(
        client_id=result.client_id,
        room=result.room_id,
        peers=[Peer(client_id=client_id, name=name) for client_id, name in result.peers],
    )


@rooms_router.get(
    "/events",
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def event_stream(
    request: Request,
    room: Optional[str] = Query(None),
    client_id: Optional[str] = Query(None, alias="clientId"),
    signaling: SignalingService = Depends(get_signaling),
):
    """
    Open the server-sent event stream for a joined client.

    Frames:
    - peer-joined: {"clientId", "name"}
    - peer-left: {"clientId"}
    - signal: {"from", "data"}

    A ": ping" comment is written periodically to keep intermediaries from
    timing out the connection. Closing the connection removes the client
    from the room.
    """
    logger.info(f"Event stream request for room {room}, client {client_id} from {_client_host(request)}")
    stream = await signaling.open_stream(room, client_id)
    return StreamingResponse(stream.frames(), media_type="text/event-stream", headers=SSE_HEADERS)


@rooms_router.post(
    "/signal",
    status_code=204,
    response_class=Response,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
async def signal(signal_request: SignalRequest, request: Request, signaling: SignalingService = Depends(get_signaling)):
    # POST /signal Body: { "room": "lobby", "from": "<clientId>", "target": "<clientId>", "data": {...} }
    # 409 means the target has not attached its event stream yet; the caller decides whether to retry.
    logger.info(
        f"Signal request for room {signal_request.room} from {signal_request.from_} to {signal_request.target} "
        f"from {_client_host(request)}"
    )
    await signaling.relay(signal_request.room, signal_request.from_, signal_request.target, signal_request.data)
    return Response(status_code=204)


@rooms_router.post(
    "/leave",
    status_code=204,
    response_class=Response,
    responses={400: {"model": ErrorResponse}},
)
async def leave_room(leave_request: LeaveRequest, request: Request, signaling: SignalingService = Depends(get_signaling)):
    # Leaving twice, or racing a stream disconnect, is a no-op
    logger.info(f"Leave request for room {leave_request.room}, client {leave_request.client_id} from {_client_host(request)}")
    await signaling.leave(leave_request.room, leave_request.client_id)
    return Response(status_code=204)


@rooms_router.get("/health", response_model=HealthResponse)
async def health_check(signaling: SignalingService = Depends(get_signaling)):
    registry = signaling.registry
    return HealthResponse(status="ok", rooms=registry.room_count(), sessions=registry.session_count())
