from fastapi import APIRouter, HTTPException, Request

from errors import FeedUnavailable
from feed import now_ms
from logging_config import get_logger
from paths import participants_path, room_path
from schemas.rooms import CreateRoomResponse, RoomDetailsResponse
from session.presence import PresenceTracker
from session.room_session import generate_room_code

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])


def client_host(request: Request) -> str:
    return request.client.host if request and request.client else 'unknown'


@rooms_router.post("/", response_model=CreateRoomResponse, status_code=201)
async def create_room(request: Request):
    # Writes the room record only; clients join over the session websocket.
    # Response 201: { "room_id": "k3v9x0a", "created_at": 1700000000000 }
    room_id = generate_room_code()
    created_at = now_ms()
    logger.info(f"Room creation request from {client_host(request)}, room_id: {room_id}")

    feed = request.app.state.store.connect()
    try:
        await feed.write(room_path(room_id), {"createdAt": created_at})
    except FeedUnavailable as e:
        logger.error(f"Error creating room {room_id}: {e}", exc_info=True)
        raise HTTPException(status_code=503, detail="Failed to create room")
    finally:
        await feed.close()

    logger.info(f"Room {room_id} created successfully")
    return CreateRoomResponse(room_id=room_id, created_at=created_at)


@rooms_router.get("/{room_id}", response_model=RoomDetailsResponse)
async def get_room_details(room_id: str, request: Request):
    """
    Get room details including who is online.

    Returns:
    - room_id: Short room code
    - created_at: Room creation time (epoch millis), if the record exists
    - online_count: Number of participants currently present
    - participants: Present participants, oldest join first
    """
    logger.info(f"Room details request for {room_id} from {client_host(request)}")

    feed = request.app.state.store.connect()
    try:
        room = await feed.read_once(room_path(room_id))
        snapshot = await feed.read_once(participants_path(room_id))
    except FeedUnavailable as e:
        logger.error(f"Room details failed for {room_id}: {e}")
        raise HTTPException(status_code=503, detail="Room store unavailable")
    finally:
        await feed.close()

    presence = PresenceTracker()
    presence.apply_snapshot(snapshot if isinstance(snapshot, dict) else None)
    if room is None and not len(presence):
        logger.warning(f"Room details failed: Room {room_id} not found")
        raise HTTPException(status_code=404, detail="Room not found")

    created_at = room.get("createdAt") if isinstance(room, dict) else None
    logger.info(f"Room details retrieved for {room_id}: {len(presence)} users online")
    return RoomDetailsResponse(
        room_id=room_id,
        created_at=created_at,
        online_count=len(presence),
        participants=presence.as_list(),
    )
