from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from typing import Optional, Set
import asyncio
import json

from backend import create_store
from constants import FEED_BACKEND, LOG_FILE, LOG_LEVEL
from errors import FeedUnavailable, ValidationError
from identity import IDENTITY_STORAGE_KEY, IdentityStore
from logging_config import get_logger, setup_logging
from routers.rooms import rooms_router
from session.room_session import RoomSession

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    store = create_store(FEED_BACKEND)
    ping = getattr(store, "ping", None)
    if ping is not None:
        await ping()
    app.state.store = store
    logger.info(f"Feed store ready: {store.name}")
    yield
    await store.aclose()
    logger.info("Feed store closed")


app = FastAPI(lifespan=lifespan)

# Configure CORS to allow all origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allow all origins
    allow_credentials=True,
    allow_methods=["*"],  # Allow all HTTP methods
    allow_headers=["*"],  # Allow all headers
)

app.include_router(rooms_router)

logger.info("FastAPI application initialized")


@app.get("/health")
async def health():
    store = getattr(app.state, "store", None)
    return {"status": "ok", "backend": store.name if store else None}


def error_frame(error: Exception) -> dict:
    frame = {
        "type": "error",
        "error": "validation" if isinstance(error, ValidationError) else "feed_unavailable",
        "detail": str(error),
    }
    room_id = getattr(error, "room_id", None)
    if room_id:
        frame["room_id"] = room_id
    return frame


async def handle_intent(session: RoomSession, frame: dict, outbox: asyncio.Queue):
    """Apply one UI intent to the session, reporting failures as error frames."""
    kind = frame.get("type")
    try:
        if kind == "create":
            room_id = await session.create()
            outbox.put_nowait({"type": "created", "room_id": room_id})
        elif kind == "join":
            await session.join(frame.get("room_id", ""))
        elif kind == "leave":
            await session.leave()
        elif kind == "send":
            outcome = await session.send(frame.get("text", ""))
            if not outcome.ok:
                outbox.put_nowait(error_frame(outcome.error))
        elif kind == "set_name":
            session.set_display_name(frame.get("name", ""))
        else:
            raise ValidationError(f"Unknown intent: {kind}")
    except (ValidationError, FeedUnavailable) as e:
        logger.info(f"Intent {kind} rejected for {session.identity.id}: {e}")
        outbox.put_nowait(error_frame(e))


async def pump_outbox(websocket: WebSocket, outbox: asyncio.Queue):
    try:
        while True:
            frame = await outbox.get()
            await websocket.send_text(json.dumps(frame))
    except asyncio.CancelledError:
        pass
    except Exception as e:
        logger.debug(f"Outbox stopped: {e}")


@app.websocket("/ws")
async def session_endpoint(websocket: WebSocket, identity_id: Optional[str] = None, display_name: Optional[str] = None):
    """One room session per connection.

    Query parameters:
    - identity_id: Identity persisted by the client from an earlier connection
    - display_name: Optional display name for the user

    Inbound frames: create, join {room_id}, leave, send {text}, set_name {name}.
    Outbound frames: identity, state (after every change), created, error.
    """
    await websocket.accept()
    store = websocket.app.state.store
    feed = store.connect()
    identity = IdentityStore({IDENTITY_STORAGE_KEY: identity_id} if identity_id else None).resolve()
    session = RoomSession(feed, identity, display_name)
    logger.info(f"Session connection accepted for {identity.id} ({session.display_name})")

    outbox: asyncio.Queue = asyncio.Queue()
    session.add_observer(lambda state: outbox.put_nowait({"type": "state", **state.model_dump(mode="json", by_alias=True)}))
    sender = asyncio.create_task(pump_outbox(websocket, outbox))
    outbox.put_nowait({"type": "identity", "id": identity.id, "persisted": identity.persisted})
    outbox.put_nowait({"type": "state", **session.state().model_dump(mode="json", by_alias=True)})

    # create/join run in the background so a leave can overtake them
    pending: Set[asyncio.Task] = set()
    try:
        while True:
            data = await websocket.receive_text()
            try:
                frame = json.loads(data)
            except json.JSONDecodeError:
                outbox.put_nowait(error_frame(ValidationError("Frames must be JSON objects")))
                continue
            if not isinstance(frame, dict):
                outbox.put_nowait(error_frame(ValidationError("Frames must be JSON objects")))
                continue
            if frame.get("type") in ("create", "join"):
                task = asyncio.create_task(handle_intent(session, frame, outbox))
                pending.add(task)
                task.add_done_callback(pending.discard)
            else:
                await handle_intent(session, frame, outbox)
    except WebSocketDisconnect:
        logger.info(f"Session connection closed for {identity.id}")
    except Exception as e:
        logger.error(f"Session connection error for {identity.id}: {e}", exc_info=True)
    finally:
        for task in list(pending):
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        session.close()
        await feed.close()
        sender.cancel()
        await asyncio.gather(sender, return_exceptions=True)
