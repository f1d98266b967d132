"""Room session state machine.

A ``RoomSession`` is one client's membership in at most one room at a time.
It writes the client's presence, keeps the participant and message views in
step with the feed through subscriptions it owns, and tears them down on
leave, rejoin or connection loss.

Transitions run on a single event loop. Every await is a point where another
intent may run, so each join carries an attempt number: a leave (or a newer
join) bumps it, and a join that finds its attempt superseded when it resumes
closes whatever it had opened and stops.
"""
import asyncio
import random
import string
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional

from constants import MESSAGE_HISTORY_LIMIT, ROOM_CODE_LENGTH
from errors import FeedUnavailable, Outcome, ValidationError
from feed import RemoteFeed, now_ms
from logging_config import get_logger
from paths import messages_path, participant_path, participants_path, room_path
from schemas.rooms import Identity, Participant, Room, SessionState, SessionStatus
from session.listeners import ListenerRegistry
from session.messages import MessageStream
from session.presence import PresenceTracker

logger = get_logger(__name__)

ROOM_CODE_ALPHABET = string.ascii_lowercase + string.digits

StateObserver = Callable[[SessionState], None]


def generate_room_code(length: int = ROOM_CODE_LENGTH) -> str:
    return ''.join(random.choices(ROOM_CODE_ALPHABET, k=length))


def default_display_name() -> str:
    return "guest-" + ''.join(random.choices(ROOM_CODE_ALPHABET, k=5))


class RoomSession:
    def __init__(self, feed: RemoteFeed, identity: Identity, display_name: Optional[str] = None,
                 history_limit: int = MESSAGE_HISTORY_LIMIT):
        self.feed = feed
        self.identity = identity
        self.display_name = (display_name or "").strip() or default_display_name()
        self.status = SessionStatus.IDLE
        self.room_id: Optional[str] = None
        self.room: Optional[Room] = None
        self.presence = PresenceTracker()
        self.messages = MessageStream(limit=history_limit)
        self.listeners = ListenerRegistry()
        self._attempt = 0
        self._leave_finished: Optional[asyncio.Event] = None
        self._observers: List[StateObserver] = []

    # -- observable state -------------------------------------------------

    @property
    def joined(self) -> bool:
        return self.status is SessionStatus.JOINED

    @property
    def participants(self):
        return self.presence.participants

    def state(self) -> SessionState:
        return SessionState(
            room_id=self.room_id,
            joined=self.joined,
            status=self.status,
            identity_id=self.identity.id,
            display_name=self.display_name,
            participants=self.presence.as_list(),
            messages=self.messages.as_list(),
        )

    def add_observer(self, observer: StateObserver) -> Callable[[], None]:
        self._observers.append(observer)

        def remove():
            if observer in self._observers:
                self._observers.remove(observer)
        return remove

    def _notify(self):
        if not self._observers:
            return
        state = self.state()
        for observer in list(self._observers):
            try:
                observer(state)
            except Exception as e:
                logger.error(f"Session observer failed: {e}", exc_info=True)

    # -- intents ----------------------------------------------------------

    async def create(self) -> str:
        """Create a room with a fresh short code and join it.

        When the room record cannot be written, ``FeedUnavailable`` is raised
        with the generated code on ``room_id`` and no join is attempted.
        """
        room_id = generate_room_code()
        room = Room(id=room_id, created_at=now_ms())
        logger.info(f"Creating room {room_id} for {self.identity.id}")
        try:
            await self.feed.write(room_path(room_id), room.to_feed())
        except FeedUnavailable as e:
            logger.error(f"Failed to create room {room_id}: {e}")
            e.room_id = room_id
            raise
        await self.join(room_id)
        return room_id

    async def join(self, room_id: str):
        room_id = (room_id or "").strip()
        if not room_id:
            raise ValidationError("Room id is required")

        if self.status is SessionStatus.LEAVING and self._leave_finished is not None:
            await self._leave_finished.wait()
        if self.status in (SessionStatus.JOINING, SessionStatus.JOINED):
            logger.info(f"Leaving room {self.room_id} before joining {room_id}")
            await self.leave()

        self._attempt += 1
        attempt = self._attempt
        registry = ListenerRegistry(room_id)
        self.listeners = registry
        self.room_id = room_id
        self.room = None
        self.status = SessionStatus.JOINING
        self.presence.clear()
        self.messages.clear()
        self._notify()
        logger.info(f"Joining room {room_id} as {self.identity.id} ({self.display_name})")

        presence = participant_path(room_id, self.identity.id)
        presence_written = False
        try:
            participant = Participant(id=self.identity.id, name=self.display_name, joined_at=now_ms())
            await self.feed.write(presence, participant.to_feed())
            presence_written = True
            if self._superseded(attempt):
                return await self._abandon(room_id, registry, presence_written)

            await self.feed.on_disconnect_cleanup(presence)
            if self._superseded(attempt):
                return await self._abandon(room_id, registry, presence_written)

            registry.register(await self.feed.subscribe_snapshot(
                participants_path(room_id), partial(self._on_presence, attempt)))
            if self._superseded(attempt):
                return await self._abandon(room_id, registry, presence_written)

            registry.register(await self.feed.subscribe_appended(
                messages_path(room_id), self.messages.limit, partial(self._on_message, attempt)))
            if self._superseded(attempt):
                return await self._abandon(room_id, registry, presence_written)

            await self._ensure_room_exists(room_id)
            if self._superseded(attempt):
                return await self._abandon(room_id, registry, presence_written)
        except FeedUnavailable as e:
            if self._superseded(attempt):
                logger.info(f"Join of room {room_id} failed after it was superseded: {e}")
                return await self._abandon(room_id, registry, presence_written)
            logger.error(f"Failed to join room {room_id}: {e}")
            registry.release_all()
            if presence_written:
                await self._best_effort(f"remove presence in {room_id}", self.feed.remove(presence))
            if not self._superseded(attempt):
                self._reset()
                self._notify()
            e.room_id = room_id
            raise
        except BaseException:
            # cancelled or crashed mid-join
            registry.release_all()
            if not self._superseded(attempt):
                self._reset()
                self._notify()
            raise

        self.status = SessionStatus.JOINED
        logger.info(f"Joined room {room_id} ({len(self.presence)} participants, {len(self.messages)} messages)")
        self._notify()

    async def leave(self):
        if self.status not in (SessionStatus.JOINING, SessionStatus.JOINED):
            logger.debug(f"Leave ignored in state {self.status.value}")
            return

        room_id = self.room_id
        registry = self.listeners
        self._attempt += 1
        attempt = self._attempt
        finished = asyncio.Event()
        self._leave_finished = finished
        self.status = SessionStatus.LEAVING
        self._notify()
        logger.info(f"Leaving room {room_id}")
        try:
            outcome = await self._best_effort(
                f"remove presence in {room_id}",
                self.feed.remove(participant_path(room_id, self.identity.id)),
            )
            if not outcome.ok:
                logger.info(f"Presence in {room_id} left to the disconnect cleanup")
        finally:
            registry.release_all()
            if self._attempt == attempt:
                self._reset()
            finished.set()
            if self._leave_finished is finished:
                self._leave_finished = None
            logger.info(f"Left room {room_id}")
            self._notify()

    async def send(self, text: str) -> Outcome:
        if self.status is not SessionStatus.JOINED:
            logger.debug("Send rejected, not in a room")
            return Outcome.failure(ValidationError("Join a room to send messages"))
        text = (text or "").strip()
        if not text:
            return Outcome.failure(ValidationError("Message text is empty"))

        room_id = self.room_id
        try:
            item_id = await self.feed.push(messages_path(room_id), {
                "fromId": self.identity.id,
                "fromName": self.display_name,
                "text": text,
                "at": now_ms(),
            })
        except FeedUnavailable as e:
            logger.error(f"sendMessage error in room {room_id}: {e}")
            return Outcome.failure(e)
        logger.debug(f"Sent message {item_id} to room {room_id}")
        return Outcome.success(item_id)

    def set_display_name(self, name: str):
        """Rename the local participant. Takes effect on the next join and message."""
        name = (name or "").strip()
        if not name:
            raise ValidationError("Display name is required")
        self.display_name = name
        self._notify()

    def close(self):
        """Drop local state after the connection is gone.

        Presence is not touched; the feed's disconnect cleanup removes it.
        """
        self._attempt += 1
        released = self.listeners.release_all()
        if self.room_id:
            logger.info(f"Session for {self.identity.id} closed in room {self.room_id}, released {released} listeners")
        self._reset()
        self._notify()

    # -- feed notifications -----------------------------------------------

    def _on_presence(self, attempt: int, snapshot: Dict[str, Any]):
        if attempt != self._attempt:
            return
        self.presence.apply_snapshot(snapshot)
        self._notify()

    def _on_message(self, attempt: int, item_id: str, value: Any):
        if attempt != self._attempt:
            return
        if self.messages.apply_added(item_id, value) is not None:
            self._notify()

    # -- helpers ----------------------------------------------------------

    def _superseded(self, attempt: int) -> bool:
        return attempt != self._attempt or self.status is not SessionStatus.JOINING

    async def _abandon(self, room_id: str, registry: ListenerRegistry, presence_written: bool):
        registry.release_all()
        logger.info(f"Join of room {room_id} abandoned")
        # A newer join of the same room owns the presence record now
        still_ours = self.room_id != room_id or self.status not in (SessionStatus.JOINING, SessionStatus.JOINED)
        if presence_written and still_ours:
            await self._best_effort(
                f"remove presence in {room_id}",
                self.feed.remove(participant_path(room_id, self.identity.id)),
            )

    async def _ensure_room_exists(self, room_id: str):
        path = room_path(room_id)
        outcome = await self._best_effort(f"read room {room_id}", self.feed.read_once(path))
        if not outcome.ok:
            return
        if outcome.value is not None:
            if isinstance(outcome.value, dict) and "createdAt" in outcome.value:
                self.room = Room(id=room_id, created_at=outcome.value["createdAt"])
            return
        logger.info(f"Room {room_id} is missing, recreating it")
        room = Room(id=room_id, created_at=now_ms())
        outcome = await self._best_effort(f"recreate room {room_id}", self.feed.write(path, room.to_feed()))
        if outcome.ok:
            self.room = room

    async def _best_effort(self, what: str, operation: Awaitable) -> Outcome:
        try:
            value = await operation
        except FeedUnavailable as e:
            logger.warning(f"{what} failed: {e}")
            return Outcome.failure(e)
        return Outcome.success(value)

    def _reset(self):
        self.status = SessionStatus.IDLE
        self.room_id = None
        self.room = None
        self.presence.clear()
        self.messages.clear()
        self.listeners = ListenerRegistry()
