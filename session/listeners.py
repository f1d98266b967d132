from typing import List

from logging_config import get_logger

logger = get_logger(__name__)


class ListenerRegistry:
    """Owns the subscription handles opened for one room.

    ``release_all`` closes every handle exactly once and may be called any
    number of times.
    """

    def __init__(self, room_id: str = ""):
        self.room_id = room_id
        self._handles: List = []

    def register(self, handle):
        self._handles.append(handle)
        logger.debug(f"Registered {handle!r} for room {self.room_id} ({len(self._handles)} active)")
        return handle

    def release_all(self) -> int:
        handles, self._handles = self._handles, []
        released = 0
        for handle in handles:
            close = getattr(handle, "close", None)
            if not callable(close):
                logger.debug(f"Ignoring malformed listener handle {handle!r} in room {self.room_id}")
                continue
            try:
                close()
                released += 1
            except Exception as e:
                logger.warning(f"Failed to close listener {handle!r} in room {self.room_id}: {e}")
        if handles:
            logger.debug(f"Released {released}/{len(handles)} listeners for room {self.room_id}")
        return released

    @property
    def active(self) -> int:
        return sum(1 for handle in self._handles if not getattr(handle, "closed", False))

    def __len__(self):
        return len(self._handles)
