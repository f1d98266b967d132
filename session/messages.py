from collections import deque
from typing import Any, Callable, List, Optional, Set, Tuple

from pydantic import ValidationError as SchemaError

from constants import MESSAGE_HISTORY_LIMIT
from feed import stream_id_key
from logging_config import get_logger
from schemas.rooms import Message

logger = get_logger(__name__)


class MessageStream:
    """Ordered, deduplicated, size-capped view of a room's messages.

    Items arrive from the feed in increasing id order and are only ever
    appended. An item whose id is already present, or is not newer than the
    newest retained message, is a replay and is dropped.
    """

    def __init__(self, limit: int = MESSAGE_HISTORY_LIMIT,
                 order_key: Callable[[str], Tuple] = stream_id_key):
        self.limit = limit
        self.order_key = order_key
        self._messages: deque = deque()
        self._ids: Set[str] = set()
        self._last_key: Optional[Tuple] = None

    def apply_added(self, item_id: str, value: Any) -> Optional[Message]:
        if item_id in self._ids:
            logger.debug(f"Dropping duplicate message {item_id}")
            return None
        if not isinstance(value, dict):
            logger.debug(f"Dropping empty or malformed message {item_id}")
            return None
        try:
            key = self.order_key(item_id)
            message = Message.model_validate({**value, "id": item_id})
        except (ValueError, SchemaError) as e:
            logger.warning(f"Dropping invalid message {item_id}: {e}")
            return None
        if self._last_key is not None and key <= self._last_key:
            logger.debug(f"Dropping stale message {item_id}, newest retained is older than it")
            return None

        self._messages.append(message)
        self._ids.add(item_id)
        self._last_key = key
        while len(self._messages) > self.limit:
            evicted = self._messages.popleft()
            self._ids.discard(evicted.id)
        return message

    def clear(self):
        self._messages.clear()
        self._ids.clear()
        self._last_key = None

    def as_list(self) -> List[Message]:
        return list(self._messages)

    def __contains__(self, item_id: str):
        return item_id in self._ids

    def __len__(self):
        return len(self._messages)
