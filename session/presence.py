from typing import Any, Dict, List, Optional

from pydantic import ValidationError as SchemaError

from logging_config import get_logger
from schemas.rooms import Participant

logger = get_logger(__name__)


class PresenceTracker:
    """Local view of who is in the room.

    Every snapshot from the feed replaces the whole view; nothing from an
    earlier snapshot survives.
    """

    def __init__(self):
        self.participants: Dict[str, Participant] = {}

    def apply_snapshot(self, snapshot: Optional[Dict[str, Any]]) -> Dict[str, Participant]:
        participants = {}
        for identity_id, record in (snapshot or {}).items():
            if not isinstance(record, dict):
                logger.warning(f"Skipping malformed presence record for {identity_id}")
                continue
            try:
                participants[identity_id] = Participant.model_validate({**record, "id": identity_id})
            except SchemaError as e:
                logger.warning(f"Skipping invalid presence record for {identity_id}: {e.error_count()} errors")
        self.participants = participants
        logger.debug(f"Presence snapshot applied: {len(participants)} participants")
        return participants

    def clear(self):
        self.participants = {}

    def as_list(self) -> List[Participant]:
        return sorted(self.participants.values(), key=lambda p: (p.joined_at, p.id))

    def __contains__(self, identity_id: str):
        return identity_id in self.participants

    def __len__(self):
        return len(self.participants)
