# Logical paths inside the remote feed, independent of the backend

ROOM_PATH = "room/{room_id}"
PARTICIPANTS_PATH = "room/{room_id}/participants"
PARTICIPANT_PATH = "room/{room_id}/participants/{identity_id}"
MESSAGES_PATH = "room/{room_id}/messages"


def room_path(room_id: str) -> str:
    return ROOM_PATH.format(room_id=room_id)


def participants_path(room_id: str) -> str:
    return PARTICIPANTS_PATH.format(room_id=room_id)


def participant_path(room_id: str, identity_id: str) -> str:
    return PARTICIPANT_PATH.format(room_id=room_id, identity_id=identity_id)


def messages_path(room_id: str) -> str:
    return MESSAGES_PATH.format(room_id=room_id)


def split_path(path: str):
    """Split "a/b/c" into ("a/b", "c"). A single segment has parent ""."""
    path = path.strip("/")
    if not path:
        raise ValueError("Empty feed path")
    parent, _, leaf = path.rpartition("/")
    return parent, leaf
