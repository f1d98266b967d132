import json
import os
import uuid
from typing import Optional

from constants import IDENTITY_FILE
from logging_config import get_logger
from schemas.rooms import Identity

logger = get_logger(__name__)

IDENTITY_STORAGE_KEY = "chat_user_id"


class JsonFileStorage:
    """Tiny key/value storage kept in a JSON file."""

    def __init__(self, path: str = IDENTITY_FILE):
        self.path = path

    def _load(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, encoding="utf-8") as fh:
            data = json.load(fh)
        if not isinstance(data, dict):
            raise ValueError(f"{self.path} does not hold a JSON object")
        return data

    def get(self, key: str, default=None):
        return self._load().get(key, default)

    def __setitem__(self, key: str, value):
        data = self._load()
        data[key] = value
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as fh:
            json.dump(data, fh)
        os.replace(tmp_path, self.path)


class IdentityStore:
    """Resolves the stable participant id of this device.

    ``storage`` is any mapping-like object with ``get`` and item assignment.
    When it is missing or fails, a session-only identity is used instead.
    """

    def __init__(self, storage=None):
        self.storage = storage
        self._identity: Optional[Identity] = None

    def resolve(self) -> Identity:
        if self._identity is not None:
            return self._identity

        new_id = str(uuid.uuid4())
        if self.storage is None:
            logger.warning("No identity storage configured, using a session-only identity")
            self._identity = Identity(id=new_id, persisted=False)
            return self._identity

        try:
            existing = self.storage.get(IDENTITY_STORAGE_KEY)
            if existing:
                self._identity = Identity(id=str(existing))
                logger.info(f"Resolved persisted identity {self._identity.id}")
            else:
                self.storage[IDENTITY_STORAGE_KEY] = new_id
                self._identity = Identity(id=new_id)
                logger.info(f"Created and persisted new identity {new_id}")
        except (OSError, ValueError) as e:
            logger.warning(f"Identity storage unavailable, using a session-only identity: {e}")
            self._identity = Identity(id=new_id, persisted=False)
        return self._identity
