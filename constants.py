import os

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)

REDIS_URL = f"redis://:{REDIS_PASSWORD}@{REDIS_HOST}:{REDIS_PORT}" if REDIS_PASSWORD else f"redis://{REDIS_HOST}:{REDIS_PORT}"

# "redis" or "memory"
FEED_BACKEND = os.getenv("FEED_BACKEND", "redis")

MESSAGE_HISTORY_LIMIT = int(os.getenv("MESSAGE_HISTORY_LIMIT", 200))
MESSAGE_STREAM_MAXLEN = int(os.getenv("MESSAGE_STREAM_MAXLEN", 10000))
ROOM_CODE_LENGTH = int(os.getenv("ROOM_CODE_LENGTH", 7))

PRESENCE_LEASE_SECONDS = int(os.getenv("PRESENCE_LEASE_SECONDS", 30))
PRESENCE_HEARTBEAT_SECONDS = int(os.getenv("PRESENCE_HEARTBEAT_SECONDS", 10))
SUBSCRIPTION_BLOCK_MS = int(os.getenv("SUBSCRIPTION_BLOCK_MS", 1000))

IDENTITY_FILE = os.getenv("IDENTITY_FILE", os.path.join(os.path.expanduser("~"), ".ephemeral_rooms", "identity.json"))
