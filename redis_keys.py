REDIS_NODE_KEY = "feed:node:{path}" # hash - child name -> JSON value
REDIS_STREAM_KEY = "feed:stream:{path}" # stream - appended items, id assigned by Redis
REDIS_LEASE_KEY = "feed:lease:{path}" # sorted set - child name -> lease expiry (epoch seconds)
REDIS_CHANGED_CHANNEL = "feed:changed:{path}" # pub/sub - fired on every write/remove under path

# **Example layout for room `abc1234`**
# - `feed:node:room` -> { "abc1234": "{\"createdAt\": 1700000000000}" }
# - `feed:node:room/abc1234/participants` -> { "<identity id>": "{\"id\": ..., \"name\": ..., \"joinedAt\": ...}" }
# - `feed:lease:room/abc1234/participants` -> { "<identity id>": 1700000030.0 }
# - `feed:stream:room/abc1234/messages` -> 1700000000000-0 { "value": "{\"fromId\": ..., \"text\": ...}" }
# - `feed:changed:room/abc1234/participants` -> channel, payload is the changed child name
