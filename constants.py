import os

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)

if REDIS_PASSWORD:
    REDIS_URL = os.getenv("REDIS_URL", f"redis://:{REDIS_PASSWORD}@{REDIS_HOST}:{REDIS_PORT}")
else:
    REDIS_URL = os.getenv("REDIS_URL", f"redis://{REDIS_HOST}:{REDIS_PORT}")

DOMAIN = os.getenv("DOMAIN", "localhost")
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", f"http://{DOMAIN}").rstrip("/")

# Connection-level retries (with exponential backoff) before StoreUnavailable
STORE_RETRIES = int(os.getenv("STORE_RETRIES", 3))
# Optimistic transaction attempts before giving up on a contended room
STORE_MAX_TX_RETRIES = int(os.getenv("STORE_MAX_TX_RETRIES", 20))

BRIDGE_HANDSHAKE_TIMEOUT = float(os.getenv("BRIDGE_HANDSHAKE_TIMEOUT", 5.0))
# How long a watcher blocks on pub/sub before re-checking for cancellation
WATCH_POLL_TIMEOUT = float(os.getenv("WATCH_POLL_TIMEOUT", 1.0))
INVITE_TTL_SECONDS = int(os.getenv("INVITE_TTL_SECONDS", 600))

MAX_PLAYERS = 2
