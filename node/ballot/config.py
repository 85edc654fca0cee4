# env vars + constants
import os

NODE_ID = os.getenv("NODE_ID", "nodeX")
PORT = int(os.getenv("PORT", "8000"))

# Administrator used when no durable state exists yet
ADMIN_ID = os.getenv("ADMIN_ID", "admin")
STATE_FILE = os.getenv("STATE_FILE", "")

NOTIFY_PEERS = [p.strip() for p in os.getenv("NOTIFY_PEERS", "").split(",") if p.strip()]
NOTIFY_TIMEOUT = float(os.getenv("NOTIFY_TIMEOUT", "1.5"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "json")

CALLER_HEADER = "X-Caller-Id"
