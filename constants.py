import os

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)
REDIS_DB = int(os.getenv("REDIS_DB", 0))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8000))

# Comma separated; empty falls back to "*"
CORS_ALLOWED_ORIGINS = [
    origin.strip() for origin in os.getenv("CORS_ALLOWED_ORIGINS", "*").split(",") if origin.strip()
] or ["*"]

# Signaling
OUTBOUND_QUEUE_SIZE = int(os.getenv("OUTBOUND_QUEUE_SIZE", 256))
CLOSE_FLUSH_TIMEOUT = float(os.getenv("CLOSE_FLUSH_TIMEOUT", 5))
WS_CLOSE_NORMAL = 1000
WS_CLOSE_POLICY_VIOLATION = 1008

# Meeting codes: no 0/O, 1/I
MEETING_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
MEETING_CODE_LENGTH = 6
MEETING_CODE_MAX_ATTEMPTS = 10
