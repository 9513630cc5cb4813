import os

BASE_DIR = os.path.dirname(os.path.abspath(__file__))

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 3434))

# Both files must exist for the server to listen over HTTPS
TLS_KEY_PATH = os.getenv("TLS_KEY_PATH", os.path.join(BASE_DIR, "key.pem"))
TLS_CERT_PATH = os.getenv("TLS_CERT_PATH", os.path.join(BASE_DIR, "cert.pem"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# Seconds between ": ping" comment frames on an open event stream
KEEPALIVE_INTERVAL = float(os.getenv("KEEPALIVE_INTERVAL", 20))
# Frames a stream may have pending before its consumer is considered dead
STREAM_QUEUE_SIZE = int(os.getenv("STREAM_QUEUE_SIZE", 256))

MAX_NAME_LENGTH = 64

# Client-side retry policy for 409 Recipient unavailable
SIGNAL_RETRY_LIMIT = 5
SIGNAL_RETRY_DELAY = 0.25
