import uvicorn
import os
from constants import HOST, LOG_FILE, LOG_LEVEL, PORT, TLS_CERT_PATH, TLS_KEY_PATH
from logging_config import setup_logging

# Setup logging before importing app
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)

from logging_config import get_logger

logger = get_logger(__name__)


def tls_options(key_path: str = TLS_KEY_PATH, cert_path: str = TLS_CERT_PATH) -> dict:
    """uvicorn SSL options, or an empty dict when the key/cert pair is not on disk."""
    if not os.path.isfile(key_path) or not os.path.isfile(cert_path):
        return {}
    return {"ssl_keyfile": key_path, "ssl_certfile": cert_path}


def main():
    ssl_options = tls_options()
    scheme = "https" if ssl_options else "http"
    logger.info(f"Starting signaling relay on {scheme}://{HOST}:{PORT}")
    if not ssl_options:
        logger.warning(
            "TLS credentials not found; running without HTTPS. "
            "Secure contexts are required for WebRTC in most browsers."
        )
    uvicorn.run("app:app", host=HOST, port=PORT, log_level=LOG_LEVEL.lower(), **ssl_options)


if __name__ == "__main__":
    main()
