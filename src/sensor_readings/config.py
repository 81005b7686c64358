"""
Environment configuration constants
"""
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# Reading store
DATABASE_URL = os.getenv("DATABASE_URL") or "sqlite:///./sensor_readings.db"

# Feed broker
REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_DB = int(os.getenv("REDIS_DB", 0))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD") or None

FEED_ENABLED = _env_bool("FEED_ENABLED", True)
FEED_TOPIC_PATTERN = os.getenv("FEED_TOPIC_PATTERN") or "iot/sensor/*/temperature"
FEED_WORKERS = max(1, int(os.getenv("FEED_WORKERS", 4)))
FEED_RECONNECT_DELAY = float(os.getenv("FEED_RECONNECT_DELAY", 5))
FEED_QUEUE_SIZE = max(1, int(os.getenv("FEED_QUEUE_SIZE", 100)))

# HTTP listener
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 3000))

# Logging / Loki
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOKI_URL = os.getenv("LOKI_URL") or None
SERVICE_NAME = os.getenv("SERVICE_NAME", "sensor-readings")
SERVICE_VERSION = os.getenv("SERVICE_VERSION", "0.1.0")
ENVIRONMENT = os.getenv("ENVIRONMENT", "production")
