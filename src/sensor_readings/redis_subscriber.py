import math
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, Optional
import logging

import redis

from . import config
from .errors import MalformedFeedMessage, PersistenceError
from .logging_config import log_feed_message, log_temperature_reading
from .models import NewReading, now_ms

logger = logging.getLogger(__name__)

# iot/sensor/<deviceId>/temperature
TOPIC_SEGMENTS = 4
DEVICE_SEGMENT = 2


@dataclass(frozen=True)
class FeedReading:
    device_id: str
    temperature: float


def _as_text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def parse_feed_message(topic: Any, payload: Any) -> FeedReading:
    """Turn a topic and plain-text body into a reading, or raise MalformedFeedMessage"""
    topic = _as_text(topic)
    parts = topic.split("/")
    if len(parts) != TOPIC_SEGMENTS:
        raise MalformedFeedMessage(topic, payload, f"expected {TOPIC_SEGMENTS} topic segments, got {len(parts)}")

    device_id = parts[DEVICE_SEGMENT]
    if not device_id.strip():
        raise MalformedFeedMessage(topic, payload, "empty device id")

    body = _as_text(payload).strip()
    try:
        temperature = float(body)
    except ValueError:
        raise MalformedFeedMessage(topic, payload, "temperature is not a number") from None
    if not math.isfinite(temperature):
        raise MalformedFeedMessage(topic, payload, "temperature is not finite")

    return FeedReading(device_id=device_id, temperature=temperature)


class FeedSubscriber:
    """Subscribes to the reading feed on Redis and writes each message to the store"""

    def __init__(
        self,
        store,
        host: str = None,
        port: int = None,
        db: int = None,
        password: str = None,
        pattern: str = None,
        workers: int = None,
        reconnect_delay: float = None,
        max_pending: int = None,
        client: Optional[redis.Redis] = None,
    ):
        self.store = store
        self.host = host or config.REDIS_HOST
        self.port = port or config.REDIS_PORT
        self.db = db if db is not None else config.REDIS_DB
        self.password = password or config.REDIS_PASSWORD
        self.pattern = pattern or config.FEED_TOPIC_PATTERN
        self.workers = workers or config.FEED_WORKERS
        self.reconnect_delay = reconnect_delay if reconnect_delay is not None else config.FEED_RECONNECT_DELAY
        self.max_pending = max_pending or config.FEED_QUEUE_SIZE
        self.redis_client = client
        self.pubsub = None
        self.connected = False
        self.thread = None
        self.executor: Optional[ThreadPoolExecutor] = None
        self._stop_event = threading.Event()
        # caps messages queued or in flight in the worker pool
        self._slots = threading.BoundedSemaphore(self.max_pending)
        self._stats_lock = threading.Lock()
        self._stats = {"received": 0, "stored": 0, "discarded": 0, "failed": 0}

    @property
    def running(self) -> bool:
        return self.thread is not None and not self._stop_event.is_set()

    def stats(self) -> Dict[str, int]:
        with self._stats_lock:
            return dict(self._stats)

    def _count(self, key: str):
        with self._stats_lock:
            self._stats[key] += 1

    def connect(self) -> bool:
        """Establish connection to Redis"""
        try:
            if self.redis_client is None:
                self.redis_client = redis.Redis(
                    host=self.host,
                    port=self.port,
                    db=self.db,
                    password=self.password,
                    decode_responses=False,
                )
            self.redis_client.ping()
            logger.info(f"Connected to Redis at {self.host}:{self.port}")
            return True
        except redis.RedisError as e:
            logger.error(f"Failed to connect to Redis: {e}")
            return False

    def start(self):
        """Start listening to the feed in a background thread"""
        if self.running:
            logger.warning("Subscriber already running")
            return

        self._stop_event.clear()
        self.executor = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="feed-worker")
        self.thread = threading.Thread(target=self._run, name="feed-subscriber", daemon=True)
        self.thread.start()

    def _run(self):
        """Listen until stopped, resubscribing after a fixed delay when the listener fails"""
        while not self._stop_event.is_set():
            if self.connect():
                self._listen_loop()
            if self._stop_event.wait(self.reconnect_delay):
                break
            logger.info(f"Reconnecting to Redis in background (pattern {self.pattern})")

    def _listen_loop(self):
        """Consume messages from one subscription until it fails or we stop"""
        try:
            self.pubsub = self.redis_client.pubsub(ignore_subscribe_messages=True)
            self.pubsub.psubscribe(self.pattern)
            self.connected = True
            logger.info(f"Subscribed to pattern: {self.pattern}")

            while not self._stop_event.is_set():
                message = self.pubsub.get_message(timeout=1.0)
                if message is None:
                    continue
                if message["type"] not in ("message", "pmessage"):
                    continue
                self.dispatch(message)
        except redis.RedisError as e:
            logger.error(f"Feed connection error: {e}")
        except Exception:
            logger.exception("Feed listener error, resubscribing")
        finally:
            self.connected = False
            self._close_pubsub()

    def dispatch(self, message: Dict[str, Any]):
        """Hand a message to the worker pool, waiting while it is full; handled inline when the pool is not running"""
        if self.executor is None:
            self.handle_message(message["channel"], message["data"])
            return
        self._slots.acquire()
        try:
            future = self.executor.submit(self.handle_message, message["channel"], message["data"])
        except RuntimeError:
            # pool already shut down
            self._slots.release()
            logger.warning(f"Dropping message on {_as_text(message['channel'])}: subscriber stopping")
            return
        future.add_done_callback(lambda _future: self._slots.release())

    def handle_message(self, topic: Any, payload: Any) -> bool:
        """Parse and store one feed message; never raises"""
        self._count("received")
        received_at = now_ms()
        try:
            parsed = parse_feed_message(topic, payload)
        except MalformedFeedMessage as e:
            self._count("discarded")
            log_feed_message(e.topic, success=False, reason=e.reason)
            return False

        try:
            self.store.insert(NewReading(
                device_id=parsed.device_id,
                temperature=parsed.temperature,
                timestamp=received_at,
            ))
        except PersistenceError as e:
            self._count("failed")
            logger.error(f"Dropping feed reading for {parsed.device_id}: {e}")
            return False
        except Exception:
            self._count("failed")
            logger.exception(f"Unexpected error storing feed reading for {parsed.device_id}")
            return False

        self._count("stored")
        log_feed_message(_as_text(topic))
        log_temperature_reading(parsed.device_id, parsed.temperature, source="feed")
        return True

    def _close_pubsub(self):
        if self.pubsub is None:
            return
        try:
            self.pubsub.punsubscribe(self.pattern)
            self.pubsub.close()
        except Exception as e:
            logger.debug(f"Error closing pubsub: {e}")
        self.pubsub = None

    def stop(self):
        """Stop listening, drain in-flight messages and close the connection"""
        self._stop_event.set()
        if self.thread:
            self.thread.join(timeout=5)
            self.thread = None
        if self.executor:
            self.executor.shutdown(wait=True)
            self.executor = None
        if self.redis_client:
            self.redis_client.close()
        logger.info(f"Disconnected from Redis ({self.stats()})")
