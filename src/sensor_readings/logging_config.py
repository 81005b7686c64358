"""
Logging configuration, with optional shipping to Loki via python-logging-loki
"""
import logging
from multiprocessing import Queue
from typing import Optional

import logging_loki

from . import config

# Handlers installed by setup_logging
_console_handler = None
_loki_handler = None


def setup_logging(level: Optional[str] = None, loki_url: Optional[str] = None) -> logging.Logger:
    """Setup application logging: console always, Loki when a URL is configured"""
    global _console_handler, _loki_handler

    log_level = (level or config.LOG_LEVEL).upper()
    loki_url = loki_url if loki_url is not None else config.LOKI_URL
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    if _console_handler is None:
        _console_handler = logging.StreamHandler()
        console_formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
        _console_handler.setFormatter(console_formatter)
        root_logger.addHandler(_console_handler)

        if loki_url:
            # Records are pushed to Loki from the queue listener thread
            _loki_handler = logging_loki.LokiQueueHandler(
                Queue(-1),
                url=f"{loki_url}/loki/api/v1/push",
                tags={
                    "application": config.SERVICE_NAME,
                    "environment": config.ENVIRONMENT,
                    "version": config.SERVICE_VERSION,
                },
                version="1",
            )
            root_logger.addHandler(_loki_handler)

    for handler in (_console_handler, _loki_handler):
        if handler is not None:
            handler.setLevel(log_level)

    for logger_name in ["sensor_readings", "uvicorn", "uvicorn.access", "fastapi", "redis"]:
        logger = logging.getLogger(logger_name)
        logger.setLevel(log_level)
        logger.propagate = True

    # SQLAlchemy at WARNING level
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)

    logger = logging.getLogger("sensor_readings.startup")
    logger.info(
        "Logging system initialized (loki=%s)",
        "on" if _loki_handler is not None else "off",
        extra={"tags": {
            "component": "logging",
            "operation": "initialization",
        }}
    )
    return logger


def get_logger(name: str, component: Optional[str] = None) -> logging.Logger:
    """Get a logger with optional component context"""
    logger = logging.getLogger(name)

    if component:
        class ComponentAdapter(logging.LoggerAdapter):
            def process(self, msg, kwargs):
                kwargs.setdefault('extra', {})
                kwargs['extra'].setdefault('tags', {})
                kwargs['extra']['tags']['component'] = component
                return msg, kwargs

        return ComponentAdapter(logger, {})

    return logger


def log_performance(func):
    """Decorator to log function duration"""
    import time
    from functools import wraps

    @wraps(func)
    def wrapper(*args, **kwargs):
        logger = get_logger(func.__module__, func.__qualname__)
        start_time = time.time()
        try:
            result = func(*args, **kwargs)
            duration = (time.time() - start_time) * 1000
            logger.debug(
                f"Function {func.__name__} completed successfully",
                extra={"tags": {
                    "operation": func.__name__,
                    "duration_ms": str(round(duration, 2)),
                    "success": "true"
                }}
            )
            return result
        except Exception as e:
            duration = (time.time() - start_time) * 1000
            logger.error(
                f"Function {func.__name__} failed: {str(e)}",
                extra={"tags": {
                    "operation": func.__name__,
                    "duration_ms": str(round(duration, 2)),
                    "success": "false",
                    "error_type": type(e).__name__
                }}
            )
            raise

    return wrapper


def log_temperature_reading(device_id: str, temperature: float, source: str):
    """Log an ingested reading with structured data"""
    logger = get_logger("sensor_readings.readings", "ingest")
    logger.info(
        f"Reading stored for {device_id}: {temperature}",
        extra={"tags": {
            "operation": "temperature_reading",
            "device_id": device_id,
            "temperature": str(temperature),
            "source": source,
        }}
    )


def log_feed_message(topic: str, success: bool = True, reason: Optional[str] = None):
    """Log feed message processing"""
    logger = get_logger("sensor_readings.feed", "feed")

    if success:
        logger.debug(
            f"Feed message processed from topic {topic}",
            extra={"tags": {
                "operation": "feed_message",
                "feed_topic": topic,
                "success": "true",
            }}
        )
    else:
        logger.warning(
            f"Discarded feed message from topic {topic}: {reason}",
            extra={"tags": {
                "operation": "feed_message",
                "feed_topic": topic,
                "success": "false",
            }}
        )


def log_database_operation(operation: str, success: bool = True, error: str = None):
    """Log database operations"""
    logger = get_logger("sensor_readings.database", "database")

    tags = {
        "operation": "database",
        "db_operation": operation,
        "success": str(success).lower()
    }

    if success:
        logger.info(f"Database {operation} completed successfully", extra={"tags": tags})
    else:
        tags["error_type"] = "DatabaseError"
        logger.error(f"Database {operation} failed: {error}", extra={"tags": tags})


def log_api_request(method: str, path: str, status_code: int, duration_ms: float, user_agent: str = None):
    """Log API requests"""
    logger = get_logger("sensor_readings.api", "api")

    tags = {
        "operation": "api_request",
        "http_method": method,
        "http_path": path,
        "http_status": str(status_code),
        "duration_ms": str(round(duration_ms, 2)),
        "success": str(200 <= status_code < 400).lower()
    }
    if user_agent:
        tags["user_agent"] = user_agent

    logger.info(f"{method} {path} - {status_code}", extra={"tags": tags})
