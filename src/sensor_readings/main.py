#!/usr/bin/env python
"""
Sensor Readings - Main Entry Point
"""

import uvicorn

from . import config
from .app import create_app
from .database import ReadingStore
from .logging_config import setup_logging
from .redis_subscriber import FeedSubscriber


def build_app():
    """Wire the store, the feed subscriber and the API"""
    setup_logging()
    store = ReadingStore(config.DATABASE_URL)
    store.init_db()
    subscriber = FeedSubscriber(store) if config.FEED_ENABLED else None
    return create_app(store, subscriber)


def main():
    uvicorn.run(
        build_app(),
        host=config.HOST,
        port=config.PORT,
        log_level=config.LOG_LEVEL.lower(),
        access_log=True
    )


if __name__ == "__main__":
    main()
