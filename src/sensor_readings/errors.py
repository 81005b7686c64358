"""
Error taxonomy shared by the API and the feed subscriber
"""
from typing import Any, Dict, List, Optional


class ReadingError(Exception):
    """Base class for reading ingestion errors"""


class ValidationError(ReadingError):
    """Submitted payload failed the reading schema"""

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or []


class NotFound(ReadingError):
    """Query matched no stored reading"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class PersistenceError(ReadingError):
    """The reading store could not complete an operation"""

    def __init__(self, operation: str, detail: str):
        super().__init__(f"{operation} failed: {detail}")
        self.operation = operation
        self.detail = detail


class MalformedFeedMessage(ReadingError):
    """Inbound feed message could not be turned into a reading"""

    def __init__(self, topic: str, payload: Any, reason: str):
        super().__init__(f"{reason} (topic={topic!r}, payload={payload!r})")
        self.topic = topic
        self.payload = payload
        self.reason = reason
