import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as SchemaError
from pydantic.alias_generators import to_camel


MAX_TIMESTAMP = 2**63 - 1


def now_ms() -> int:
    """Current time as epoch milliseconds"""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class NewReading:
    """A reading ready to be written to the store"""
    device_id: str
    temperature: float
    timestamp: int


# ============== Request / Response Models ==============
class ReadingSubmission(BaseModel):
    """Body of POST /readings"""
    model_config = ConfigDict(populate_by_name=True)

    device_id: str = Field(alias="deviceId", strict=True, min_length=1)
    temperature: float = Field(strict=True, allow_inf_nan=False)
    # BigInteger column range
    timestamp: Optional[int] = Field(default=None, strict=True, ge=0, le=MAX_TIMESTAMP)

    @field_validator("device_id")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("deviceId must not be blank")
        return value

    def to_new_reading(self, received_at: Optional[int] = None) -> NewReading:
        timestamp = self.timestamp
        if timestamp is None:
            timestamp = received_at if received_at is not None else now_ms()
        return NewReading(
            device_id=self.device_id,
            temperature=float(self.temperature),
            timestamp=timestamp,
        )


class StoredReading(BaseModel):
    """A reading as persisted by the store"""
    model_config = ConfigDict(
        from_attributes=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    id: int
    device_id: str
    temperature: float
    timestamp: int
    created_at: datetime


class ReadingCreatedResponse(BaseModel):
    """Response for a successfully ingested reading"""
    message: str
    data: StoredReading


class MessageResponse(BaseModel):
    message: str


class HealthResponse(BaseModel):
    status: str
    database: str
    subscriber: str


# ============== Validation ==============
@dataclass(frozen=True)
class Valid:
    reading: ReadingSubmission


@dataclass(frozen=True)
class Invalid:
    errors: List[Dict[str, Any]]


ValidationResult = Union[Valid, Invalid]


def _field_name(loc: tuple) -> str:
    return ".".join(str(part) for part in loc) or "body"


def validate_submission(payload: Any) -> ValidationResult:
    """Check a raw request body against the reading schema"""
    if not isinstance(payload, dict):
        return Invalid(errors=[{"field": "body", "message": "body must be a JSON object"}])

    try:
        reading = ReadingSubmission.model_validate(payload)
    except SchemaError as e:
        return Invalid(errors=[
            {"field": _field_name(error["loc"]), "message": error["msg"]}
            for error in e.errors()
        ])
    return Valid(reading=reading)
