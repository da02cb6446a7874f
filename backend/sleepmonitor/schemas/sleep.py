from pydantic import BaseModel, Field, field_validator
from typing import List, Literal, Optional
from datetime import datetime

from sleepmonitor.utils.converters import to_utc, truncate_to_millis


# Integer columns are 64-bit SQLite INTEGERs
INT64_MIN = -2**63
INT64_MAX = 2**63 - 1


class SleepRecord(BaseModel):
    """
    One sleep session as seen by the store.

    Immutable: an update is a delete followed by an insert, or an insert
    that replaces the row with the same id. ``id == 0`` asks the store to
    assign the next identifier.
    """
    id: int = Field(default=0, ge=0, le=INT64_MAX)
    date: datetime
    duration: float  # hours
    quality: int = Field(..., ge=INT64_MIN, le=INT64_MAX)  # percentage
    heart_rate: int = Field(..., ge=INT64_MIN, le=INT64_MAX)
    step_count: int = Field(..., ge=INT64_MIN, le=INT64_MAX)
    deep_sleep_duration: float
    light_sleep_duration: float
    rem_sleep_duration: float

    @field_validator('date')
    @classmethod
    def normalize_date(cls, v: datetime) -> datetime:
        # Stored as epoch millis, so anything finer would not survive a round trip
        return truncate_to_millis(to_utc(v))

    class Config:
        frozen = True
        from_attributes = True


class SleepRecordCreate(BaseModel):
    id: Optional[int] = Field(default=None, ge=0, le=INT64_MAX, description="Existing id to replace, omit to auto-assign")
    date: datetime
    duration: float = Field(..., ge=0)
    quality: int = Field(..., ge=0, le=100)
    heart_rate: int = Field(..., ge=0, le=INT64_MAX)
    step_count: int = Field(..., ge=0, le=INT64_MAX)
    deep_sleep_duration: float = Field(default=0.0, ge=0)
    light_sleep_duration: float = Field(default=0.0, ge=0)
    rem_sleep_duration: float = Field(default=0.0, ge=0)

    def to_record(self) -> SleepRecord:
        return SleepRecord(**self.model_dump(exclude={"id"}), id=self.id or 0)


class SleepRecordResponse(BaseModel):
    id: int
    date: datetime
    duration: float
    quality: int
    heart_rate: int
    step_count: int
    deep_sleep_duration: float
    light_sleep_duration: float
    rem_sleep_duration: float

    class Config:
        from_attributes = True


class DeleteAllResponse(BaseModel):
    deleted: int


class SleepSnapshotMessage(BaseModel):
    type: Literal["snapshot"] = "snapshot"
    records: List[SleepRecordResponse]
