"""
Sleep Record Store

Durable CRUD access to the sleep_data table plus live queries over it.
Every write runs in its own transaction and notifies live queries only
after it has committed; every read decodes rows strictly.
"""
import logging
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from pydantic import ValidationError
from sqlalchemy import delete, insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from sleepmonitor.config import settings
from sleepmonitor.database import transaction
from sleepmonitor.exceptions import DataIntegrityError, StorageIOError
from sleepmonitor.models.sleep_data import SleepData, SLEEP_DATA_TABLE
from sleepmonitor.schemas.sleep import SleepRecord
from sleepmonitor.services.live_query import InvalidationTracker, LiveQuery
from sleepmonitor.utils.converters import date_to_timestamp, from_timestamp


logger = logging.getLogger(__name__)

Snapshot = Tuple[SleepRecord, ...]


def decode_row(row: SleepData) -> SleepRecord:
    """
    Map one stored row to a SleepRecord.

    The date must be present and convertible; anything else is corruption
    and raises DataIntegrityError instead of falling back to a default.
    """
    if row.date is None:
        raise DataIntegrityError(
            "Expected non-null date but was null",
            operation=f"decode sleep_data id={row.id}",
        )
    try:
        date = from_timestamp(row.date)
    except (TypeError, ValueError, OverflowError, OSError) as e:
        raise DataIntegrityError(
            f"Stored date {row.date!r} is not a valid timestamp: {e}",
            operation=f"decode sleep_data id={row.id}",
        ) from e

    try:
        return SleepRecord(
            id=row.id,
            date=date,
            duration=row.duration,
            quality=row.quality,
            heart_rate=row.heart_rate,
            step_count=row.step_count,
            deep_sleep_duration=row.deep_sleep_duration,
            light_sleep_duration=row.light_sleep_duration,
            rem_sleep_duration=row.rem_sleep_duration,
        )
    except ValidationError as e:
        raise DataIntegrityError(
            f"Stored row is not a valid sleep record: {e}",
            operation=f"decode sleep_data id={row.id}",
        ) from e


def encode_record(record: SleepRecord) -> dict:
    """Column values for an INSERT; id is left out when it should be assigned."""
    values = {
        "date": date_to_timestamp(record.date),
        "duration": record.duration,
        "quality": record.quality,
        "heartRate": record.heart_rate,
        "stepCount": record.step_count,
        "deepSleepDuration": record.deep_sleep_duration,
        "lightSleepDuration": record.light_sleep_duration,
        "remSleepDuration": record.rem_sleep_duration,
    }
    if record.id:
        values["id"] = record.id
    return values


class SleepRecordStore:
    """Persistence for SleepRecord values over the single sleep_data table."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        tracker: Optional[InvalidationTracker] = None,
        debounce_seconds: Optional[float] = None,
    ):
        self.session_factory = session_factory
        self.tracker = tracker or InvalidationTracker()
        if debounce_seconds is None:
            debounce_seconds = settings.LIVE_QUERY_DEBOUNCE_SECONDS
        self.debounce_seconds = debounce_seconds

    # ==================== Writes ====================

    async def insert(self, record: SleepRecord) -> SleepRecord:
        """
        Insert or replace a record keyed on its id.

        A record with id 0 gets the next identifier; a record whose id
        already exists replaces the stored row entirely.

        Returns:
            The stored record, carrying its assigned id.
        """
        stmt = insert(SleepData.__table__).prefix_with("OR REPLACE").values(**encode_record(record))
        async with transaction(self.session_factory, "sleep_data.insert") as session:
            result = await session.execute(stmt)
            new_id = record.id or result.inserted_primary_key[0]

        logger.debug(f"Stored sleep record {new_id} ({record.date.isoformat()})")
        self.tracker.notify(SLEEP_DATA_TABLE)
        return record if record.id == new_id else record.model_copy(update={"id": new_id})

    async def delete(self, record: SleepRecord) -> bool:
        """
        Delete the row with the record's id.

        Returns:
            True if a row was removed, False if there was nothing to delete.
        """
        return await self.delete_by_id(record.id)

    async def delete_by_id(self, record_id: int) -> bool:
        stmt = (
            delete(SleepData)
            .where(SleepData.id == record_id)
            .execution_options(synchronize_session=False)
        )
        async with transaction(self.session_factory, "sleep_data.delete") as session:
            result = await session.execute(stmt)
            removed = result.rowcount

        if removed:
            logger.debug(f"Deleted sleep record {record_id}")
            self.tracker.notify(SLEEP_DATA_TABLE)
        return removed > 0

    async def delete_all(self) -> int:
        """Delete every row; returns how many were removed."""
        async with transaction(self.session_factory, "sleep_data.delete_all") as session:
            result = await session.execute(
                delete(SleepData).execution_options(synchronize_session=False)
            )
            removed = result.rowcount

        logger.debug(f"Deleted {removed} sleep records")
        if removed:
            self.tracker.notify(SLEEP_DATA_TABLE)
        return removed

    # ==================== Reads ====================

    async def _fetch(self, stmt, operation: str) -> List[SleepData]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"{operation} failed: {e}")
            raise StorageIOError(str(e), operation=operation) from e

    def _decode(self, rows: Sequence[SleepData]) -> Snapshot:
        try:
            return tuple(decode_row(row) for row in rows)
        except DataIntegrityError as e:
            logger.error(f"Corrupt row in {SLEEP_DATA_TABLE}: {e}")
            raise

    async def fetch_all(self) -> Snapshot:
        """One-shot read of every record, newest first."""
        stmt = select(SleepData).order_by(SleepData.date.desc())
        return self._decode(await self._fetch(stmt, "sleep_data.get_all"))

    async def fetch_from_date(self, start_date: datetime) -> Snapshot:
        """One-shot read of records dated at or after start_date, newest first."""
        stmt = (
            select(SleepData)
            .where(SleepData.date >= date_to_timestamp(start_date))
            .order_by(SleepData.date.desc())
        )
        return self._decode(await self._fetch(stmt, "sleep_data.get_from_date"))

    async def get_latest_sleep_data(self) -> Optional[SleepRecord]:
        """
        The record with the greatest date, or None for an empty table.

        Cancelling the awaiting task abandons the query and releases its
        connection; nothing is returned.
        """
        stmt = select(SleepData).order_by(SleepData.date.desc()).limit(1)
        rows = await self._fetch(stmt, "sleep_data.get_latest")
        if not rows:
            return None
        return self._decode(rows)[0]

    def get_all_sleep_data(self) -> LiveQuery[Snapshot]:
        """Live query over every record, newest first."""
        return LiveQuery(
            self.tracker,
            SLEEP_DATA_TABLE,
            self.fetch_all,
            debounce_seconds=self.debounce_seconds,
            name="sleep_data.all",
        )

    def get_sleep_data_from_date(self, start_date: datetime) -> LiveQuery[Snapshot]:
        """Live query over records dated at or after start_date, newest first."""
        return LiveQuery(
            self.tracker,
            SLEEP_DATA_TABLE,
            lambda: self.fetch_from_date(start_date),
            debounce_seconds=self.debounce_seconds,
            name=f"sleep_data.from_{start_date.isoformat()}",
        )
