"""
Health Data Service

Application-facing facade over the sleep record store, used by the
view/HTTP layer. It adds logging around each call and nothing else:
failures are logged and re-raised, never replaced by defaults.
"""
import logging
from datetime import datetime
from typing import Optional

from sleepmonitor.exceptions import SleepStoreError
from sleepmonitor.schemas.sleep import SleepRecord
from sleepmonitor.services.live_query import LiveQuery
from sleepmonitor.services.sleep_store import SleepRecordStore, Snapshot


logger = logging.getLogger(__name__)


class HealthDataService:
    """Service for saving and reading the user's sleep history"""

    def __init__(self, store: SleepRecordStore):
        self.store = store

    async def save_sleep_data(self, record: SleepRecord) -> SleepRecord:
        try:
            saved = await self.store.insert(record)
        except SleepStoreError as e:
            logger.error(f"Error saving sleep data: {e}")
            raise
        logger.info(f"Saved sleep data {saved.id} for {saved.date.date()}")
        return saved

    def get_sleep_history(self) -> LiveQuery[Snapshot]:
        return self.store.get_all_sleep_data()

    def get_sleep_history_since(self, start_date: datetime) -> LiveQuery[Snapshot]:
        return self.store.get_sleep_data_from_date(start_date)

    async def get_latest_sleep_data(self) -> Optional[SleepRecord]:
        try:
            return await self.store.get_latest_sleep_data()
        except SleepStoreError as e:
            logger.error(f"Error getting latest sleep data: {e}")
            raise

    async def delete_sleep_data(self, record: SleepRecord) -> bool:
        try:
            removed = await self.store.delete(record)
        except SleepStoreError as e:
            logger.error(f"Error deleting sleep data: {e}")
            raise
        if not removed:
            logger.info(f"Sleep data {record.id} was already gone")
        return removed

    async def clear_sleep_data(self) -> int:
        try:
            removed = await self.store.delete_all()
        except SleepStoreError as e:
            logger.error(f"Error clearing sleep data: {e}")
            raise
        logger.info(f"Cleared {removed} sleep records")
        return removed

    async def list_sleep_data(self, start_date: Optional[datetime] = None) -> Snapshot:
        """Current history as a one-off snapshot, optionally from start_date on."""
        try:
            if start_date is None:
                return await self.store.fetch_all()
            return await self.store.fetch_from_date(start_date)
        except SleepStoreError as e:
            logger.error(f"Error listing sleep data: {e}")
            raise

    async def delete_sleep_data_by_id(self, record_id: int) -> bool:
        try:
            return await self.store.delete_by_id(record_id)
        except SleepStoreError as e:
            logger.error(f"Error deleting sleep data {record_id}: {e}")
            raise
