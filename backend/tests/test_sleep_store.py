import asyncio

import pytest
from pydantic import ValidationError
from sqlalchemy import text

from sleepmonitor.exceptions import DataIntegrityError, StorageIOError
from sleepmonitor.schemas.sleep import INT64_MAX
from sleepmonitor.services.sleep_store import SleepRecordStore

from conftest import utc


async def insert_raw_row(database, date_sql: str) -> None:
    async with database.engine.begin() as conn:
        await conn.execute(text(
            "INSERT INTO sleep_data (date, duration, quality, heartRate, stepCount, "
            "deepSleepDuration, lightSleepDuration, remSleepDuration) "
            f"VALUES ({date_sql}, 6.0, 70, 60, 5, 1.0, 4.0, 1.0)"
        ))


class TestInsert:
    async def test_insert_assigns_id_and_is_readable(self, store, make_record):
        record = make_record()

        stored = await store.insert(record)

        assert stored.id > 0
        assert stored == record.model_copy(update={"id": stored.id})
        assert await store.fetch_all() == (stored,)

    async def test_auto_assigned_ids_are_distinct(self, store, make_record):
        first = await store.insert(make_record(utc(2024, 1, 1)))
        second = await store.insert(make_record(utc(2024, 1, 2)))

        assert first.id != second.id

    async def test_deleted_ids_are_never_reassigned(self, store, make_record):
        a = await store.insert(make_record(utc(2024, 1, 1)))
        b = await store.insert(make_record(utc(2024, 1, 2)))
        await store.delete(b)

        c = await store.insert(make_record(utc(2024, 1, 3)))
        assert c.id not in (a.id, b.id)

        await store.delete_all()
        d = await store.insert(make_record(utc(2024, 1, 4)))
        assert d.id > c.id

    async def test_ids_and_counters_are_bounded_to_int64(self, store, make_record):
        with pytest.raises(ValidationError):
            make_record(id=2**63)
        with pytest.raises(ValidationError):
            make_record(heart_rate=2**63)
        with pytest.raises(ValidationError):
            make_record(step_count=-2**63 - 1)

        stored = await store.insert(make_record(id=INT64_MAX, step_count=INT64_MAX))
        assert await store.fetch_all() == (stored,)

    async def test_duplicate_id_replaces_whole_record(self, store, make_record):
        original = await store.insert(make_record(quality=90, step_count=400))
        replacement = make_record(
            utc(2024, 2, 1), id=original.id, quality=40, step_count=0,
            duration=5.0, deep_sleep_duration=0.5,
        )

        stored = await store.insert(replacement)

        assert stored == replacement
        assert await store.fetch_all() == (replacement,)

    async def test_explicit_new_id_is_kept(self, store, make_record):
        stored = await store.insert(make_record(id=42))

        assert stored.id == 42
        assert (await store.get_latest_sleep_data()).id == 42

    async def test_failed_insert_is_rolled_back(self, database, store, make_record):
        async with database.engine.begin() as conn:
            await conn.execute(text(
                "CREATE TRIGGER reject_negative_quality BEFORE INSERT ON sleep_data "
                "WHEN NEW.quality < 0 BEGIN SELECT RAISE(ABORT, 'negative quality'); END"
            ))
        kept = await store.insert(make_record(utc(2024, 1, 1)))

        with pytest.raises(StorageIOError) as exc_info:
            await store.insert(make_record(utc(2024, 1, 2), quality=-1))

        assert exc_info.value.operation == "sleep_data.insert"
        assert await store.fetch_all() == (kept,)

    async def test_insert_into_missing_table_raises_storage_error(self, database, store, make_record):
        async with database.engine.begin() as conn:
            await conn.execute(text("DROP TABLE sleep_data"))

        with pytest.raises(StorageIOError):
            await store.insert(make_record())


class TestDelete:
    async def test_delete_removes_record(self, store, make_record):
        a = await store.insert(make_record(utc(2024, 1, 1)))
        b = await store.insert(make_record(utc(2024, 1, 2)))

        assert await store.delete(a) is True
        assert await store.fetch_all() == (b,)

    async def test_delete_missing_record_is_noop(self, store, make_record):
        kept = await store.insert(make_record())

        assert await store.delete(make_record(id=9999)) is False
        assert await store.fetch_all() == (kept,)

    async def test_delete_all_empties_table(self, store, make_record):
        for day in (1, 2, 3):
            await store.insert(make_record(utc(2024, 1, day)))

        assert await store.delete_all() == 3
        assert await store.fetch_all() == ()

    async def test_delete_all_on_empty_table_succeeds(self, store):
        assert await store.delete_all() == 0
        assert await store.delete_all() == 0


class TestReads:
    async def test_all_records_sorted_newest_first(self, store, make_record):
        days = [5, 1, 4, 2, 3]
        for day in days:
            await store.insert(make_record(utc(2024, 3, day)))

        records = await store.fetch_all()

        assert [r.date.day for r in records] == [5, 4, 3, 2, 1]

    async def test_example_scenario(self, store, make_record):
        a = await store.insert(make_record(utc(2024, 1, 1)))
        b = await store.insert(make_record(utc(2024, 1, 3)))
        c = await store.insert(make_record(utc(2024, 1, 2)))

        assert await store.fetch_all() == (b, c, a)
        assert await store.get_latest_sleep_data() == b
        assert await store.fetch_from_date(utc(2024, 1, 2)) == (b, c)

    async def test_from_date_is_inclusive_and_filters(self, store, make_record):
        for day in (1, 2, 3, 4):
            await store.insert(make_record(utc(2024, 1, day)))

        records = await store.fetch_from_date(utc(2024, 1, 3))

        assert [r.date for r in records] == [utc(2024, 1, 4), utc(2024, 1, 3)]
        assert await store.fetch_from_date(utc(2024, 2, 1)) == ()

    async def test_latest_on_empty_table_is_none(self, store):
        assert await store.get_latest_sleep_data() is None

    async def test_latest_returns_greatest_date(self, store, make_record):
        t3 = await store.insert(make_record(utc(2024, 1, 3)))
        await store.insert(make_record(utc(2024, 1, 1)))
        await store.insert(make_record(utc(2024, 1, 2)))

        assert await store.get_latest_sleep_data() == t3

    async def test_dates_come_back_as_utc(self, store, make_record):
        await store.insert(make_record(utc(2024, 1, 1, 23)))

        latest = await store.get_latest_sleep_data()

        assert latest.date == utc(2024, 1, 1, 23)
        assert latest.date.utcoffset().total_seconds() == 0

    async def test_cancelled_latest_read_delivers_nothing(self, database, store, make_record):
        await store.insert(make_record(utc(2024, 1, 1)))
        await store.get_latest_sleep_data()

        task = asyncio.create_task(store.get_latest_sleep_data())
        await asyncio.sleep(0)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert task.cancelled()

        # Cancel while the query is in flight; the read may also win the race
        for _ in range(5):
            task = asyncio.create_task(store.get_latest_sleep_data())
            await asyncio.sleep(0.001)
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        assert database.engine.pool.checkedout() == 0

        # The store stays fully usable afterwards
        newer = await store.insert(make_record(utc(2024, 1, 2)))
        assert await store.get_latest_sleep_data() == newer
        assert await store.delete_all() == 2


class TestStrictDecode:
    async def test_null_date_fails_the_read(self, database, store, make_record):
        await store.insert(make_record())
        await insert_raw_row(database, "NULL")

        with pytest.raises(DataIntegrityError, match="Expected non-null date but was null"):
            await store.fetch_all()

    async def test_unconvertible_date_fails_the_read(self, database, store):
        await insert_raw_row(database, "'last tuesday'")

        with pytest.raises(DataIntegrityError):
            await store.get_latest_sleep_data()

    async def test_non_numeric_column_fails_the_read(self, database, store):
        async with database.engine.begin() as conn:
            await conn.execute(text(
                "INSERT INTO sleep_data (date, duration, quality, heartRate, stepCount, "
                "deepSleepDuration, lightSleepDuration, remSleepDuration) "
                "VALUES (1704067200000, 'not a number', 70, 60, 5, 1.0, 4.0, 1.0)"
            ))

        with pytest.raises(DataIntegrityError, match="not a valid sleep record") as exc_info:
            await store.fetch_all()
        assert isinstance(exc_info.value.__cause__, ValidationError)

    async def test_corrupt_row_outside_filter_is_not_read(self, database, store, make_record):
        await insert_raw_row(database, "NULL")
        good = await store.insert(make_record(utc(2024, 1, 5)))

        # NULL never satisfies date >= start, so the filtered read is clean
        assert await store.fetch_from_date(utc(2024, 1, 1)) == (good,)


async def test_store_builds_its_own_tracker(database):
    store = SleepRecordStore(database.session_factory)

    assert store.tracker is not database.invalidation_tracker
    assert store.debounce_seconds == 0.0
