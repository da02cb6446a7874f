from typing import Optional
from sqlalchemy import BigInteger, Float, Integer
from sqlalchemy.orm import Mapped, mapped_column

from sleepmonitor.database import Base


SLEEP_DATA_TABLE = "sleep_data"


class SleepData(Base):
    __tablename__ = SLEEP_DATA_TABLE
    # AUTOINCREMENT: ids of deleted rows are never handed out again
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Epoch millis. Nullable at the SQL level; NULL is rejected when decoding.
    date: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True, index=True)
    duration: Mapped[float] = mapped_column(Float, nullable=False)  # hours
    quality: Mapped[int] = mapped_column(Integer, nullable=False)  # percentage
    heart_rate: Mapped[int] = mapped_column("heartRate", Integer, nullable=False)
    step_count: Mapped[int] = mapped_column("stepCount", Integer, nullable=False)
    deep_sleep_duration: Mapped[float] = mapped_column("deepSleepDuration", Float, nullable=False)
    light_sleep_duration: Mapped[float] = mapped_column("lightSleepDuration", Float, nullable=False)
    rem_sleep_duration: Mapped[float] = mapped_column("remSleepDuration", Float, nullable=False)

    def __repr__(self) -> str:
        return f"<SleepData(id={self.id}, date={self.date}, duration={self.duration}h)>"
