# SleepMonitor Database Models
from sleepmonitor.models.sleep_data import SleepData, SLEEP_DATA_TABLE

__all__ = [
    "SleepData",
    "SLEEP_DATA_TABLE",
]
