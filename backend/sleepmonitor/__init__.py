# SleepMonitor storage backend
