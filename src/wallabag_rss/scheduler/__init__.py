"""定时任务."""

from wallabag_rss.scheduler.worker import ProcessingStats, Worker

__all__ = [
    "ProcessingStats",
    "Worker",
]
