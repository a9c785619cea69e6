"""时间工具.

程序内部统一使用带时区的 UTC 时间，入库时由 UTCTimestamp 列类型转换。
"""

import calendar
import time
from datetime import UTC, datetime


def utcnow() -> datetime:
    """当前 UTC 时间."""
    return datetime.now(UTC)


def from_struct_time(value: time.struct_time) -> datetime:
    """feedparser 的 UTC struct_time 转 datetime."""
    return datetime.fromtimestamp(calendar.timegm(value), UTC)
