"""Feed 订阅源模型."""

from datetime import datetime

from sqlmodel import Field, SQLModel

from wallabag_rss.models.types import UTCTimestamp


class SyncMode:
    """首次同步策略."""

    NONE = "none"  # 只同步之后的新文章
    ALL = "all"  # 同步所有历史文章
    COUNT = "count"  # 同步最近 N 篇
    DATE_FROM = "date_from"  # 同步指定日期之后的文章

    ALL_MODES = (NONE, ALL, COUNT, DATE_FROM)


class TimeUnit:
    """拉取间隔单位."""

    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"

    MULTIPLIERS = {MINUTES: 1, HOURS: 60, DAYS: 60 * 24}


def to_minutes(value: int, unit: str | None) -> int:
    """按单位换算为分钟；未知单位按分钟处理."""
    if value <= 0:
        return 0
    return value * TimeUnit.MULTIPLIERS.get(unit or TimeUnit.MINUTES, 1)


class Feed(SQLModel, table=True):
    """RSS 订阅源."""

    __tablename__ = "feeds"  # type: ignore[assignment]

    id: int | None = Field(default=None, primary_key=True)
    url: str = Field(unique=True, description="Feed URL")
    name: str = Field(description="显示名称")
    last_fetched: datetime | None = Field(
        default=None, sa_type=UTCTimestamp, description="上次拉取时间"
    )
    poll_interval_minutes: int | None = Field(
        default=1440, description="换算后的拉取间隔（分钟），0 表示使用全局默认值"
    )
    poll_interval: int | None = Field(default=1, description="拉取间隔数值")
    poll_interval_unit: str | None = Field(
        default=TimeUnit.DAYS, description="拉取间隔单位: minutes|hours|days"
    )
    sync_mode: str | None = Field(
        default=SyncMode.NONE, description="首次同步策略: none|all|count|date_from"
    )
    sync_count: int | None = Field(default=None, description="count 模式的篇数")
    sync_date_from: datetime | None = Field(
        default=None, sa_type=UTCTimestamp, description="date_from 模式的起始日期"
    )
    initial_sync_done: bool = Field(default=False, description="首次同步是否完成")

    def get_poll_interval_minutes(self) -> int:
        """根据数值和单位计算分钟数."""
        return to_minutes(self.poll_interval or 0, self.poll_interval_unit)

    def set_poll_interval(self, value: int, unit: str) -> None:
        """设置拉取间隔并同步更新分钟数."""
        self.poll_interval = value
        self.poll_interval_unit = unit
        self.poll_interval_minutes = self.get_poll_interval_minutes()
