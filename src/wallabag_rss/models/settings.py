"""Settings 配置存储模型."""

from datetime import datetime

from sqlmodel import Field, SQLModel

from wallabag_rss.models.types import UTCTimestamp
from wallabag_rss.utils.timeutil import utcnow

DEFAULT_POLL_INTERVAL_KEY = "default_poll_interval_minutes"
DEFAULT_POLL_INTERVAL_MINUTES = 1440


class SettingItem(SQLModel, table=True):
    """配置项存储."""

    __tablename__ = "settings"  # type: ignore[assignment]

    key: str = Field(primary_key=True, description="配置键")
    value: str = Field(description="配置值")
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCTimestamp)
