"""Article 文章模型."""

from datetime import datetime

from sqlmodel import Field, SQLModel

from wallabag_rss.models.types import UTCTimestamp
from wallabag_rss.utils.timeutil import utcnow


class Article(SQLModel, table=True):
    """已推送到 Wallabag 的文章."""

    __tablename__ = "articles"  # type: ignore[assignment]

    id: int | None = Field(default=None, primary_key=True)
    feed_id: int = Field(
        foreign_key="feeds.id", ondelete="CASCADE", description="关联 Feed"
    )
    title: str = Field(description="标题")
    url: str = Field(unique=True, description="原文链接（去重键）")
    wallabag_entry_id: int | None = Field(default=None, description="Wallabag 条目 ID")
    published_at: datetime | None = Field(
        default=None, sa_type=UTCTimestamp, description="发布时间"
    )
    created_at: datetime = Field(
        default_factory=utcnow, sa_type=UTCTimestamp, description="入库时间"
    )
