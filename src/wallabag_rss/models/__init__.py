"""数据模型."""

from wallabag_rss.models.article import Article
from wallabag_rss.models.database import init_db
from wallabag_rss.models.feed import Feed, SyncMode, TimeUnit
from wallabag_rss.models.settings import SettingItem

__all__ = [
    "Article",
    "Feed",
    "SettingItem",
    "SyncMode",
    "TimeUnit",
    "init_db",
]
