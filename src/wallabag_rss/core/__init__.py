"""核心业务逻辑."""

from wallabag_rss.core.store import SQLStore, Store
from wallabag_rss.core.wallabag import WallabagClient, WallabagConfig

__all__ = [
    "SQLStore",
    "Store",
    "WallabagClient",
    "WallabagConfig",
]
