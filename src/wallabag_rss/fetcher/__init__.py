"""订阅源拉取模块."""

from wallabag_rss.fetcher.rss import FeedArticle, FeedFetcher, FeedFetchError

__all__ = [
    "FeedArticle",
    "FeedFetchError",
    "FeedFetcher",
]
