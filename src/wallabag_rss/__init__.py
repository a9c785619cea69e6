"""wallabag-rss: 定时拉取 RSS/Atom 订阅并推送到 Wallabag."""

__version__ = "0.1.0"
