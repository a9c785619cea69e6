"""数据库初始化和会话管理."""

import logging
import os
from typing import Any

from sqlalchemy import event, text
from sqlalchemy.engine.url import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel

# 注册表结构
from wallabag_rss.models.article import Article  # noqa: F401
from wallabag_rss.models.feed import Feed  # noqa: F401
from wallabag_rss.models.settings import (
    DEFAULT_POLL_INTERVAL_KEY,
    DEFAULT_POLL_INTERVAL_MINUTES,
    SettingItem,  # noqa: F401
)

logger = logging.getLogger(__name__)

# 旧版数据库可能缺少的 feeds 列
_FEED_COLUMNS = {
    "poll_interval": "INTEGER DEFAULT 1",
    "poll_interval_unit": "TEXT DEFAULT 'days'",
    "sync_mode": "TEXT DEFAULT 'none'",
    "sync_count": "INTEGER",
    "sync_date_from": "DATETIME",
    "initial_sync_done": "BOOLEAN DEFAULT 0",
}


def _enable_foreign_keys(dbapi_connection: Any, _connection_record: Any) -> None:
    """SQLite 默认关闭外键约束，每个连接都需要打开."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _ensure_database_dir(database_url: str) -> None:
    """确保 SQLite 文件所在目录存在."""
    database = make_url(database_url).database
    if not database or database == ":memory:":
        return
    directory = os.path.dirname(database)
    if directory and not os.path.isdir(directory):
        logger.info(f"创建数据库目录: {directory}")
        os.makedirs(directory, mode=0o750, exist_ok=True)


async def init_db(
    database_url: str,
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """初始化数据库，创建所有表，返回引擎和会话工厂."""
    _ensure_database_dir(database_url)

    engine = create_async_engine(database_url, echo=False)
    event.listen(engine.sync_engine, "connect", _enable_foreign_keys)

    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    # 添加新列（如果不存在）
    await _add_feed_columns(session_factory)

    # 写入默认配置
    await _seed_default_settings(session_factory)

    logger.info(f"数据库初始化完成: {database_url}")
    return engine, session_factory


async def _add_feed_columns(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """给旧版 feeds 表补齐同步相关列."""
    async with session_factory() as session:
        result = await session.execute(text("PRAGMA table_info(feeds)"))
        columns = [row[1] for row in result.fetchall()]

        for name, ddl in _FEED_COLUMNS.items():
            if name not in columns:
                logger.info(f"添加 {name} 列")
                await session.execute(
                    text(f"ALTER TABLE feeds ADD COLUMN {name} {ddl}")
                )

        await session.commit()


async def _seed_default_settings(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """写入默认拉取间隔（已存在则保留）."""
    async with session_factory() as session:
        await session.execute(
            text(
                "INSERT OR IGNORE INTO settings (key, value, updated_at) "
                "VALUES (:key, :value, CURRENT_TIMESTAMP)"
            ),
            {
                "key": DEFAULT_POLL_INTERVAL_KEY,
                "value": str(DEFAULT_POLL_INTERVAL_MINUTES),
            },
        )
        await session.commit()
