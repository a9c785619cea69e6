"""wallabag-rss 主应用入口."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from pydantic import ValidationError

from wallabag_rss.api import articles, feeds, settings, sync
from wallabag_rss.config import get_settings
from wallabag_rss.core.store import SQLStore
from wallabag_rss.core.wallabag import WallabagClient, WallabagConfig, WallabagError
from wallabag_rss.fetcher.rss import FeedFetcher
from wallabag_rss.models.database import init_db
from wallabag_rss.scheduler.worker import Worker

# 配置日志
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def _authenticate(client: WallabagClient) -> None:
    """启动时先认证一次，失败只告警，推送时会重试."""
    try:
        await client.authenticate()
    except (WallabagError, httpx.HTTPError) as e:
        logger.warning(f"Wallabag 初始认证失败，请检查配置: {e}")
    else:
        logger.info("Wallabag 认证成功")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """应用生命周期管理."""
    app_settings = get_settings()
    logging.getLogger().setLevel(app_settings.log_level.upper())

    # 启动时初始化
    logger.info("正在初始化数据库...")
    engine, session_factory = await init_db(app_settings.database_url)
    store = SQLStore(session_factory)

    logger.info(f"Wallabag 地址: {app_settings.wallabag_base_url}")
    client = WallabagClient(
        WallabagConfig(
            base_url=app_settings.wallabag_base_url,
            client_id=app_settings.wallabag_client_id,
            client_secret=app_settings.wallabag_client_secret,
            username=app_settings.wallabag_username,
            password=app_settings.wallabag_password,
        ),
        timeout=app_settings.wallabag_timeout_seconds,
    )
    await _authenticate(client)

    fetcher = FeedFetcher(timeout=app_settings.feed_fetch_timeout_seconds)
    worker = Worker(
        store,
        fetcher,
        client,
        queue_size=app_settings.priority_queue_size,
    )

    app.state.store = store
    app.state.worker = worker

    logger.info("正在启动 Worker...")
    await worker.start()

    logger.info("wallabag-rss 启动完成！")
    yield

    # 关闭时清理
    logger.info("正在关闭...")
    await worker.stop()
    await client.close()
    await fetcher.close()
    await engine.dispose()
    logger.info("wallabag-rss 已关闭")


app = FastAPI(
    title="wallabag-rss",
    description="定时拉取 RSS/Atom 订阅并推送新文章到 Wallabag",
    version="0.1.0",
    lifespan=lifespan,
)

# 注册路由
app.include_router(feeds.router)
app.include_router(articles.router)
app.include_router(settings.router)
app.include_router(sync.router)


@app.get("/")
async def root() -> dict:
    """根路径."""
    return {
        "name": "wallabag-rss",
        "version": "0.1.0",
        "description": "RSS 到 Wallabag 推送服务",
    }


@app.get("/health")
async def health() -> dict:
    """健康检查."""
    return {"status": "ok"}


def run() -> None:
    """命令行入口：缺少必填配置时直接退出."""
    import uvicorn

    try:
        app_settings = get_settings()
    except ValidationError as e:
        logger.error(f"配置加载失败，请检查 WALLABAG_* 环境变量: {e}")
        sys.exit(1)

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=app_settings.server_port,
        log_level=app_settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
