"""Wallabag API 客户端."""

from dataclasses import dataclass
from datetime import datetime, timedelta

import httpx

from wallabag_rss.utils.timeutil import utcnow

TOKEN_PATH = "/oauth/v2/token"
ENTRY_PATH = "/api/entries.json"


@dataclass
class WallabagConfig:
    """Wallabag 连接配置."""

    base_url: str
    client_id: str
    client_secret: str
    username: str
    password: str


@dataclass
class WallabagEntry:
    """Wallabag 条目."""

    id: int
    url: str
    title: str


class WallabagError(Exception):
    """Wallabag API 错误."""


class WallabagAuthError(WallabagError):
    """Wallabag 认证失败."""


class WallabagClient:
    """Wallabag API 客户端（OAuth2 password grant）."""

    def __init__(
        self,
        config: WallabagConfig,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        self._base_url = config.base_url.rstrip("/")
        self._access_token: str | None = None
        self._expires_at: datetime | None = None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        """关闭客户端."""
        await self._client.aclose()

    @property
    def token_valid(self) -> bool:
        """当前 token 是否可用."""
        return (
            self._access_token is not None
            and self._expires_at is not None
            and utcnow() < self._expires_at
        )

    async def authenticate(self) -> None:
        """获取 access token 并记录过期时间."""
        data = {
            "grant_type": "password",
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "username": self.config.username,
            "password": self.config.password,
        }

        response = await self._client.post(f"{self._base_url}{TOKEN_PATH}", data=data)

        # 错误信息里不带响应内容，避免泄露凭据
        if response.status_code != 200:
            msg = f"认证失败，状态码 {response.status_code}"
            raise WallabagAuthError(msg)

        payload = response.json()
        self._access_token = payload["access_token"]
        self._expires_at = utcnow() + timedelta(seconds=int(payload.get("expires_in", 0)))

    async def add_entry(self, url: str) -> WallabagEntry:
        """保存一篇文章到 Wallabag."""
        if not self.token_valid:
            await self.authenticate()

        response = await self._client.post(
            f"{self._base_url}{ENTRY_PATH}",
            json={"url": url},
            headers={"Authorization": f"Bearer {self._access_token}"},
        )

        if response.status_code != 200:
            msg = f"添加条目失败，状态码 {response.status_code}"
            raise WallabagError(msg)

        payload = response.json()
        return WallabagEntry(
            id=int(payload["id"]),
            url=payload.get("url") or url,
            title=payload.get("title") or "",
        )
