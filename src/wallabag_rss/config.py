"""应用配置管理."""

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """应用配置（环境变量）."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Wallabag 配置（全部必填）
    wallabag_base_url: str
    wallabag_client_id: str
    wallabag_client_secret: str
    wallabag_username: str
    wallabag_password: str

    # 应用配置
    database_path: str = "./wallabag.db"
    server_port: int = 8080
    log_level: str = "INFO"

    # 超时与队列
    feed_fetch_timeout_seconds: float = 30.0
    wallabag_timeout_seconds: float = 10.0
    priority_queue_size: int = 100

    @field_validator("database_path")
    @classmethod
    def _check_database_path(cls, value: str) -> str:
        if not value:
            msg = "数据库路径不能为空"
            raise ValueError(msg)
        if ".." in value:
            msg = "数据库路径不允许包含 .."
            raise ValueError(msg)
        if not value.endswith(".db"):
            msg = "数据库文件必须以 .db 结尾"
            raise ValueError(msg)
        return value

    @property
    def database_url(self) -> str:
        """SQLAlchemy 异步连接串."""
        return f"sqlite+aiosqlite:///{self.database_path}"


@lru_cache
def get_settings() -> Settings:
    """获取应用配置（带缓存）."""
    return Settings()  # type: ignore[call-arg]
