"""配置模块：加载 .env 文件并缓存基于环境变量的服务设置。

环境文件按以下顺序叠加（后者覆盖前者）：
``.env`` → ``.env.<ENVIRONMENT>``；设置了 ``ENV_FILE`` 时只加载该文件。
``DEBUG=true`` 且未指定 ``ENVIRONMENT`` 时视为 ``development``。
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Iterator, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import MAX_TREE_DEPTH

_TRUTHY = {"1", "true", "yes", "on"}


def _find_project_root(start: Path) -> Path:
    """向上查找包含 ``app`` 目录的项目根路径，找不到时退回起始文件所在目录。"""
    for candidate in start.parents:
        if (candidate / "app").is_dir():
            return candidate
    return start.parent


BASE_DIR = _find_project_root(Path(__file__).resolve())


def _env_files(base_dir: Path) -> Iterator[tuple[Path, bool]]:
    """依次给出 ``(文件路径, 是否覆盖已有变量)``。"""
    explicit = os.getenv("ENV_FILE")
    if explicit:
        yield base_dir / explicit, True
        return

    yield base_dir / ".env", False
    environment = os.getenv("ENVIRONMENT")
    if environment is None and (os.getenv("DEBUG") or "").strip().lower() in _TRUTHY:
        environment = "development"
    if environment:
        name = environment if environment.startswith(".env") else f".env.{environment}"
        yield base_dir / name, True


def load_environment(base_dir: Path = BASE_DIR) -> None:
    for path, override in _env_files(base_dir):
        if path.exists():
            load_dotenv(path, override=override, encoding="utf-8")


load_environment()


class Settings(BaseSettings):
    """
    查询树服务的全部配置项，每个字段都可以通过同名环境变量重写。
    服务端（节点存储、HTTP 接口）与客户端（树适配器、虚拟滚动窗口）共用同一份配置。
    """

    project_name: str = Field(default="Query Tree API", alias="PROJECT_NAME")
    api_v1_str: str = Field(default="/api/v1", alias="API_V1_STR")
    debug: bool = Field(default=False, alias="DEBUG")
    app_port: int = Field(default=8000, alias="APP_PORT")
    cors_origins_raw: str = Field(default="*", alias="CORS_ORIGINS")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_dir: str = Field(default="log", alias="LOG_DIR")
    log_file_name: str = Field(default="app.log", alias="LOG_FILE_NAME")
    log_json: bool = Field(default=False, alias="LOG_JSON")
    timezone: str = Field(default="Asia/Shanghai", alias="TIMEZONE")

    # 节点存储
    tree_root_id: str = Field(default="root", alias="TREE_ROOT_ID")
    tree_seed_file: Optional[str] = Field(default=None, alias="TREE_SEED_FILE")
    tree_seed_demo: bool = Field(default=False, alias="TREE_SEED_DEMO")
    tree_max_depth: int = Field(default=MAX_TREE_DEPTH, ge=1, alias="TREE_MAX_DEPTH")

    # 客户端展示策略
    tree_max_folder_depth: int = Field(default=3, ge=1, alias="TREE_MAX_FOLDER_DEPTH")
    tree_row_height: int = Field(default=28, ge=1, alias="TREE_ROW_HEIGHT")
    tree_overscan: int = Field(default=8, ge=0, alias="TREE_OVERSCAN")
    tree_client_base_url: str = Field(default="http://127.0.0.1:8000", alias="TREE_CLIENT_BASE_URL")
    tree_client_timeout: float = Field(default=10.0, gt=0, alias="TREE_CLIENT_TIMEOUT")

    model_config = SettingsConfigDict(extra="ignore")

    @field_validator("api_v1_str")
    @classmethod
    def _normalize_prefix(cls, value: str) -> str:
        value = "/" + value.strip().strip("/")
        return value if value != "/" else ""

    @field_validator("log_level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        return value.strip().upper()

    def _resolve_path(self, raw: str) -> Path:
        path = Path(raw)
        return path if path.is_absolute() else BASE_DIR / path

    @property
    def cors_origins(self) -> list[str]:
        return [item.strip() for item in self.cors_origins_raw.split(",") if item.strip()]

    @property
    def log_directory(self) -> Path:
        """日志目录的绝对路径，相对路径基于项目根目录解析。"""
        return self._resolve_path(self.log_dir)

    @property
    def log_file_path(self) -> Path:
        return self.log_directory / self.log_file_name

    @property
    def tree_seed_path(self) -> Optional[Path]:
        """种子文件的绝对路径；未配置时为 ``None``。"""
        raw = (self.tree_seed_file or "").strip()
        return self._resolve_path(raw) if raw else None

    @property
    def fs_api_prefix(self) -> str:
        """查询树接口的完整前缀，例如 ``/api/v1/fs``。"""
        return f"{self.api_v1_str}/fs"

    @property
    def timezone_info(self) -> ZoneInfo:
        """当前配置对应的时区，无法解析时回退到 UTC。"""
        try:
            return ZoneInfo(self.timezone)
        except ZoneInfoNotFoundError:
            return ZoneInfo("UTC")


@lru_cache
def get_settings() -> Settings:
    """返回单例化的配置对象，避免重复解析环境变量。"""
    return Settings()
