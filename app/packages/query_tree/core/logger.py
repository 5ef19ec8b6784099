"""日志配置模块：控制台彩色输出、按天滚动的文件日志与可选的 JSON 结构化格式。

所有日志行都带有当前请求的 request_id（由 ``RequestIdMiddleware`` 写入上下文），
节点变更日志额外携带 ``node_id`` / ``action`` 等字段，JSON 模式下原样输出。
"""

import json
import logging
import logging.config
import sys
from contextvars import ContextVar
from datetime import datetime
from typing import Any, Optional

from .config import Settings, get_settings

_MODULE = __name__

# 通过 ``extra=`` 传入、需要写进 JSON 日志的业务字段
STRUCTURED_FIELDS = ("node_id", "parent_id", "action")

_request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


class _TZFormatter(logging.Formatter):
    """按 ``Settings.timezone`` 渲染时间戳，未指定 datefmt 时输出毫秒精度的 ISO-8601。"""

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:  # noqa: D401
        stamp = datetime.fromtimestamp(record.created, get_settings().timezone_info)
        return stamp.strftime(datefmt) if datefmt else stamp.isoformat(sep=" ", timespec="milliseconds")


class ColorFormatter(_TZFormatter):
    """终端输出按级别着色；非 TTY 环境自动关闭颜色。"""

    RESET = "\033[0m"
    COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[41m",
    }

    def __init__(self, fmt: str, datefmt: Optional[str] = None, style: str = "%", use_colors: Optional[bool] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt, style=style)
        self.use_colors = sys.stderr.isatty() if use_colors is None else use_colors

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        color = self.COLORS.get(record.levelno) if self.use_colors else None
        return f"{color}{text}{self.RESET}" if color else text


class JsonFormatter(_TZFormatter):
    """每条日志输出为一行 JSON，便于日志平台检索 request_id 与节点 ID。"""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": self.formatTime(record),
            "logger": record.name,
            "level": record.levelname,
            "msg": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
        }
        for name in STRUCTURED_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                payload[name] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


class RequestIdFilter(logging.Filter):
    """把上下文中的 request_id 注入每条 LogRecord，未处于请求中时为 ``None``。"""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401
        record.request_id = _request_id_ctx.get()
        return True


# 由 setup_logging 统一挂载 handler 的日志器；其余模块日志经 app 子日志器传播。
_MANAGED_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "app")
_TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s"


def build_logging_config(settings: Settings) -> dict[str, Any]:
    """根据配置生成 ``dictConfig`` 字典；文件 handler 延迟创建，未写日志时不产生文件。"""
    console_formatter = "json" if settings.log_json else "color"
    file_formatter = "json" if settings.log_json else "text"
    level = settings.log_level
    handler_names = ["console", "file"]
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"request_id": {"()": f"{_MODULE}.RequestIdFilter"}},
        "formatters": {
            "color": {"()": f"{_MODULE}.ColorFormatter", "format": _TEXT_FORMAT},
            "text": {"()": f"{_MODULE}._TZFormatter", "format": _TEXT_FORMAT},
            "json": {"()": f"{_MODULE}.JsonFormatter"},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": console_formatter,
                "filters": ["request_id"],
            },
            "file": {
                "class": "logging.handlers.TimedRotatingFileHandler",
                "level": level,
                "formatter": file_formatter,
                "filters": ["request_id"],
                "filename": str(settings.log_file_path),
                "when": "midnight",
                "backupCount": 14,
                "encoding": "utf-8",
                "delay": True,
            },
        },
        "loggers": {
            name: {"handlers": handler_names, "level": level, "propagate": False}
            for name in _MANAGED_LOGGERS
        },
        "root": {"handlers": handler_names, "level": level},
    }


def setup_logging() -> None:
    """初始化日志系统，确保所有模块使用统一的输出格式与级别。"""
    settings = get_settings()
    settings.log_directory.mkdir(parents=True, exist_ok=True)
    logging.config.dictConfig(build_logging_config(settings))


logger = logging.getLogger("app")


def get_logger(name: str) -> logging.Logger:
    """返回挂在 ``app`` 命名空间下的子日志器，例如 ``app.query_tree.client``。"""
    return logger.getChild(name)


def set_request_id(request_id: Optional[str]) -> None:
    _request_id_ctx.set(request_id)
