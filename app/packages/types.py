"""业务包元数据定义。"""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import Logger
from typing import Any, Awaitable, Callable, Mapping

from fastapi import APIRouter
from starlette.requests import Request
from starlette.responses import Response

ExceptionHandler = Callable[[Request, Any], Awaitable[Response]]


@dataclass(frozen=True)
class AppPackage:
    """业务包向主应用暴露的入口：路由、配置、日志、存储初始化与异常处理器。"""

    name: str
    api_router: APIRouter
    get_settings: Callable[[], Any]
    setup_logging: Callable[[], None]
    logger: Logger
    init_store: Callable[[], Any]
    create_response: Callable[..., dict]
    # 异常类型 -> 处理器，按声明顺序注册到应用
    exception_handlers: Mapping[type, ExceptionHandler] = field(default_factory=dict)
