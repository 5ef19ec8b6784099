"""异常处理模块：定义统一的业务异常与响应格式。

节点存储与服务层只抛出两类可对外暴露的异常：``NotFoundError``（404）与
``BadRequestError``（400），由全局处理器转换为最小化的 JSON 响应。
"""

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.packages.query_tree.core.logger import logger
from app.packages.query_tree.core.responses import create_response


class AppException(HTTPException):
    """携带统一响应结构的业务异常，方便在全局处理中转换响应体。"""

    def __init__(self, msg: str, code: int = status.HTTP_400_BAD_REQUEST, data=None) -> None:
        super().__init__(status_code=code, detail=msg)
        self.data = data

    @property
    def msg(self) -> str:
        return str(self.detail)


class NotFoundError(AppException):
    """引用了不存在的节点（查询或变更路径均适用）。"""

    def __init__(self, msg: str = "Item not found", data=None) -> None:
        super().__init__(msg, status.HTTP_404_NOT_FOUND, data)


class BadRequestError(AppException):
    """输入不合法：缺少字段、空名称、移动到自身/子孙/文件下等。"""

    def __init__(self, msg: str = "Bad request", data=None) -> None:
        super().__init__(msg, status.HTTP_400_BAD_REQUEST, data)


class SortKeyOverflowError(BadRequestError):
    """名称中的数字串超过排序键补零宽度，无法编码。"""


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:  # pragma: no cover - framework glue
    """将 FastAPI 的 ``HTTPException`` 转换为统一响应格式。"""
    payload = create_response(exc.detail, getattr(exc, "data", None), exc.status_code)
    return JSONResponse(status_code=exc.status_code, content=payload)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:  # pragma: no cover - framework glue
    """请求参数缺失或格式错误统一按 400 返回，与节点接口的错误约定保持一致。"""
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query"))
    msg = f"Missing or invalid field: {field}" if field else "Bad request"
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=create_response(msg, None, status.HTTP_400_BAD_REQUEST),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:  # pragma: no cover - framework glue
    """兜底处理：将未捕获异常转换为标准的 500 响应结构。"""
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    payload = create_response("服务器内部错误", None, status.HTTP_500_INTERNAL_SERVER_ERROR)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=payload)
