"""应用入口：创建 FastAPI 实例，挂载中间件、异常处理器与查询树路由。"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.middleware.request_id import REQUEST_ID_HEADER, RequestIdMiddleware
from app.packages import get_active_package

package = get_active_package()
package.setup_logging()
settings = package.get_settings()
logger = package.logger

app = FastAPI(title=settings.project_name, debug=settings.debug)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[REQUEST_ID_HEADER],
)
# 最后添加的中间件位于最外层，CORS 预检响应同样带有 request_id
app.add_middleware(RequestIdMiddleware)

for exc_class, handler in package.exception_handlers.items():
    app.add_exception_handler(exc_class, handler)


@app.on_event("startup")
async def startup_event() -> None:
    """创建进程内节点存储并写入种子数据；存储生命周期与进程一致。"""
    app.state.node_store = package.init_store()
    logger.info("SUCCESS - Application running at http://127.0.0.1:%s", settings.app_port)


@app.get("/health")
async def health_check() -> dict:
    """健康检查：返回节点数量，便于探活时确认种子数据已加载。"""
    store = getattr(app.state, "node_store", None)
    data = {"status": "healthy" if store is not None else "starting", "nodes": len(store) if store is not None else 0}
    return package.create_response("OK", data)


app.include_router(package.api_router, prefix=settings.api_v1_str)
