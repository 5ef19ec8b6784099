"""依赖注入模块：封装 FastAPI 中复用度高的依赖函数。"""

from fastapi import Depends, Request

from app.packages.query_tree.crud.node_store import NodeStore
from app.packages.query_tree.services.tree_mutation_service import TreeMutationService
from app.packages.query_tree.services.tree_query_service import TreeQueryService


def get_node_store(request: Request) -> NodeStore:
    """返回挂载在应用上的节点存储实例（启动时由 ``init_store`` 创建）。"""
    store = getattr(request.app.state, "node_store", None)
    if store is None:
        raise RuntimeError("Node store is not initialized")
    return store


def get_query_service(store: NodeStore = Depends(get_node_store)) -> TreeQueryService:
    return TreeQueryService(store)


def get_mutation_service(store: NodeStore = Depends(get_node_store)) -> TreeMutationService:
    return TreeMutationService(store)
