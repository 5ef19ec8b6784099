"""测试夹具：为 pytest 提供节点存储与客户端的共享配置。"""

from typing import Generator

import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.packages.query_tree.core.dependencies import get_node_store
from app.packages.query_tree.crud.node_store import NodeStore
from app.packages.query_tree.db.init_store import init_store


@pytest.fixture()
def store() -> NodeStore:
    """每个用例独立的节点存储，写入默认种子数据。"""
    return init_store()


@pytest.fixture()
def client(store: NodeStore) -> Generator[TestClient, None, None]:
    """构建 FastAPI TestClient，并注入测试专用的节点存储。"""
    app.dependency_overrides[get_node_store] = lambda: store

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
