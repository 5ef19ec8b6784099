"""客户端数据源：树适配器所需的最小能力接口及其两种实现。

- ``LocalTreeDataSource``：进程内直接调用查询/变更服务；
- ``HttpTreeDataSource``：通过 ``httpx.AsyncClient`` 访问 ``/fs`` 接口。

合并查询 ``load_children_with_data`` 是可选能力，由类属性
``supports_children_with_data`` 声明，适配器据此选择加载路径。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Any, Iterator, Mapping, Optional

import httpx

from app.packages.query_tree.core.config import Settings, get_settings
from app.packages.query_tree.core.constants import LOADING_ITEM_ID
from app.packages.query_tree.core.enums import NodeKind
from app.packages.query_tree.core.exceptions import AppException
from app.packages.query_tree.services.tree_mutation_service import TreeMutationService
from app.packages.query_tree.services.tree_query_service import TreeQueryService


class TreeSourceError(Exception):
    """数据源调用失败（网络错误或服务端 4xx/5xx），对适配器而言均可恢复。"""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass
class TreeItem:
    """客户端镜像中的节点；name/sort_key 在仅加载了 ID 时可能缺失。"""

    id: str
    kind: Optional[NodeKind] = None
    name: Optional[str] = None
    parent_id: Optional[str] = None
    sort_key: Optional[str] = None
    level: Optional[int] = None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "TreeItem":
        kind = record.get("kind")
        return cls(
            id=str(record["id"]),
            kind=NodeKind(kind) if kind else None,
            name=record.get("name"),
            parent_id=record.get("parentId"),
            sort_key=record.get("sortKey"),
            level=record.get("level"),
        )

    @property
    def is_loading(self) -> bool:
        return self.id == LOADING_ITEM_ID

    def copy(self) -> "TreeItem":
        return replace(self)


@dataclass(frozen=True)
class MoveResult:
    old_parent_id: Optional[str]
    new_parent_id: str


@dataclass(frozen=True)
class RenameResult:
    parent_id: Optional[str]


class TreeDataSource(ABC):
    supports_children_with_data: bool = False

    @abstractmethod
    async def load_item(self, node_id: str) -> TreeItem: ...

    @abstractmethod
    async def load_children(self, node_id: str) -> list[str]: ...

    async def load_children_with_data(self, node_id: str) -> list[TreeItem]:
        raise NotImplementedError(f"{type(self).__name__} does not support combined children loading")

    @abstractmethod
    async def get_parent_id(self, node_id: str) -> Optional[str]: ...

    @abstractmethod
    async def move_node(self, node_id: str, new_parent_id: str) -> MoveResult: ...

    @abstractmethod
    async def rename_node(self, node_id: str, name: str) -> RenameResult: ...

    async def aclose(self) -> None:
        return None


class LocalTreeDataSource(TreeDataSource):
    supports_children_with_data = True

    def __init__(self, query_service: TreeQueryService, mutation_service: TreeMutationService) -> None:
        self.query_service = query_service
        self.mutation_service = mutation_service

    async def load_item(self, node_id: str) -> TreeItem:
        with _translate_errors():
            return TreeItem.from_record(self.query_service.get_item(node_id))

    async def load_children(self, node_id: str) -> list[str]:
        with _translate_errors():
            return self.query_service.get_children_ids(node_id)

    async def load_children_with_data(self, node_id: str) -> list[TreeItem]:
        with _translate_errors():
            return [TreeItem.from_record(r) for r in self.query_service.get_children_with_data(node_id)]

    async def get_parent_id(self, node_id: str) -> Optional[str]:
        with _translate_errors():
            return self.query_service.get_parent_id(node_id)["parentId"]

    async def move_node(self, node_id: str, new_parent_id: str) -> MoveResult:
        with _translate_errors():
            payload = self.mutation_service.move_node(node_id, new_parent_id)
        return MoveResult(payload["oldParentId"], payload["newParentId"])

    async def rename_node(self, node_id: str, name: str) -> RenameResult:
        with _translate_errors():
            payload = self.mutation_service.rename_node(node_id, name)
        return RenameResult(payload["parentId"])


class HttpTreeDataSource(TreeDataSource):
    """基于 HTTP 接口的数据源；非 2xx 响应抛出携带服务端消息的 ``TreeSourceError``。"""

    supports_children_with_data = True

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        *,
        settings: Optional[Settings] = None,
    ) -> None:
        settings = settings or get_settings()
        self._prefix = settings.fs_api_prefix
        self._owns_client = client is None
        self._client = client if client is not None else httpx.AsyncClient(
            base_url=settings.tree_client_base_url,
            timeout=settings.tree_client_timeout,
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, f"{self._prefix}{path}", **kwargs)
        except httpx.HTTPError as exc:
            raise TreeSourceError(f"Request to {path} failed: {exc}") from exc
        if response.is_error:
            raise TreeSourceError(_error_message(response), response.status_code)
        return response.json()

    async def load_item(self, node_id: str) -> TreeItem:
        return TreeItem.from_record(await self._request("GET", "/item", params={"id": node_id}))

    async def load_children(self, node_id: str) -> list[str]:
        return [str(cid) for cid in await self._request("GET", "/children", params={"id": node_id})]

    async def load_children_with_data(self, node_id: str) -> list[TreeItem]:
        rows = await self._request("GET", "/children-with-data", params={"id": node_id})
        return [TreeItem.from_record(row) for row in rows]

    async def get_parent_id(self, node_id: str) -> Optional[str]:
        payload = await self._request("GET", "/parent", params={"id": node_id})
        return payload.get("parentId")

    async def move_node(self, node_id: str, new_parent_id: str) -> MoveResult:
        payload = await self._request("POST", "/move", json={"id": node_id, "newParentId": new_parent_id})
        return MoveResult(payload.get("oldParentId"), payload.get("newParentId") or new_parent_id)

    async def rename_node(self, node_id: str, name: str) -> RenameResult:
        payload = await self._request("POST", "/rename", json={"id": node_id, "name": name})
        return RenameResult(payload.get("parentId"))

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


@contextmanager
def _translate_errors() -> Iterator[None]:
    """把服务层的 ``AppException`` 转换为数据源统一的 ``TreeSourceError``。"""
    try:
        yield
    except AppException as exc:
        raise TreeSourceError(exc.msg, exc.status_code) from exc


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict) and payload.get("msg"):
        return str(payload["msg"])
    return response.text or f"Request failed ({response.status_code})"
