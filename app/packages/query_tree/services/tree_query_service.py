"""查询树读取服务：在节点存储之上提供只读操作，返回可直接序列化的记录。"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from app.packages.query_tree.crud.node_store import NodeStore
from app.packages.query_tree.models.node import TreeNode


class TreeQueryService:
    """读路径：无副作用，位于界面感知延迟的关键路径上。"""

    def __init__(self, store: NodeStore) -> None:
        self.store = store

    @property
    def root_id(self) -> str:
        return self.store.root_id

    def get_item(self, node_id: Optional[str] = None) -> Dict[str, Any]:
        node = self.store.get_item(node_id or self.root_id)
        return self._serialize(node)

    def get_children_ids(self, node_id: Optional[str] = None) -> List[str]:
        return self.store.get_children_ids(node_id or self.root_id)

    def get_children_with_data(self, node_id: Optional[str] = None) -> List[Dict[str, Any]]:
        parent_id = node_id or self.root_id
        # 列表与层级在同一次加锁内读取，避免并发移动导致两者不一致
        children, level = self.store.get_children_with_level(parent_id)
        return [child.to_record(level) for child in children]

    def get_parent_id(self, node_id: str) -> Dict[str, Optional[str]]:
        return {"parentId": self.store.get_parent_id(node_id)}

    def _serialize(self, node: TreeNode) -> Dict[str, Any]:
        return node.to_record(self.store.depth_of(node.id))
