"""查询树变更服务：移动、重命名与新建。

返回值携带受影响的父节点 ID，调用方据此只刷新相关文件夹的子节点列表。
"""

from __future__ import annotations

from typing import Any, Dict

from app.packages.query_tree.core.enums import NodeKind
from app.packages.query_tree.core.exceptions import BadRequestError
from app.packages.query_tree.core.logger import get_logger
from app.packages.query_tree.crud.node_store import NodeStore

logger = get_logger("query_tree.mutations")


class TreeMutationService:
    def __init__(self, store: NodeStore) -> None:
        self.store = store

    def move_node(self, node_id: str, new_parent_id: str) -> Dict[str, Any]:
        """移动节点，返回 ``{"ok", "oldParentId", "newParentId"}``。"""
        _require_fields(id=node_id, newParentId=new_parent_id)
        old_parent_id, new_parent_id = self.store.move_node(node_id, new_parent_id)
        logger.info(
            "Moved node %s from %s to %s",
            node_id,
            old_parent_id,
            new_parent_id,
            extra={"node_id": node_id, "parent_id": new_parent_id, "action": "move"},
        )
        return {"ok": True, "oldParentId": old_parent_id, "newParentId": new_parent_id}

    def rename_node(self, node_id: str, name: str) -> Dict[str, Any]:
        """重命名节点，返回 ``{"ok", "parentId"}``。"""
        _require_fields(id=node_id, name=name)
        parent_id = self.store.rename_node(node_id, name)
        logger.info(
            "Renamed node %s to %r", node_id, name, extra={"node_id": node_id, "parent_id": parent_id, "action": "rename"}
        )
        return {"ok": True, "parentId": parent_id}

    def create_node(self, parent_id: str, name: str, kind: NodeKind) -> Dict[str, Any]:
        _require_fields(parentId=parent_id, name=name)
        node_id = self.store.create_node(parent_id, name, kind)
        logger.info(
            "Created %s %s under %s",
            kind.value,
            node_id,
            parent_id,
            extra={"node_id": node_id, "parent_id": parent_id, "action": "create"},
        )
        return {"ok": True, "id": node_id}


def _require_fields(**fields: Any) -> None:
    missing = [name for name, value in fields.items() if value is None or not str(value).strip()]
    if missing:
        raise BadRequestError(f"Missing {' or '.join(missing)}")
