"""节点存储：进程内的权威查询树。

结构：
- ``_nodes``：id -> TreeNode 主映射；
- ``_children``：folder id -> 有序子节点 id 列表（物化索引，与主映射同步维护）。

子节点列表始终按 sort_key 升序排列，键相同时保持插入顺序（后插入者在后）。
同一文件夹下名称唯一（忽略大小写）；深度不超过 ``max_depth``；节点不能跨顶层分区移动。
所有操作都在同一把可重入锁内完成：变更串行执行，读取不会观察到变更的中间状态。
变更在修改任何结构之前完成全部校验，失败时不会留下部分修改。
"""

from __future__ import annotations

import threading
import uuid
from typing import Any, Iterable, Iterator, Mapping, Optional

from app.packages.query_tree.core.constants import LOADING_ITEM_ID, MAX_TREE_DEPTH
from app.packages.query_tree.core.enums import NodeKind
from app.packages.query_tree.core.exceptions import BadRequestError, NotFoundError
from app.packages.query_tree.models.node import TreeNode
from app.packages.query_tree.utils import sort_key as sort_keys


def _new_id(kind: NodeKind) -> str:
    prefix = "f" if kind == NodeKind.FOLDER else "q"
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _normalize_name(name: Optional[str]) -> str:
    value = (name or "").strip()
    if not value:
        raise BadRequestError("Name must not be empty")
    return value


class NodeStore:
    """封装查询树的查询与变更，维护单根、无环、兄弟有序与 ID 唯一等树不变量。"""

    def __init__(
        self,
        root_id: str = "root",
        root_name: Optional[str] = None,
        *,
        max_depth: int = MAX_TREE_DEPTH,
    ) -> None:
        self._lock = threading.RLock()
        self.max_depth = max_depth
        self._nodes: dict[str, TreeNode] = {}
        self._children: dict[str, list[str]] = {}
        self.root_id = root_id
        name = root_name or root_id
        self._nodes[root_id] = TreeNode(
            id=root_id,
            parent_id=None,
            kind=NodeKind.FOLDER,
            name=name,
            sort_key=sort_keys.encode(name),
        )
        self._children[root_id] = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        with self._lock:
            return node_id in self._nodes

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    def get_item(self, node_id: str) -> TreeNode:
        """返回节点副本；不存在时抛出 ``NotFoundError``。"""
        with self._lock:
            return self._require(node_id).copy()

    def get_children_ids(self, node_id: str) -> list[str]:
        with self._lock:
            return list(self._require_children(node_id))

    def get_children_with_data(self, node_id: str) -> list[TreeNode]:
        """与 ``get_children_ids`` 同序，一次返回完整节点，避免调用方 N+1 查询。"""
        with self._lock:
            return [self._nodes[cid].copy() for cid in self._require_children(node_id)]

    def get_children_with_level(self, node_id: str) -> tuple[list[TreeNode], int]:
        """子节点副本及其层级（父节点深度 + 1），两者在同一次加锁内读取。"""
        with self._lock:
            children = [self._nodes[cid].copy() for cid in self._require_children(node_id)]
            return children, self.depth_of(node_id) + 1

    def get_parent_id(self, node_id: str) -> Optional[str]:
        """返回父节点 ID；根节点返回 ``None``。"""
        with self._lock:
            return self._require(node_id).parent_id

    def depth_of(self, node_id: str) -> int:
        """根节点深度为 0，根的直接子节点为 1。"""
        with self._lock:
            depth = 0
            for _ in self._ancestors(node_id):
                depth += 1
            return depth

    def is_descendant(self, ancestor_id: str, node_id: str) -> bool:
        """``node_id`` 是否位于 ``ancestor_id`` 的子树内（节点视为自身的子孙）。

        从 ``node_id`` 向根上溯，代价与树深度成正比；不修改任何状态。
        """
        with self._lock:
            self._require(ancestor_id)
            if node_id == ancestor_id:
                return True
            return any(pid == ancestor_id for pid in self._ancestors(node_id))

    def iter_subtree(self, node_id: str) -> Iterator[TreeNode]:
        """按先序遍历返回子树节点副本（包含 ``node_id`` 自身）。"""
        with self._lock:
            stack = [node_id]
            self._require(node_id)
            snapshot: list[TreeNode] = []
            while stack:
                current = stack.pop()
                snapshot.append(self._nodes[current].copy())
                stack.extend(reversed(self._children.get(current, [])))
        return iter(snapshot)

    # ------------------------------------------------------------------
    # 变更
    # ------------------------------------------------------------------

    def create_node(
        self,
        parent_id: str,
        name: str,
        kind: NodeKind | str,
        *,
        node_id: Optional[str] = None,
    ) -> str:
        """在 ``parent_id`` 下创建节点，返回新节点 ID。"""
        try:
            kind = NodeKind(kind)
        except ValueError as exc:
            raise BadRequestError(f"Unknown node kind '{kind}'") from exc
        clean_name = _normalize_name(name)
        key = sort_keys.encode(clean_name)
        with self._lock:
            parent = self._require(parent_id, "Parent not found")
            if not parent.is_folder:
                raise BadRequestError("Cannot create under a file")
            if self.depth_of(parent_id) + 1 > self.max_depth:
                raise BadRequestError(f"Max depth {self.max_depth} exceeded")
            if self._has_sibling_named(parent_id, clean_name):
                raise BadRequestError("Name already exists in this folder")
            if node_id == LOADING_ITEM_ID:
                raise BadRequestError(f"Reserved node id '{node_id}'")
            if node_id is None:
                node_id = _new_id(kind)
                while node_id in self._nodes:
                    node_id = _new_id(kind)
            elif node_id in self._nodes:
                raise BadRequestError(f"Duplicate node id '{node_id}'")

            node = TreeNode(id=node_id, parent_id=parent_id, kind=kind, name=clean_name, sort_key=key)
            self._nodes[node_id] = node
            if kind == NodeKind.FOLDER:
                self._children[node_id] = []
            self._attach(parent_id, node_id)
            return node_id

    def rename_node(self, node_id: str, new_name: str) -> Optional[str]:
        """重命名节点并在兄弟节点中重新定位，返回（未变化的）父节点 ID。"""
        with self._lock:
            node = self._require(node_id)
            if node.is_root:
                raise BadRequestError("Cannot rename the root")
            clean_name = _normalize_name(new_name)
            key = sort_keys.encode(clean_name)
            parent_id = node.parent_id
            if self._has_sibling_named(parent_id, clean_name, exclude=node_id):
                raise BadRequestError("A sibling with the same name already exists")

            self._detach(parent_id, node_id)
            node.name = clean_name
            node.sort_key = key
            self._attach(parent_id, node_id)
            return parent_id

    def move_node(self, node_id: str, new_parent_id: str) -> tuple[Optional[str], str]:
        """将节点移动到新的父文件夹，返回 ``(old_parent_id, new_parent_id)``。

        sort_key 保持不变；与新兄弟键值相同时排在其后。
        """
        with self._lock:
            node = self._require(node_id, "Not found")
            new_parent = self._require(new_parent_id, "Not found")
            if node.is_root:
                raise BadRequestError("Cannot move the root")
            if node_id == new_parent_id:
                raise BadRequestError("Cannot move into itself")
            if not new_parent.is_folder:
                raise BadRequestError("Cannot move under a file")
            if self.is_descendant(node_id, new_parent_id):
                raise BadRequestError("Cannot move into its own descendant")

            if self._section_of(node_id) != self._section_of(new_parent_id):
                raise BadRequestError("Cannot move across sections")

            old_parent_id = node.parent_id
            if old_parent_id == new_parent_id:
                return old_parent_id, new_parent_id
            if self._has_sibling_named(new_parent_id, node.name):
                raise BadRequestError("A sibling with the same name exists in the destination")
            if self.depth_of(new_parent_id) + self._subtree_height(node_id) > self.max_depth:
                raise BadRequestError(f"Max depth {self.max_depth} would be exceeded")

            self._detach(old_parent_id, node_id)
            node.parent_id = new_parent_id
            self._attach(new_parent_id, node_id)
            return old_parent_id, new_parent_id

    def load(self, seed: Iterable[Mapping[str, Any]], parent_id: Optional[str] = None) -> int:
        """从嵌套结构批量写入节点，返回写入数量。

        每个条目形如 ``{"id", "kind", "name", "children": [...]}``；``id`` 可省略。
        """
        count = 0
        target = parent_id or self.root_id
        with self._lock:
            for entry in seed:
                created = self.create_node(
                    target, entry.get("name", ""), entry.get("kind", NodeKind.FILE), node_id=entry.get("id")
                )
                kind = self._nodes[created].kind
                count += 1
                children = entry.get("children") or []
                if children:
                    if kind != NodeKind.FOLDER:
                        raise BadRequestError(f"File '{created}' cannot have children")
                    count += self.load(children, parent_id=created)
        return count

    def validate(self) -> list[str]:
        """检查树不变量，返回问题描述列表（空列表表示一致）。测试与诊断使用。"""
        problems: list[str] = []
        with self._lock:
            roots = [n.id for n in self._nodes.values() if n.parent_id is None]
            if roots != [self.root_id]:
                problems.append(f"expected single root {self.root_id!r}, found {roots}")
            for node in self._nodes.values():
                if node.parent_id is None:
                    continue
                siblings = self._children.get(node.parent_id)
                if siblings is None:
                    problems.append(f"{node.id}: parent {node.parent_id!r} is missing or not a folder")
                elif siblings.count(node.id) != 1:
                    problems.append(f"{node.id}: not indexed exactly once under {node.parent_id!r}")
                try:
                    self.depth_of(node.id)
                except (RuntimeError, KeyError) as exc:
                    problems.append(str(exc))
            for folder_id, ids in self._children.items():
                siblings = [self._nodes[cid] for cid in ids]
                if siblings != sorted(siblings, key=sort_keys.sort_key_of):
                    problems.append(f"{folder_id}: children are not ordered by sort key")
        return problems

    # ------------------------------------------------------------------
    # 内部工具
    # ------------------------------------------------------------------

    def _require(self, node_id: str, msg: str = "Item not found") -> TreeNode:
        node = self._nodes.get(node_id)
        if node is None:
            raise NotFoundError(msg, data={"id": node_id})
        return node

    def _require_children(self, node_id: str) -> list[str]:
        node = self._require(node_id)
        if not node.is_folder:
            # 文件没有子节点：按调用方误用处理，而不是返回空列表
            raise NotFoundError("Item is not a folder", data={"id": node_id})
        return self._children[node_id]

    def _ancestors(self, node_id: str) -> Iterator[str]:
        node = self._require(node_id)
        # 上溯步数不会超过节点总数，超过即说明结构已损坏
        budget = len(self._nodes)
        while node.parent_id is not None:
            budget -= 1
            if budget < 0:
                raise RuntimeError(f"Cycle detected above node {node_id!r}")
            yield node.parent_id
            node = self._nodes[node.parent_id]

    def _section_of(self, node_id: str) -> Optional[str]:
        """节点所属的顶层分区（深度为 1 的祖先或自身）；根节点不属于任何分区。"""
        chain = [node_id, *self._ancestors(node_id)]
        return chain[-2] if len(chain) > 1 else None

    def _subtree_height(self, node_id: str) -> int:
        """子树高度：叶子为 1。"""
        height = 0
        level = [node_id]
        while level:
            height += 1
            level = [cid for current in level for cid in self._children.get(current, [])]
        return height

    def _has_sibling_named(self, parent_id: str, name: str, exclude: Optional[str] = None) -> bool:
        folded = name.casefold()
        return any(
            cid != exclude and self._nodes[cid].name.casefold() == folded
            for cid in self._children[parent_id]
        )

    def _attach(self, parent_id: str, node_id: str) -> None:
        siblings = self._children[parent_id]
        keys = [self._nodes[cid].sort_key for cid in siblings]
        siblings.insert(sort_keys.insert_index(keys, self._nodes[node_id].sort_key), node_id)

    def _detach(self, parent_id: Optional[str], node_id: str) -> None:
        if parent_id is None:
            return
        self._children[parent_id].remove(node_id)
