"""客户端树适配器：为渲染层维护节点存储的局部懒加载镜像。

- 未展开的文件夹不拉取子节点；展开时优先使用合并查询，失败或不支持时退回仅拉取 ID；
- 同一文件夹同时最多一个进行中的加载，重复展开等待同一任务；
- 加载过程中折叠文件夹，返回结果会被丢弃；
- 移动/重命名先乐观更新本地镜像，再发起请求；失败回滚到快照并上报一次错误，不自动重试；
  成功后只刷新受影响的父文件夹列表。
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

from app.packages.query_tree.client.data_source import TreeDataSource, TreeItem, TreeSourceError
from app.packages.query_tree.client.virtual_window import VirtualWindow, compute_window, slice_rows
from app.packages.query_tree.core.config import get_settings
from app.packages.query_tree.core.constants import LOADING_ITEM_ID, LOADING_ITEM_NAME
from app.packages.query_tree.core.enums import MutationAction, MutationState, NodeKind
from app.packages.query_tree.core.exceptions import BadRequestError
from app.packages.query_tree.core.logger import get_logger
from app.packages.query_tree.utils import sort_key as sort_keys

logger = get_logger("query_tree.client")


@dataclass(frozen=True)
class TreeRow:
    """扁平化后的一行；depth 相对于适配器根节点（根的子节点为 0）。"""

    id: str
    depth: int
    name: str
    is_folder: bool
    is_expanded: bool = False
    is_loading: bool = False


@dataclass
class MutationRecord:
    """一次乐观变更的生命周期：pending → committed | rolled_back。"""

    action: MutationAction
    node_id: str
    params: dict[str, Any] = field(default_factory=dict)
    state: MutationState = MutationState.PENDING
    error: Optional[str] = None
    result: Any = None
    _items: dict[str, Optional[TreeItem]] = field(default_factory=dict, repr=False)
    _listings: dict[str, Optional[list[str]]] = field(default_factory=dict, repr=False)

    def commit(self, result: Any = None) -> None:
        self._transition(MutationState.COMMITTED)
        self.result = result

    def roll_back(self, error: str) -> None:
        self._transition(MutationState.ROLLED_BACK)
        self.error = error

    def _transition(self, target: MutationState) -> None:
        if self.state != MutationState.PENDING:
            raise RuntimeError(f"Mutation on {self.node_id} is already {self.state.value}")
        self.state = target


class TreeAdapter:
    def __init__(
        self,
        source: TreeDataSource,
        root_id: Optional[str] = None,
        *,
        max_folder_depth: Optional[int] = None,
        on_error: Optional[Callable[[str], None]] = None,
    ) -> None:
        settings = get_settings()
        self.source = source
        self.root_id = root_id or settings.tree_root_id
        self.max_folder_depth = settings.tree_max_folder_depth if max_folder_depth is None else max_folder_depth
        self.row_height = settings.tree_row_height
        self.overscan = settings.tree_overscan
        self.on_error = on_error
        self.last_error: Optional[str] = None
        self.mutations: list[MutationRecord] = []

        self._items: dict[str, TreeItem] = {}
        self._children: dict[str, list[str]] = {}
        self._expanded: set[str] = {self.root_id}
        # folder id -> (generation, task)
        self._inflight: dict[str, tuple[int, asyncio.Task]] = {}
        self._generation: defaultdict[str, int] = defaultdict(int)

    # ------------------------------------------------------------------
    # 渲染辅助
    # ------------------------------------------------------------------

    @staticmethod
    def item_name(item: TreeItem) -> str:
        """节点名称，缺失时回退到 ID，保证渲染层始终有可显示的标签。"""
        return item.name if item.name else item.id

    def is_folder(self, item: TreeItem, depth: int) -> bool:
        """仅展示层策略：超过最大层级的文件夹按叶子渲染，不修改存储数据。"""
        return item.kind == NodeKind.FOLDER and depth < self.max_folder_depth

    @staticmethod
    def placeholder() -> TreeItem:
        return TreeItem(id=LOADING_ITEM_ID, kind=NodeKind.FOLDER, name=LOADING_ITEM_NAME, sort_key="")

    def get_item(self, node_id: str) -> Optional[TreeItem]:
        return self._items.get(node_id)

    def children_of(self, folder_id: str) -> Optional[list[str]]:
        """已加载的子节点 ID；加载中返回占位节点，未加载返回 ``None``。"""
        if folder_id in self._children:
            return list(self._children[folder_id])
        if self.is_loading(folder_id):
            return [LOADING_ITEM_ID]
        return None

    def is_loading(self, folder_id: str) -> bool:
        entry = self._inflight.get(folder_id)
        return entry is not None and entry[0] == self._generation[folder_id]

    def is_expanded(self, folder_id: str) -> bool:
        return folder_id in self._expanded

    def depth_of(self, node_id: str) -> Optional[int]:
        """根据镜像中的父链计算相对深度；父链不完整时返回 ``None``。"""
        depth = -1
        current: Optional[str] = node_id
        seen: set[str] = set()
        while current is not None and current != self.root_id:
            if current in seen:
                return None
            seen.add(current)
            item = self._items.get(current)
            if item is None or item.parent_id is None:
                return None
            depth += 1
            current = item.parent_id
        return depth

    def visible_rows(self) -> list[TreeRow]:
        rows: list[TreeRow] = []
        self._flatten(self.root_id, 0, rows)
        return rows

    def window(self, scroll_offset: float, viewport_height: float) -> tuple[VirtualWindow, list[TreeRow]]:
        """当前滚动位置需要渲染的行。"""
        rows = self.visible_rows()
        win = compute_window(scroll_offset, self.row_height, viewport_height, self.overscan, len(rows))
        return win, slice_rows(rows, win)

    def _flatten(self, folder_id: str, depth: int, rows: list[TreeRow]) -> None:
        child_ids = self.children_of(folder_id)
        if not child_ids:
            return
        for child_id in child_ids:
            if child_id == LOADING_ITEM_ID:
                item = self.placeholder()
                rows.append(TreeRow(item.id, depth, self.item_name(item), is_folder=False, is_loading=True))
                continue
            item = self._items.get(child_id) or TreeItem(id=child_id, parent_id=folder_id)
            folder = self.is_folder(item, depth)
            expanded = folder and child_id in self._expanded
            rows.append(TreeRow(child_id, depth, self.item_name(item), folder, is_expanded=expanded))
            if expanded:
                self._flatten(child_id, depth + 1, rows)

    # ------------------------------------------------------------------
    # 懒加载
    # ------------------------------------------------------------------

    async def load(self, folder_id: str) -> tuple[list[str], list[TreeItem]]:
        """拉取子节点；合并查询失败时降级为仅拉取 ID，不阻塞该行加载。"""
        if self.source.supports_children_with_data:
            try:
                items = await self.source.load_children_with_data(folder_id)
                return [item.id for item in items], items
            except TreeSourceError as exc:
                logger.warning("Combined children load failed for %s, falling back: %s", folder_id, exc)
        ids = await self.source.load_children(folder_id)
        return list(ids), []

    async def expand(self, folder_id: str) -> None:
        if folder_id != self.root_id:
            item = self._items.get(folder_id)
            depth = self.depth_of(folder_id)
            if item is None or depth is None or not self.is_folder(item, depth):
                logger.debug("Ignoring expand of non-folder row %s", folder_id)
                return
        self._expanded.add(folder_id)
        if folder_id in self._children:
            return

        generation = self._generation[folder_id]
        entry = self._inflight.get(folder_id)
        if entry is None or entry[0] != generation:
            task = asyncio.ensure_future(self._fetch_children(folder_id, generation))
            entry = (generation, task)
            self._inflight[folder_id] = entry
        await entry[1]

    def collapse(self, folder_id: str) -> None:
        self._expanded.discard(folder_id)
        if folder_id in self._inflight:
            # 进行中的响应到达时因代次不符被丢弃
            self._generation[folder_id] += 1

    async def hydrate(self, node_ids: Optional[Iterable[str]] = None) -> list[TreeItem]:
        """补齐仅有 ID 的节点数据；缺省时处理当前可见行。"""
        if node_ids is None:
            node_ids = [row.id for row in self.visible_rows() if not row.is_loading]
        missing = [nid for nid in dict.fromkeys(node_ids) if self._items.get(nid) is None or self._items[nid].kind is None]
        if not missing:
            return []
        results = await asyncio.gather(*(self.source.load_item(nid) for nid in missing), return_exceptions=True)
        loaded: list[TreeItem] = []
        for node_id, result in zip(missing, results):
            if isinstance(result, TreeSourceError):
                logger.warning("Failed to load item %s: %s", node_id, result)
                continue
            if isinstance(result, BaseException):
                raise result
            self._items[result.id] = result
            loaded.append(result)
        return loaded

    async def invalidate(self, folder_ids: Iterable[Optional[str]]) -> None:
        """丢弃指定文件夹的子节点缓存，已展开的立即重新加载（去重后并发执行）。"""
        targets = [fid for fid in dict.fromkeys(folder_ids) if fid]
        for folder_id in targets:
            self._children.pop(folder_id, None)
            if folder_id in self._inflight:
                # 进行中的请求可能早于本次变更被应答，作废后重新拉取
                self._generation[folder_id] += 1
        reloads = [self.expand(fid) for fid in targets if fid in self._expanded]
        if reloads:
            await asyncio.gather(*reloads)

    async def _fetch_children(self, folder_id: str, generation: int) -> None:
        try:
            ids, items = await self.load(folder_id)
        except TreeSourceError as exc:
            if generation == self._generation[folder_id]:
                self._expanded.discard(folder_id)
                self._report(f"Failed to load {folder_id}: {exc.message}")
            return
        finally:
            entry = self._inflight.get(folder_id)
            if entry is not None and entry[0] == generation:
                del self._inflight[folder_id]

        if generation != self._generation[folder_id] or folder_id not in self._expanded:
            logger.debug("Discarding stale children response for %s", folder_id)
            return
        for item in items:
            if item.parent_id is None:
                item.parent_id = folder_id
            self._items[item.id] = item
        for child_id in ids:
            known = self._items.get(child_id)
            if known is not None:
                known.parent_id = folder_id
        # 整体替换，占位节点不会与真实节点混合
        self._children[folder_id] = ids

    # ------------------------------------------------------------------
    # 乐观变更
    # ------------------------------------------------------------------

    async def resolve_drop_target(self, target_id: str) -> Optional[str]:
        """拖放到文件上时以其父文件夹为目标。"""
        item = self._items.get(target_id)
        if target_id == self.root_id or (item is not None and item.kind == NodeKind.FOLDER):
            return target_id
        if item is not None and item.parent_id is not None:
            return item.parent_id
        try:
            return await self.source.get_parent_id(target_id)
        except TreeSourceError as exc:
            self._report(exc.message)
            return None

    async def drop_move(self, drag_id: str, target_id: str) -> Optional[MutationRecord]:
        parent_id = await self.resolve_drop_target(target_id)
        if parent_id is None:
            return None
        return await self.move(drag_id, parent_id)

    async def move(self, node_id: str, new_parent_id: str) -> MutationRecord:
        old_parent_id = self._parent_in_mirror(node_id)
        record = self._begin(MutationAction.MOVE, node_id, {"new_parent_id": new_parent_id})
        self._snapshot(record, node_id, [old_parent_id, new_parent_id])

        item = self._items.get(node_id)
        if item is not None:
            item.parent_id = new_parent_id
        if old_parent_id is not None and old_parent_id in self._children and old_parent_id != new_parent_id:
            self._children[old_parent_id] = [cid for cid in self._children[old_parent_id] if cid != node_id]
        if new_parent_id in self._children and node_id not in self._children[new_parent_id]:
            self._insert_sorted(new_parent_id, node_id)

        try:
            result = await self.source.move_node(node_id, new_parent_id)
        except TreeSourceError as exc:
            self._roll_back(record, exc)
            return record
        record.commit(result)
        logger.info("Move of %s committed (%s -> %s)", node_id, result.old_parent_id, result.new_parent_id)
        await self.invalidate([result.old_parent_id, result.new_parent_id])
        return record

    async def rename(self, node_id: str, name: str) -> MutationRecord:
        parent_id = self._parent_in_mirror(node_id)
        record = self._begin(MutationAction.RENAME, node_id, {"name": name})
        self._snapshot(record, node_id, [parent_id])

        item = self._items.get(node_id)
        if item is not None:
            item.name = name
            try:
                item.sort_key = sort_keys.encode(name)
            except BadRequestError:
                item.sort_key = None
        if parent_id is not None and parent_id in self._children:
            self._children[parent_id] = [cid for cid in self._children[parent_id] if cid != node_id]
            self._insert_sorted(parent_id, node_id)

        try:
            result = await self.source.rename_node(node_id, name)
        except TreeSourceError as exc:
            self._roll_back(record, exc)
            return record
        record.commit(result)
        await self.invalidate([result.parent_id])
        return record

    def _begin(self, action: MutationAction, node_id: str, params: dict[str, Any]) -> MutationRecord:
        record = MutationRecord(action=action, node_id=node_id, params=params)
        self.mutations.append(record)
        return record

    def _snapshot(self, record: MutationRecord, node_id: str, folder_ids: Iterable[Optional[str]]) -> None:
        item = self._items.get(node_id)
        record._items[node_id] = item.copy() if item is not None else None
        for folder_id in folder_ids:
            if folder_id is None or folder_id in record._listings:
                continue
            listing = self._children.get(folder_id)
            record._listings[folder_id] = list(listing) if listing is not None else None

    def _roll_back(self, record: MutationRecord, exc: TreeSourceError) -> None:
        for node_id, item in record._items.items():
            if item is None:
                self._items.pop(node_id, None)
            else:
                self._items[node_id] = item.copy()
        for folder_id, listing in record._listings.items():
            if listing is None:
                self._children.pop(folder_id, None)
            else:
                self._children[folder_id] = list(listing)
        record.roll_back(exc.message)
        self._report(exc.message)

    def _report(self, message: str) -> None:
        self.last_error = message
        logger.warning("Tree operation failed: %s", message)
        if self.on_error is not None:
            self.on_error(message)

    def _parent_in_mirror(self, node_id: str) -> Optional[str]:
        item = self._items.get(node_id)
        if item is not None and item.parent_id is not None:
            return item.parent_id
        for folder_id, ids in self._children.items():
            if node_id in ids:
                return folder_id
        return None

    def _insert_sorted(self, folder_id: str, node_id: str) -> None:
        siblings = self._children[folder_id]
        item = self._items.get(node_id)
        key = item.sort_key if item is not None else None
        if key is None:
            siblings.append(node_id)
            return
        # 只在已知排序键的前缀中二分；未补齐数据的节点保持在末尾
        keys: list[str] = []
        for cid in siblings:
            sibling = self._items.get(cid)
            if sibling is None or sibling.sort_key is None:
                break
            keys.append(sibling.sort_key)
        siblings.insert(sort_keys.insert_index(keys, key), node_id)
