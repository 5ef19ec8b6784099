"""客户端树适配器：懒加载、并发去重、折叠丢弃与乐观变更回滚。"""

import asyncio
from collections import Counter
from typing import Optional

import httpx
import pytest

from app.main import app
from app.packages.query_tree.client.data_source import (
    HttpTreeDataSource,
    LocalTreeDataSource,
    TreeSourceError,
)
from app.packages.query_tree.client.tree_adapter import MutationRecord, TreeAdapter
from app.packages.query_tree.core.constants import LOADING_ITEM_ID
from app.packages.query_tree.core.enums import MutationAction, MutationState, NodeKind
from app.packages.query_tree.crud.node_store import NodeStore
from app.packages.query_tree.services.tree_mutation_service import TreeMutationService
from app.packages.query_tree.services.tree_query_service import TreeQueryService


class CountingSource(LocalTreeDataSource):
    """记录调用次数；``gate`` 设置后所有调用等待其放行。

    ``held[node_id]`` 存在时，该文件夹的合并加载先读出结果、置位 ``answered[node_id]``，
    再等待放行后返回，用于模拟响应在途时服务端已发生变更。
    """

    def __init__(self, store: NodeStore, *, combined: bool = True) -> None:
        super().__init__(TreeQueryService(store), TreeMutationService(store))
        self.supports_children_with_data = combined
        self.calls: Counter = Counter()
        self.gate: Optional[asyncio.Event] = None
        self.fail_combined = False
        self.fail_mutations = False
        self.broken: set[str] = set()
        self.held: dict[str, asyncio.Event] = {}
        self.answered: dict[str, asyncio.Event] = {}

    async def _enter(self, name: str) -> None:
        self.calls[name] += 1
        if self.gate is not None:
            await self.gate.wait()
        else:
            await asyncio.sleep(0)

    async def load_children(self, node_id):
        await self._enter("children")
        if node_id in self.broken:
            raise TreeSourceError("listing unavailable", 500)
        return await super().load_children(node_id)

    async def load_children_with_data(self, node_id):
        await self._enter("children_with_data")
        if self.fail_combined or node_id in self.broken:
            raise TreeSourceError("combined listing unavailable", 500)
        items = await super().load_children_with_data(node_id)
        release = self.held.pop(node_id, None)
        if release is not None:
            self.answered[node_id].set()
            await release.wait()
        return items

    async def move_node(self, node_id, new_parent_id):
        await self._enter("move")
        if self.fail_mutations:
            raise TreeSourceError("server rejected", 500)
        return await super().move_node(node_id, new_parent_id)

    async def rename_node(self, node_id, name):
        await self._enter("rename")
        if self.fail_mutations:
            raise TreeSourceError("server rejected", 500)
        return await super().rename_node(node_id, name)


def _adapter(store: NodeStore, **kwargs):
    combined = kwargs.pop("combined", True)
    source = CountingSource(store, combined=combined)
    errors: list[str] = []
    adapter = TreeAdapter(source, "root", on_error=errors.append, **kwargs)
    return adapter, source, errors


def _ids(adapter: TreeAdapter) -> list[str]:
    return [row.id for row in adapter.visible_rows()]


def test_expand_loads_children_lazily(store: NodeStore):
    async def scenario():
        adapter, source, _ = _adapter(store)
        assert adapter.visible_rows() == []
        await adapter.expand("root")
        assert source.calls["children_with_data"] == 1
        assert _ids(adapter) == ["databases", "projects", "queries", "services"]

        await adapter.expand("queries")
        rows = adapter.visible_rows()
        assert [row.id for row in rows] == [
            "databases", "projects", "queries", "f_accounts", "f_orders", "q_quick_stats", "services",
        ]
        assert [row.depth for row in rows] == [0, 0, 0, 1, 1, 1, 0]
        assert rows[2].is_expanded
        assert rows[3].is_folder and not rows[5].is_folder

        # 已加载的文件夹再次展开不会重复请求
        adapter.collapse("queries")
        await adapter.expand("queries")
        assert source.calls["children_with_data"] == 2
        assert source.calls["children"] == 0

    asyncio.run(scenario())


def test_concurrent_expands_share_one_request(store: NodeStore):
    async def scenario():
        adapter, source, _ = _adapter(store)
        await adapter.expand("root")
        source.gate = asyncio.Event()

        first = asyncio.ensure_future(adapter.expand("queries"))
        second = asyncio.ensure_future(adapter.expand("queries"))
        await asyncio.sleep(0)

        assert adapter.is_loading("queries")
        loading = [row for row in adapter.visible_rows() if row.is_loading]
        assert [(row.id, row.depth) for row in loading] == [(LOADING_ITEM_ID, 1)]
        assert adapter.children_of("queries") == [LOADING_ITEM_ID]

        source.gate.set()
        await asyncio.gather(first, second)
        assert source.calls["children_with_data"] == 2
        assert not adapter.is_loading("queries")
        assert LOADING_ITEM_ID not in _ids(adapter)

    asyncio.run(scenario())


def test_collapse_during_load_discards_response(store: NodeStore):
    async def scenario():
        adapter, source, _ = _adapter(store)
        await adapter.expand("root")
        source.gate = asyncio.Event()

        pending = asyncio.ensure_future(adapter.expand("queries"))
        await asyncio.sleep(0)
        adapter.collapse("queries")
        source.gate.set()
        await pending

        assert adapter.children_of("queries") is None
        assert not adapter.is_expanded("queries")
        assert _ids(adapter) == ["databases", "projects", "queries", "services"]

        source.gate = None
        await adapter.expand("queries")
        assert source.calls["children_with_data"] == 3
        assert "f_accounts" in _ids(adapter)

    asyncio.run(scenario())


def test_falls_back_to_ids_when_combined_load_fails(store: NodeStore):
    async def scenario():
        adapter, source, errors = _adapter(store)
        source.fail_combined = True
        await adapter.expand("root")

        assert source.calls["children_with_data"] == 1
        assert source.calls["children"] == 1
        assert errors == []
        rows = adapter.visible_rows()
        assert [row.name for row in rows] == ["databases", "projects", "queries", "services"]
        assert not any(row.is_folder for row in rows)

        loaded = await adapter.hydrate()
        assert len(loaded) == 4
        rows = adapter.visible_rows()
        assert [row.name for row in rows] == ["DATABASES", "PROJECTS", "QUERIES", "SERVICES"]
        assert all(row.is_folder for row in rows)

    asyncio.run(scenario())


def test_source_without_combined_capability(store: NodeStore):
    async def scenario():
        adapter, source, _ = _adapter(store, combined=False)
        await adapter.expand("root")
        assert source.calls["children_with_data"] == 0
        assert source.calls["children"] == 1

    asyncio.run(scenario())


def test_failed_load_reports_once_and_collapses(store: NodeStore):
    async def scenario():
        adapter, source, errors = _adapter(store)
        await adapter.expand("root")
        source.broken.add("queries")
        await adapter.expand("queries")

        assert len(errors) == 1
        assert adapter.last_error == errors[0]
        assert not adapter.is_expanded("queries")
        assert not adapter.is_loading("queries")

    asyncio.run(scenario())


def test_folders_past_max_depth_render_as_leaves():
    store = NodeStore()
    store.load([
        {"id": "a", "kind": "folder", "name": "a", "children": [
            {"id": "b", "kind": "folder", "name": "b", "children": [
                {"id": "c", "kind": "folder", "name": "c", "children": [
                    {"id": "d", "kind": "folder", "name": "d", "children": [
                        {"id": "e", "kind": "file", "name": "e.sql"},
                    ]},
                ]},
            ]},
        ]},
    ])

    async def scenario():
        adapter, source, _ = _adapter(store)
        assert adapter.max_folder_depth == 3
        for folder_id in ("root", "a", "b", "c", "d"):
            await adapter.expand(folder_id)
        rows = {row.id: row for row in adapter.visible_rows()}
        assert [rows[i].depth for i in ("a", "b", "c", "d")] == [0, 1, 2, 3]
        assert rows["c"].is_folder
        assert not rows["d"].is_folder
        assert "e" not in rows
        assert adapter.get_item("d").kind == NodeKind.FOLDER

        shallow, _, _ = _adapter(store, max_folder_depth=1)
        await shallow.expand("root")
        await shallow.expand("a")
        await shallow.expand("b")
        assert [row.id for row in shallow.visible_rows()] == ["a", "b"]

    asyncio.run(scenario())


def test_optimistic_move_commits_and_refreshes_parents(store: NodeStore):
    async def scenario():
        adapter, source, errors = _adapter(store)
        for folder_id in ("root", "queries", "f_orders"):
            await adapter.expand(folder_id)
        assert source.calls["children_with_data"] == 3

        record = await adapter.move("q_quick_stats", "f_orders")
        assert record.action == MutationAction.MOVE
        assert record.state == MutationState.COMMITTED
        assert record.result.old_parent_id == "queries"
        assert errors == []
        assert adapter.children_of("queries") == ["f_accounts", "f_orders"]
        assert adapter.children_of("f_orders") == ["q_monthly_revenue", "q_quick_stats"]
        assert adapter.get_item("q_quick_stats").parent_id == "f_orders"
        # 只刷新新旧两个父文件夹
        assert source.calls["children_with_data"] == 5

    asyncio.run(scenario())


def test_move_during_pending_load_ends_with_fresh_listing(store: NodeStore):
    async def scenario():
        adapter, source, errors = _adapter(store)
        await adapter.expand("root")
        await adapter.expand("queries")

        release = asyncio.Event()
        source.held["f_orders"] = release
        source.answered["f_orders"] = asyncio.Event()
        pending = asyncio.ensure_future(adapter.expand("f_orders"))
        # 旧列表已读出但尚未送达
        await source.answered["f_orders"].wait()

        # 变更提交后的刷新不能等待在途的旧请求
        record = await asyncio.wait_for(adapter.move("q_quick_stats", "f_orders"), timeout=5)
        assert record.state == MutationState.COMMITTED
        release.set()
        await pending

        assert errors == []
        assert adapter.children_of("f_orders") == store.get_children_ids("f_orders")
        assert adapter.children_of("f_orders") == ["q_monthly_revenue", "q_quick_stats"]
        assert not adapter.is_loading("f_orders")

    asyncio.run(scenario())


def test_optimistic_move_rolls_back_on_failure(store: NodeStore):
    async def scenario():
        adapter, source, errors = _adapter(store)
        for folder_id in ("root", "queries", "f_orders"):
            await adapter.expand(folder_id)
        before = _ids(adapter)
        source.gate = asyncio.Event()

        pending = asyncio.ensure_future(adapter.move("q_quick_stats", "f_orders"))
        await asyncio.sleep(0)
        assert adapter.mutations[-1].state == MutationState.PENDING
        assert adapter.children_of("f_orders") == ["q_monthly_revenue", "q_quick_stats"]
        assert "q_quick_stats" not in adapter.children_of("queries")

        source.fail_mutations = True
        source.gate.set()
        record = await pending

        assert record.state == MutationState.ROLLED_BACK
        assert record.error == "server rejected"
        assert errors == ["server rejected"]
        assert _ids(adapter) == before
        assert adapter.get_item("q_quick_stats").parent_id == "queries"
        assert source.calls["move"] == 1
        assert store.get_parent_id("q_quick_stats") == "queries"

    asyncio.run(scenario())


def test_move_rejected_by_store_rolls_back(store: NodeStore):
    async def scenario():
        adapter, _, errors = _adapter(store)
        for folder_id in ("root", "queries", "f_accounts"):
            await adapter.expand(folder_id)
        before = _ids(adapter)

        record = await adapter.move("queries", "f_accounts")
        assert record.state == MutationState.ROLLED_BACK
        assert errors == ["Cannot move into its own descendant"]
        assert _ids(adapter) == before

    asyncio.run(scenario())


def test_optimistic_rename_reorders_siblings(store: NodeStore):
    async def scenario():
        adapter, source, errors = _adapter(store)
        await adapter.expand("root")
        await adapter.expand("queries")
        source.gate = asyncio.Event()

        pending = asyncio.ensure_future(adapter.rename("f_accounts", "zz-accounts"))
        await asyncio.sleep(0)
        assert adapter.children_of("queries") == ["f_orders", "q_quick_stats", "f_accounts"]
        assert adapter.get_item("f_accounts").name == "zz-accounts"

        source.gate.set()
        record = await pending
        assert record.state == MutationState.COMMITTED
        assert adapter.children_of("queries") == ["f_orders", "q_quick_stats", "f_accounts"]
        assert store.get_item("f_accounts").name == "zz-accounts"
        assert errors == []

    asyncio.run(scenario())


def test_rejected_rename_restores_name(store: NodeStore):
    async def scenario():
        adapter, _, errors = _adapter(store)
        await adapter.expand("root")
        await adapter.expand("queries")

        record = await adapter.rename("f_accounts", "   ")
        assert record.state == MutationState.ROLLED_BACK
        assert errors == ["Missing name"]
        assert adapter.get_item("f_accounts").name == "accounts"
        assert adapter.children_of("queries") == ["f_accounts", "f_orders", "q_quick_stats"]

    asyncio.run(scenario())


def test_mutation_record_transitions_once():
    record = MutationRecord(action=MutationAction.RENAME, node_id="x")
    record.roll_back("boom")
    with pytest.raises(RuntimeError):
        record.commit()
    with pytest.raises(RuntimeError):
        record.roll_back("again")


def test_drop_on_file_targets_its_parent(store: NodeStore):
    async def scenario():
        adapter, _, _ = _adapter(store)
        for folder_id in ("root", "queries", "f_orders"):
            await adapter.expand(folder_id)

        assert await adapter.resolve_drop_target("f_orders") == "f_orders"
        assert await adapter.resolve_drop_target("q_monthly_revenue") == "f_orders"
        assert await adapter.resolve_drop_target("root") == "root"
        # 镜像中没有的节点向数据源查询父节点
        assert await adapter.resolve_drop_target("q_user_queries") == "f_accounts"

        record = await adapter.drop_move("q_user_queries", "q_monthly_revenue")
        assert record.state == MutationState.COMMITTED
        assert store.get_parent_id("q_user_queries") == "f_orders"

    asyncio.run(scenario())


def test_window_slices_visible_rows(store: NodeStore):
    async def scenario():
        adapter, _, _ = _adapter(store)
        await adapter.expand("root")
        await adapter.expand("queries")
        win, rows = adapter.window(0, 56)
        assert win.total_height == 7 * adapter.row_height
        assert [row.id for row in rows] == _ids(adapter)

    asyncio.run(scenario())


def test_http_data_source_against_app(store: NodeStore):
    async def scenario():
        app.state.node_store = store
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
            source = HttpTreeDataSource(http)
            errors: list[str] = []
            adapter = TreeAdapter(source, "root", on_error=errors.append)

            await adapter.expand("root")
            await adapter.expand("queries")
            assert [row.name for row in adapter.visible_rows()][:4] == ["DATABASES", "PROJECTS", "QUERIES", "accounts"]

            record = await adapter.move("q_quick_stats", "f_accounts")
            assert record.state == MutationState.COMMITTED
            assert await source.get_parent_id("q_quick_stats") == "f_accounts"

            failed = await adapter.move("queries", "f_orders")
            assert failed.state == MutationState.ROLLED_BACK
            assert errors == ["Cannot move into its own descendant"]

            with pytest.raises(TreeSourceError) as exc_info:
                await source.load_item("nope")
            assert exc_info.value.status_code == 404
            assert exc_info.value.message == "Item not found"

            item = await source.load_item("q_quick_stats")
            assert item.kind == NodeKind.FILE
            assert item.level == 3

            # 注入的客户端由调用方负责关闭
            await source.aclose()
            assert not http.is_closed

    asyncio.run(scenario())
