"""节点存储初始化：创建存储并写入种子数据。

默认种子数据：四个顶层分区，其中 QUERIES 下预置少量文件夹与查询文件。
可通过 TREE_SEED_FILE 指向同结构的 JSON 文件覆盖；TREE_SEED_DEMO=true 时
额外在 QUERIES 下生成多层演示数据，用于验证懒加载与虚拟滚动。
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

from app.packages.query_tree.core.config import Settings, get_settings
from app.packages.query_tree.core.enums import NodeKind
from app.packages.query_tree.core.logger import get_logger
from app.packages.query_tree.crud.node_store import NodeStore

logger = get_logger("query_tree.store")

DEFAULT_SEED: list[dict[str, Any]] = [
    {
        "id": "queries",
        "kind": "folder",
        "name": "QUERIES",
        "children": [
            {
                "id": "f_accounts",
                "kind": "folder",
                "name": "accounts",
                "children": [
                    {"id": "q_user_queries", "kind": "file", "name": "user-queries.sql"},
                    {"id": "q_account_summary", "kind": "file", "name": "account-summary.sql"},
                ],
            },
            {
                "id": "f_orders",
                "kind": "folder",
                "name": "orders",
                "children": [
                    {"id": "q_monthly_revenue", "kind": "file", "name": "monthly-revenue.sql"},
                ],
            },
            {"id": "q_quick_stats", "kind": "file", "name": "quick-stats.sql"},
        ],
    },
    {"id": "databases", "kind": "folder", "name": "DATABASES", "children": []},
    {"id": "services", "kind": "folder", "name": "SERVICES", "children": []},
    {"id": "projects", "kind": "folder", "name": "PROJECTS", "children": []},
]


def init_store(settings: Optional[Settings] = None) -> NodeStore:
    """创建新的节点存储并写入种子数据。"""
    settings = settings or get_settings()
    store = NodeStore(root_id=settings.tree_root_id, max_depth=settings.tree_max_depth)
    seed = _read_seed_file(settings.tree_seed_path) or DEFAULT_SEED
    try:
        created = store.load(seed)
        if settings.tree_seed_demo and "queries" in store:
            created += _seed_demo_projects(store, "queries")
    except Exception:  # pragma: no cover - seed errors should surface at startup
        logger.exception("Failed to seed the query tree")
        raise
    logger.info("Query tree seeded with %s nodes (root=%s)", created, store.root_id)
    return store


def _read_seed_file(path: Optional[Path]) -> Optional[list[dict[str, Any]]]:
    if path is None:
        return None
    if not path.exists():
        logger.warning("Seed file %s does not exist, falling back to built-in seed", path)
        return None
    with path.open(encoding="utf-8") as fh:
        payload = json.load(fh)
    if isinstance(payload, dict):
        payload = payload.get("children") or []
    if not isinstance(payload, list):
        raise ValueError(f"Seed file {path} must contain a list of nodes")
    return payload


def _seed_demo_projects(store: NodeStore, section_id: str, projects: int = 10) -> int:
    """结构：项目 → 模块 ×3 → 功能 ×2 → detail 文件夹，除 detail 外每层附带若干查询文件。

    detail 位于最大深度，其下不再生成节点。
    """
    created = 0

    def add(parent_id: str, name: str, kind: NodeKind) -> str:
        nonlocal created
        created += 1
        return store.create_node(parent_id, name, kind)

    for p in range(1, projects + 1):
        project = add(section_id, f"project-{p}", NodeKind.FOLDER)
        for f in range(1, 5):
            add(project, f"report-{f}.sql", NodeKind.FILE)
        for m in range(1, 4):
            module = add(project, f"module-{m}", NodeKind.FOLDER)
            for f in range(1, 4):
                add(module, f"query-{f}.sql", NodeKind.FILE)
            for k in range(1, 3):
                feature = add(module, f"feature-{k}", NodeKind.FOLDER)
                for f in range(1, 4):
                    add(feature, f"metric-{f}.sql", NodeKind.FILE)
                add(feature, "detail", NodeKind.FOLDER)
    return created
