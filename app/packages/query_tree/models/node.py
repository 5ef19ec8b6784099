"""查询树节点模型（文件夹与文件合并）。

存储规则：
- id：全树唯一的不透明字符串，生命周期内不变；
- parent_id：所在文件夹 ID，根节点为 None；
- kind：folder / file，创建后不可变更，只有 folder 可以拥有子节点；
- name：展示名称，可通过重命名修改；
- sort_key：由 name 派生（见 utils.sort_key），重命名时重算，移动时保留。
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Optional

from app.packages.query_tree.core.enums import NodeKind


@dataclass
class TreeNode:
    id: str
    parent_id: Optional[str]
    kind: NodeKind
    name: str
    sort_key: str

    @property
    def is_folder(self) -> bool:
        return self.kind == NodeKind.FOLDER

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    def copy(self) -> "TreeNode":
        return replace(self)

    def to_record(self, level: int) -> dict[str, Any]:
        """序列化为对外的节点记录（camelCase 字段，与前端约定一致）。"""
        return {
            "id": self.id,
            "parentId": self.parent_id,
            "kind": self.kind.value,
            "name": self.name,
            "sortKey": self.sort_key,
            "level": level,
        }
