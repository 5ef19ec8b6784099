"""模型集合：统一导出节点模型，方便其他模块引用。"""

from app.packages.query_tree.models.node import TreeNode

__all__ = ["TreeNode"]
