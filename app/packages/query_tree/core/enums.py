"""枚举定义：约束节点类型与乐观变更状态的可选值。"""

from enum import Enum


class NodeKind(str, Enum):
    """节点类型；创建后不可变更。"""

    FOLDER = "folder"
    FILE = "file"


class MutationState(str, Enum):
    """客户端乐观变更的生命周期：pending → committed | rolled_back。"""

    PENDING = "pending"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class MutationAction(str, Enum):
    MOVE = "move"
    RENAME = "rename"
