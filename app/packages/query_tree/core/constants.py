"""常量定义：集中维护查询树服务使用的状态码与保留标识。"""

HTTP_STATUS_OK = 200

# 数字串补零宽度：超过该宽度的数字串无法编码为排序键
SORT_KEY_PAD_WIDTH = 32

# 客户端加载占位节点的保留 ID，永远不会写入节点存储
LOADING_ITEM_ID = "__loading__"
LOADING_ITEM_NAME = "Loading…"

# 节点存储允许的最大深度：根为 0、顶层分区为 1，分区之下最多再嵌套四层
MAX_TREE_DEPTH = 5
