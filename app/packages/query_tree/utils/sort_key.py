"""排序键编码：把显示名称转换为可按字节比较的排序键。

节点存储与客户端镜像共用以下规则：
- 名称统一转小写，``"File1"`` 与 ``"file1"`` 的键相同；
- 每段连续的 ASCII 数字左侧补零到 ``SORT_KEY_PAD_WIDTH`` 位，使 ``"file2"`` 排在 ``"file10"`` 之前；
- 前导零不计入有效位（``"7"`` 与 ``"007"`` 编码相同）；
- 有效位数超过补齐宽度的数字段无法正确排序，抛出 ``SortKeyOverflowError``。

比较按码点顺序进行，区分重音字符。
"""

from __future__ import annotations

import re
from typing import Protocol

from app.packages.query_tree.core.constants import SORT_KEY_PAD_WIDTH
from app.packages.query_tree.core.exceptions import SortKeyOverflowError

_DIGIT_RUN = re.compile(r"[0-9]+")


class HasSortKey(Protocol):
    id: str
    sort_key: str


def _pad_digits(match: re.Match[str], width: int) -> str:
    digits = match.group(0).lstrip("0") or "0"
    if len(digits) > width:
        raise SortKeyOverflowError(
            f"Number '{match.group(0)}' is longer than {width} digits and cannot be sorted"
        )
    return digits.rjust(width, "0")


def encode(name: str, *, width: int = SORT_KEY_PAD_WIDTH) -> str:
    """返回 ``name`` 的排序键。"""
    lowered = (name or "").lower()
    return _DIGIT_RUN.sub(lambda m: _pad_digits(m, width), lowered)


def compare(a: str, b: str) -> int:
    """三路比较两个排序键，返回 -1、0 或 1。"""
    if a == b:
        return 0
    return -1 if a < b else 1


def is_encodable(name: str, *, width: int = SORT_KEY_PAD_WIDTH) -> bool:
    try:
        encode(name, width=width)
    except SortKeyOverflowError:
        return False
    return True


def sort_key_of(node: HasSortKey) -> str:
    """供 ``sorted`` 的 ``key=`` 使用；键相同时保持原有顺序。"""
    return node.sort_key


def insert_index(keys: list[str], key: str) -> int:
    """``key`` 插入升序列表 ``keys`` 的位置。

    与已有键相同时排在其后，与存储按插入顺序打破平局的规则一致。
    """
    lo, hi = 0, len(keys)
    while lo < hi:
        mid = (lo + hi) // 2
        if compare(key, keys[mid]) < 0:
            hi = mid
        else:
            lo = mid + 1
    return lo
