"""扁平化树视图的虚拟滚动窗口。

行高固定，本模块均为纯函数：可见区间只由
``(scroll_offset, row_height, viewport_height, overscan, total_rows)`` 计算得出。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, TypeVar

T = TypeVar("T")

DEFAULT_ROW_HEIGHT = 28
DEFAULT_OVERSCAN = 8


@dataclass(frozen=True)
class VirtualWindow:
    """需要渲染的左闭右开行区间 ``[start, end)``。"""

    start: int
    end: int
    offset_top: int
    total_height: int

    @property
    def count(self) -> int:
        return self.end - self.start

    def __contains__(self, index: object) -> bool:
        return isinstance(index, int) and self.start <= index < self.end


def compute_window(
    scroll_offset: float,
    row_height: int = DEFAULT_ROW_HEIGHT,
    viewport_height: float = 0,
    overscan: int = DEFAULT_OVERSCAN,
    total_rows: int = 0,
) -> VirtualWindow:
    """填满 ``scroll_offset`` 处视口所需的行，两侧各额外保留 ``overscan`` 行。"""
    if row_height <= 0:
        raise ValueError("row_height must be positive")
    if overscan < 0:
        raise ValueError("overscan must not be negative")
    total_rows = max(0, int(total_rows))
    total_height = total_rows * row_height
    if total_rows == 0:
        return VirtualWindow(0, 0, 0, 0)

    max_offset = max(0, total_height - viewport_height)
    offset = min(max(0.0, float(scroll_offset)), float(max_offset))

    first_visible = min(int(offset // row_height), total_rows - 1)
    if viewport_height > 0:
        last_visible = int((offset + viewport_height - 1) // row_height)
    else:
        last_visible = first_visible
    last_visible = min(max(last_visible, first_visible), total_rows - 1)

    start = max(0, first_visible - overscan)
    end = min(total_rows, last_visible + 1 + overscan)
    return VirtualWindow(start=start, end=end, offset_top=start * row_height, total_height=total_height)


def slice_rows(rows: Sequence[T], window: VirtualWindow) -> list[T]:
    return list(rows[window.start:window.end])


def scroll_offset_for_index(
    index: int,
    scroll_offset: float,
    row_height: int = DEFAULT_ROW_HEIGHT,
    viewport_height: float = 0,
    total_rows: int = 0,
    align: str = "auto",
) -> float:
    """使第 ``index`` 行进入视口的滚动偏移。

    ``auto``：该行已完整可见时保持当前偏移，否则以最小距离滚动，使其贴住顶部或底部。
    """
    if align not in ("auto", "start", "center", "end"):
        raise ValueError(f"Unknown align {align!r}")
    if total_rows <= 0:
        return 0.0
    index = max(0, min(index, total_rows - 1))
    row_top = index * row_height
    row_bottom = row_top + row_height
    max_offset = max(0.0, float(total_rows * row_height - viewport_height))

    if align == "auto":
        if row_top >= scroll_offset and row_bottom <= scroll_offset + viewport_height:
            target = float(scroll_offset)
        elif row_top < scroll_offset:
            target = float(row_top)
        else:
            target = float(row_bottom - viewport_height)
    elif align == "start":
        target = float(row_top)
    elif align == "end":
        target = float(row_bottom - viewport_height)
    else:
        target = row_top - (viewport_height - row_height) / 2
    return min(max(0.0, target), max_offset)
