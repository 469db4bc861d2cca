"""
进度事件模型

所有事件都以清单中的相对路径为键，消费者按路径关联事件，而不是按顺序。
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional


class EventType(Enum):
    """进度事件类型"""

    START = "start"
    FILE = "file"
    PART = "part"
    PART_RESET = "part:reset"
    MERGE_START = "merge:start"
    MERGE_PART = "merge:part"
    MERGE_DONE = "merge:done"
    VERIFY = "verify"
    SKIP = "skip"
    DONE = "done"
    ERROR = "error"
    BYTES = "bytes"
    BYTES_TOTAL = "bytes:total"


@dataclass
class ProgressEvent:
    """进度事件"""

    type: EventType
    path: str = ""
    index: Optional[int] = None
    total: Optional[int] = None
    completed: Optional[int] = None
    received: int = 0
    size: int = 0
    part: Optional[int] = None
    total_parts: Optional[int] = None
    delta: int = 0
    message: str = ""

    @property
    def fraction(self) -> Optional[float]:
        """下载进度比例，总大小未知时为 None"""
        if self.size <= 0:
            return None
        return min(1.0, self.received / self.size)


ProgressCallback = Callable[[ProgressEvent], None]


@dataclass
class InstallProgress:
    """模组安装进度"""

    key: str
    phase: str  # downloading, extracting, done
    received: int = 0
    total: int = 0


InstallCallback = Callable[[InstallProgress], None]
