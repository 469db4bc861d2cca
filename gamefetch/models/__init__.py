"""
GameFetch 数据模型包

包含配置模型、校验清单模型、进度事件与模组模型定义。
"""

from gamefetch.models.config import (
    GameConfig,
    DownloadConfig,
    ModsConfig,
    GameFetchConfig,
)
from gamefetch.models.manifest import (
    PartEntry,
    FileEntry,
    Manifest,
    AcquisitionStatus,
    AcquisitionResult,
    normalize_relative,
    path_key,
)
from gamefetch.models.events import (
    EventType,
    ProgressEvent,
    ProgressCallback,
    InstallProgress,
    InstallCallback,
)
from gamefetch.models.mods import (
    LedgerState,
    ModDescriptor,
    InstalledModView,
    OperationResult,
)

__all__ = [
    # 配置模型
    "GameConfig",
    "DownloadConfig",
    "ModsConfig",
    "GameFetchConfig",
    # 清单模型
    "PartEntry",
    "FileEntry",
    "Manifest",
    "AcquisitionStatus",
    "AcquisitionResult",
    "normalize_relative",
    "path_key",
    # 事件模型
    "EventType",
    "ProgressEvent",
    "ProgressCallback",
    "InstallProgress",
    "InstallCallback",
    # 模组模型
    "LedgerState",
    "ModDescriptor",
    "InstalledModView",
    "OperationResult",
]
