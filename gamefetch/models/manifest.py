"""
校验清单数据模型

定义 checksums.json 中的文件条目、分片条目以及单文件获取结果。
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

from gamefetch.exceptions import ManifestError


def normalize_relative(path: str) -> str:
    """将相对路径统一为正斜杠形式并去掉开头的斜杠"""
    return str(path or "").replace("\\", "/").lstrip("/")


def path_key(path: str) -> str:
    """用于去重的路径键（不区分大小写）"""
    return str(path or "").replace("\\", "/").lower()


def parse_size(data: dict) -> int:
    """读取条目的 size 字段，缺省为 0"""
    value = data.get("size") or 0
    try:
        size = int(value)
    except (TypeError, ValueError) as e:
        raise ManifestError(
            f"size 无效: {data.get('path')}", context={"size": value}
        ) from e
    if size < 0:
        raise ManifestError(f"size 无效: {data.get('path')}", context={"size": value})
    return size


@dataclass(frozen=True)
class PartEntry:
    """分片条目，按数组顺序合并"""

    path: str
    checksum: str
    size: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> "PartEntry":
        if not isinstance(data, dict) or not data.get("path"):
            raise ManifestError("分片条目缺少 path", context={"entry": data})
        return cls(
            path=str(data["path"]),
            checksum=str(data.get("checksum", "")),
            size=parse_size(data),
        )


@dataclass(frozen=True)
class FileEntry:
    """
    文件条目

    如果存在 parts，checksum/size 描述的是合并后的完整文件。
    """

    path: str
    checksum: str
    size: int = 0
    optional: bool = False
    parts: Tuple[PartEntry, ...] = ()

    @property
    def is_multipart(self) -> bool:
        return len(self.parts) > 0

    @property
    def expected_bytes(self) -> int:
        """用于进度统计的预计字节数"""
        if self.size > 0:
            return self.size
        return sum(part.size for part in self.parts)

    @classmethod
    def from_dict(cls, data: dict) -> "FileEntry":
        if not isinstance(data, dict) or not data.get("path"):
            raise ManifestError("文件条目缺少 path", context={"entry": data})
        parts = data.get("parts") or []
        if not isinstance(parts, list):
            raise ManifestError(f"parts 必须是列表: {data['path']}", context={"entry": data})
        return cls(
            path=str(data["path"]),
            checksum=str(data.get("checksum", "")),
            size=parse_size(data),
            optional=bool(data.get("optional", False)),
            parts=tuple(PartEntry.from_dict(part) for part in parts),
        )


@dataclass(frozen=True)
class Manifest:
    """校验清单，获取后不可变"""

    files: Tuple[FileEntry, ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, data: dict) -> "Manifest":
        if not isinstance(data, dict):
            raise ManifestError("校验清单格式错误：根节点必须是对象")
        files = data.get("files") or []
        if not isinstance(files, list):
            raise ManifestError("校验清单格式错误：files 必须是数组")
        return cls(files=tuple(FileEntry.from_dict(entry) for entry in files))

    def select(self, include_optional: bool = False) -> list[FileEntry]:
        """
        按可选性过滤并按路径去重

        Args:
            include_optional: 是否包含可选文件

        Returns:
            本次运行固定的文件列表
        """
        seen: set[str] = set()
        selected = []
        for entry in self.files:
            if entry.optional and not include_optional:
                continue
            key = path_key(entry.path)
            if not key or key in seen:
                continue
            seen.add(key)
            selected.append(entry)
        return selected


class AcquisitionStatus(Enum):
    """单文件获取结果"""

    SKIPPED = "skipped"
    DOWNLOADED = "downloaded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class AcquisitionResult:
    """单个 FileEntry 的获取结果，仅用于事件和计数"""

    path: str
    status: AcquisitionStatus
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.status in (AcquisitionStatus.SKIPPED, AcquisitionStatus.DOWNLOADED)

    @property
    def reason(self) -> str:
        return str(self.error) if self.error else ""
