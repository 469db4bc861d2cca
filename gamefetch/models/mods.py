"""
模组数据模型
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class LedgerState:
    """
    mods.vdf 的内存表示

    order 是唯一可信的顺序来源；enabled 只用于查询启用状态。
    """

    order: List[str] = field(default_factory=list)
    enabled: Dict[str, bool] = field(default_factory=dict)

    def index_of(self, mod_id: str) -> Optional[int]:
        try:
            return self.order.index(mod_id)
        except ValueError:
            return None


@dataclass
class ModDescriptor:
    """mod.vdf 中的 id 与 name"""

    id: Optional[str] = None
    name: Optional[str] = None


@dataclass
class InstalledModView:
    """已安装模组的只读视图，每次 list 时重建"""

    id: str
    name: str
    folder: str
    version: Optional[str] = None
    description: str = ""
    enabled: bool = False
    has_manifest: bool = False
    icon_data_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class OperationResult:
    """模组操作的结构化结果，不向外抛出异常"""

    ok: bool = True
    error: Optional[str] = None
    value: Any = None
    code: Optional[str] = None

    @classmethod
    def success(cls, value: Any = None) -> "OperationResult":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: Any) -> "OperationResult":
        """error 为 GameFetchError 时同时保留错误代码"""
        return cls(ok=False, error=str(error), code=getattr(error, "code", None))

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"ok": self.ok}
        if self.error is not None:
            result["error"] = self.error
        if self.code is not None:
            result["code"] = self.code
        if self.value is not None:
            result["value"] = self.value
        return result
