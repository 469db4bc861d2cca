"""
GameFetch 统一异常体系

每个异常类声明自己的默认错误代码：
E1xx 配置，E2xx 校验清单，E3xx 下载，E4xx 前置条件，E5xx 模组。
取消 (DownloadCancelled) 单独成类，不属于 DownloadError，
因此 ``except DownloadError`` 永远不会把用户主动停止当作失败。
"""

from typing import Any, Dict, Optional


class GameFetchError(Exception):
    """GameFetch 基础异常类"""

    default_code = "E000"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.context = dict(context or {})

    def to_dict(self) -> Dict[str, Any]:
        """序列化为字典，供 JSON 输出和调试日志使用"""
        return {
            "type": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "context": self.context,
        }

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


# 配置


class ConfigError(GameFetchError):
    """配置缺失或不可用"""

    default_code = "E100"


class ConfigParseError(ConfigError):
    """配置文件无法解析"""

    default_code = "E101"


class ConfigValidationError(ConfigError):
    """配置值类型或范围错误"""

    default_code = "E102"


# 校验清单


class ManifestError(GameFetchError):
    """校验清单获取或解析错误"""

    default_code = "E200"


# 下载


class DownloadError(GameFetchError):
    """单个文件获取失败"""

    default_code = "E300"


class TransportError(DownloadError):
    """网络传输错误（重试耗尽或不可重试）"""

    default_code = "E301"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        status: Optional[int] = None,
        retryable: bool = False,
    ):
        super().__init__(message, code, context)
        self.status = status
        self.retryable = retryable
        if status is not None:
            self.context["status_code"] = status


class IntegrityError(DownloadError):
    """校验和或大小不匹配，永不自动重试"""

    default_code = "E302"


class DownloadFileError(DownloadError):
    """本地文件读写失败或路径非法"""

    default_code = "E303"


class DownloadCancelled(GameFetchError):
    """用户取消了下载"""

    default_code = "E310"


# 前置条件


class PreconditionError(GameFetchError):
    """前置条件不满足，未进行任何 I/O"""

    default_code = "E400"


class UntrustedSourceError(PreconditionError):
    """下载地址不在受信任主机列表中"""

    default_code = "E401"


# 模组


class ModError(GameFetchError):
    """模组管理相关错误"""

    default_code = "E500"


class ModInstallError(ModError):
    """模组包下载失败"""

    default_code = "E501"


class ArchiveError(ModError):
    """模组压缩包无法解压"""

    default_code = "E502"


__all__ = [
    "GameFetchError",
    "ConfigError",
    "ConfigParseError",
    "ConfigValidationError",
    "ManifestError",
    "DownloadError",
    "TransportError",
    "IntegrityError",
    "DownloadFileError",
    "DownloadCancelled",
    "PreconditionError",
    "UntrustedSourceError",
    "ModError",
    "ModInstallError",
    "ArchiveError",
]
