"""
配置数据模型

对应配置文件中的 [game]、[download]、[mods] 三个小节。
"""

from dataclasses import dataclass, field
from typing import List, Optional

from gamefetch.exceptions import ConfigValidationError


DEFAULT_TRUSTED_HOSTS = ["thunderstore.io"]
DEFAULT_CATALOG_URL = "https://thunderstore.io/c/r5valkyrie/api/v1"
DEFAULT_USER_AGENT = "GameFetch/0.1"


def _positive_int(section: str, key: str, value, minimum: int = 1) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise ConfigValidationError(
            f"{section}.{key} 必须是不小于 {minimum} 的整数",
            context={"value": value},
        )
    return value


def _non_negative_number(section: str, key: str, value) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise ConfigValidationError(
            f"{section}.{key} 必须是非负数", context={"value": value}
        )
    return float(value)


@dataclass
class GameConfig:
    """游戏安装配置"""

    base_url: str = ""
    install_dir: str = ""
    include_optional: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "GameConfig":
        return cls(
            base_url=str(data.get("base_url", "")),
            install_dir=str(data.get("install_dir", "")),
            include_optional=bool(data.get("include_optional", False)),
        )


@dataclass
class DownloadConfig:
    """下载引擎配置"""

    file_concurrency: int = 4
    part_concurrency: int = 4
    connect_timeout: float = 45.0
    read_timeout: float = 90.0
    max_attempts: int = 5
    retry_delay: float = 2.0
    max_retry_delay: float = 10.0
    max_speed: int = 0
    cancel_on_failure: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "DownloadConfig":
        defaults = cls()
        return cls(
            file_concurrency=_positive_int(
                "download",
                "file_concurrency",
                data.get("file_concurrency", defaults.file_concurrency),
            ),
            part_concurrency=_positive_int(
                "download",
                "part_concurrency",
                data.get("part_concurrency", defaults.part_concurrency),
            ),
            connect_timeout=_non_negative_number(
                "download",
                "connect_timeout",
                data.get("connect_timeout", defaults.connect_timeout),
            ),
            read_timeout=_non_negative_number(
                "download",
                "read_timeout",
                data.get("read_timeout", defaults.read_timeout),
            ),
            max_attempts=_positive_int(
                "download", "max_attempts", data.get("max_attempts", defaults.max_attempts)
            ),
            retry_delay=_non_negative_number(
                "download", "retry_delay", data.get("retry_delay", defaults.retry_delay)
            ),
            max_retry_delay=_non_negative_number(
                "download",
                "max_retry_delay",
                data.get("max_retry_delay", defaults.max_retry_delay),
            ),
            max_speed=int(
                _non_negative_number(
                    "download", "max_speed", data.get("max_speed", defaults.max_speed)
                )
            ),
            cancel_on_failure=bool(
                data.get("cancel_on_failure", defaults.cancel_on_failure)
            ),
        )


@dataclass
class ModsConfig:
    """模组管理配置"""

    trusted_hosts: List[str] = field(default_factory=lambda: list(DEFAULT_TRUSTED_HOSTS))
    max_redirects: int = 5
    catalog_url: str = DEFAULT_CATALOG_URL
    user_agent: str = DEFAULT_USER_AGENT

    @classmethod
    def from_dict(cls, data: dict) -> "ModsConfig":
        hosts = data.get("trusted_hosts", DEFAULT_TRUSTED_HOSTS)
        if not isinstance(hosts, list) or not all(isinstance(h, str) for h in hosts):
            raise ConfigValidationError("mods.trusted_hosts 必须是字符串列表")
        return cls(
            trusted_hosts=[h.lower() for h in hosts],
            max_redirects=_positive_int(
                "mods", "max_redirects", data.get("max_redirects", 5), minimum=0
            ),
            catalog_url=str(data.get("catalog_url", DEFAULT_CATALOG_URL)),
            user_agent=str(data.get("user_agent", DEFAULT_USER_AGENT)),
        )


@dataclass
class GameFetchConfig:
    """GameFetch 总配置"""

    game: GameConfig = field(default_factory=GameConfig)
    download: DownloadConfig = field(default_factory=DownloadConfig)
    mods: ModsConfig = field(default_factory=ModsConfig)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "GameFetchConfig":
        data = data or {}
        for section in ("game", "download", "mods"):
            if not isinstance(data.get(section, {}), dict):
                raise ConfigValidationError(f"配置小节 [{section}] 必须是表/对象")
        return cls(
            game=GameConfig.from_dict(data.get("game", {})),
            download=DownloadConfig.from_dict(data.get("download", {})),
            mods=ModsConfig.from_dict(data.get("mods", {})),
        )
