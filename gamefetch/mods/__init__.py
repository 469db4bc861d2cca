"""
GameFetch 模组管理

包含启用清单读写、已安装模组注册表、模组安装器与目录监视。
"""

from gamefetch.mods.state import ModState
from gamefetch.mods.ledger import ModLedger
from gamefetch.mods.registry import ModRegistry
from gamefetch.mods.installer import ModInstaller
from gamefetch.mods.watcher import ModWatcher

__all__ = [
    "ModState",
    "ModLedger",
    "ModRegistry",
    "ModInstaller",
    "ModWatcher",
]
