"""
模组状态注册表

每个进程一个实例，注入到 ModInstaller 和 ModRegistry：
记录正在安装的模组键和模组目录的监视任务，并串行化所有清单的读-改-写。
"""

import asyncio


class ModState:
    """进程内模组状态"""

    def __init__(self):
        self._installing: set[str] = set()
        self.ledger_lock = asyncio.Lock()
        self.watchers: dict[str, asyncio.Task] = {}

    def begin_install(self, key: str) -> bool:
        """登记安装；同一个键已在安装中时返回 False"""
        if key in self._installing:
            return False
        self._installing.add(key)
        return True

    def end_install(self, key: str) -> None:
        self._installing.discard(key)

    def is_installing(self, key: str) -> bool:
        return key in self._installing
