"""
模组目录监视

定时扫描 {install_dir}/mods 的目录项，发生变化并稳定下来后通知一次。
同一目录只会有一个监视任务，任务登记在注入的 ModState 上。
"""

import asyncio
import os
from typing import Callable, Dict, Optional, Tuple

from loguru import logger

from gamefetch.mods.registry import mods_dir_for
from gamefetch.mods.state import ModState
from gamefetch.models import OperationResult


ChangeCallback = Callable[[str], None]

DEFAULT_INTERVAL = 0.5
DEFAULT_DEBOUNCE = 0.3


def snapshot(mods_dir: str) -> Dict[str, Tuple[int, int]]:
    """目录项 -> (mtime_ns, size)；子目录的 mtime 反映其直接子项的增删"""
    entries = {}
    try:
        with os.scandir(mods_dir) as it:
            for entry in it:
                try:
                    stat = entry.stat()
                except OSError:
                    continue
                entries[entry.name] = (stat.st_mtime_ns, stat.st_size)
    except OSError:
        return {}
    return entries


class ModWatcher:
    """模组目录监视器"""

    def __init__(
        self,
        state: Optional[ModState] = None,
        interval: float = DEFAULT_INTERVAL,
        debounce: float = DEFAULT_DEBOUNCE,
    ):
        self.state = state or ModState()
        self.interval = interval
        self.debounce = debounce

    async def watch(self, install_dir: str, on_change: ChangeCallback) -> OperationResult:
        """
        开始监视模组目录

        mods 目录不存在或已在监视中时直接返回成功。
        """
        mods_dir = mods_dir_for(install_dir)
        if not os.path.isdir(mods_dir):
            return OperationResult.success()
        if mods_dir in self.state.watchers:
            return OperationResult.success()

        initial = await asyncio.to_thread(snapshot, mods_dir)
        task = asyncio.create_task(
            self._poll(install_dir, mods_dir, initial, on_change),
            name=f"mods-watch-{os.path.basename(install_dir)}",
        )
        self.state.watchers[mods_dir] = task
        logger.debug(f"[监视] 开始监视 {mods_dir}")
        return OperationResult.success()

    async def unwatch(self, install_dir: str) -> OperationResult:
        mods_dir = mods_dir_for(install_dir)
        task = self.state.watchers.pop(mods_dir, None)
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            logger.debug(f"[监视] 停止监视 {mods_dir}")
        return OperationResult.success()

    async def close(self) -> None:
        """停止全部监视任务"""
        tasks = list(self.state.watchers.values())
        self.state.watchers.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _poll(
        self,
        install_dir: str,
        mods_dir: str,
        last: Dict[str, Tuple[int, int]],
        on_change: ChangeCallback,
    ) -> None:
        loop = asyncio.get_running_loop()
        changed_at = None
        while True:
            await asyncio.sleep(self.interval)
            current = await asyncio.to_thread(snapshot, mods_dir)
            if current != last:
                last = current
                changed_at = loop.time()
                continue
            if changed_at is not None and loop.time() - changed_at >= self.debounce:
                changed_at = None
                self._notify(install_dir, on_change)

    @staticmethod
    def _notify(install_dir: str, on_change: ChangeCallback) -> None:
        try:
            on_change(install_dir)
        except Exception as e:
            logger.warning(f"[监视] 变更回调异常 ({install_dir}): {e}")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
