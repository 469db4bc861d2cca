"""
已安装模组注册表

列出 {install_dir}/mods 下的模组，并对启用清单执行启用、禁用、排序、卸载操作。
所有操作返回 OperationResult，不向外抛出异常。
"""

import asyncio
import base64
import json
import os
import shutil
import sys
from typing import Iterable, List, Optional

import aiofiles
from loguru import logger

from gamefetch.exceptions import GameFetchError, ModError, PreconditionError
from gamefetch.mods.descriptor import DESCRIPTOR_FILENAME, read_descriptor
from gamefetch.mods.ledger import ModLedger
from gamefetch.mods.state import ModState
from gamefetch.models import InstalledModView, LedgerState, OperationResult


MODS_DIRNAME = "mods"
MOD_MANIFEST_FILENAME = "manifest.json"
ICON_FILENAME = "icon.png"


def mods_dir_for(install_dir: str) -> str:
    return os.path.join(install_dir, MODS_DIRNAME)


def is_safe_folder_name(name: str) -> bool:
    """只允许 mods 目录下的一级目录名"""
    return (
        bool(name)
        and name not in (".", "..")
        and "/" not in name
        and "\\" not in name
        and os.path.basename(name) == name
    )


def sort_views(views: List[InstalledModView], ledger: LedgerState) -> None:
    """清单中的顺序优先，未登记的排在最后，其次按名称（不区分大小写）"""
    positions = {mod_id: index for index, mod_id in enumerate(ledger.order)}
    views.sort(
        key=lambda view: (positions.get(view.id, sys.maxsize), view.name.casefold())
    )


class ModRegistry:
    """已安装模组注册表"""

    def __init__(self, state: Optional[ModState] = None, ledger: Optional[ModLedger] = None):
        self.state = state or ModState()
        self.ledger = ledger or ModLedger()

    async def list_installed(self, install_dir: str) -> OperationResult:
        """
        列出已安装模组

        Returns:
            OperationResult，value 为按清单顺序排序的 InstalledModView 列表
        """
        try:
            views = await self._list(install_dir)
            return OperationResult.success(views)
        except (GameFetchError, OSError) as e:
            logger.error(f"[模组] 列出模组失败: {e}")
            return OperationResult.failure(e)

    async def _list(self, install_dir: str) -> List[InstalledModView]:
        self._require_install_dir(install_dir)
        mods_dir = mods_dir_for(install_dir)
        ledger = await self.ledger.read(mods_dir)
        if not os.path.isdir(mods_dir):
            return []

        views = []
        for folder in sorted(os.listdir(mods_dir)):
            mod_path = os.path.join(mods_dir, folder)
            if not os.path.isdir(mod_path):
                continue
            views.append(await self._build_view(mod_path, folder, ledger))

        sort_views(views, ledger)
        return views

    async def _build_view(
        self, mod_path: str, folder: str, ledger: LedgerState
    ) -> InstalledModView:
        manifest_path = os.path.join(mod_path, MOD_MANIFEST_FILENAME)
        manifest = await self._read_manifest(manifest_path)
        descriptor = await read_descriptor(os.path.join(mod_path, DESCRIPTOR_FILENAME))

        mod_id = descriptor.id or manifest.get("name") or folder
        return InstalledModView(
            id=mod_id,
            name=manifest.get("name") or descriptor.name or folder,
            folder=folder,
            version=manifest.get("version_number"),
            description=manifest.get("description") or "",
            enabled=bool(ledger.enabled.get(mod_id, False)),
            has_manifest=os.path.isfile(manifest_path),
            icon_data_url=await self._read_icon(os.path.join(mod_path, ICON_FILENAME)),
        )

    @staticmethod
    async def _read_manifest(path: str) -> dict:
        try:
            async with aiofiles.open(path, "r", encoding="utf-8-sig") as f:
                data = json.loads(await f.read())
        except FileNotFoundError:
            return {}
        except (ValueError, UnicodeDecodeError) as e:
            logger.warning(f"[模组] 无法解析 {path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    @staticmethod
    async def _read_icon(path: str) -> Optional[str]:
        try:
            async with aiofiles.open(path, "rb") as f:
                data = await f.read()
        except FileNotFoundError:
            return None
        return "data:image/png;base64," + base64.b64encode(data).decode("ascii")

    async def icon_data_url(self, install_dir: str, folder: str) -> OperationResult:
        """读取单个模组的图标"""
        try:
            if not is_safe_folder_name(folder):
                raise ModError(f"无效的模组目录名: {folder}")
            path = os.path.join(mods_dir_for(install_dir), folder, ICON_FILENAME)
            icon = await self._read_icon(path)
            if icon is None:
                raise ModError(f"图标不存在: {path}")
            return OperationResult.success(icon)
        except (GameFetchError, OSError) as e:
            return OperationResult.failure(e)

    async def set_enabled(
        self, install_dir: str, mod_id: str, enabled: bool
    ) -> OperationResult:
        """启用或禁用模组（按模组 ID）"""
        try:
            self._require_install_dir(install_dir)
            if not isinstance(mod_id, str) or not mod_id:
                raise ModError("模组 ID 不能为空")
            mods_dir = mods_dir_for(install_dir)
            async with self.state.ledger_lock:
                ledger = await self.ledger.read(mods_dir)
                entries = dict(ledger.enabled)
                entries[mod_id] = bool(enabled)
                await self.ledger.write(mods_dir, ledger.order, entries)
            logger.info(f"[模组] '{mod_id}' 已{'启用' if enabled else '禁用'}")
            return OperationResult.success()
        except (GameFetchError, OSError) as e:
            logger.error(f"[模组] 修改 '{mod_id}' 状态失败: {e}")
            return OperationResult.failure(e)

    async def reorder(
        self,
        install_dir: str,
        ordered_ids: Iterable[str],
        prune_missing: bool = False,
    ) -> OperationResult:
        """
        调整加载顺序

        未出现在 ordered_ids 中的条目保持原相对顺序追加在后面。
        prune_missing 为 True 时，未列出且没有对应目录的孤立条目会被移除。

        Returns:
            OperationResult，value 为写入后的顺序
        """
        try:
            self._require_install_dir(install_dir)
            mods_dir = mods_dir_for(install_dir)
            async with self.state.ledger_lock:
                ledger = await self.ledger.read(mods_dir)
                entries = dict(ledger.enabled)
                requested = [
                    mod_id
                    for mod_id in (ordered_ids or [])
                    if isinstance(mod_id, str) and mod_id in entries
                ]
                if prune_missing:
                    installed = await self._installed_ids(mods_dir)
                    keep = set(requested) | installed
                    for mod_id in list(entries):
                        if mod_id not in keep:
                            logger.debug(f"[模组] 移除孤立条目: {mod_id}")
                            del entries[mod_id]
                final_order = await self.ledger.write(mods_dir, requested, entries)
            return OperationResult.success(final_order)
        except (GameFetchError, OSError) as e:
            logger.error(f"[模组] 调整顺序失败: {e}")
            return OperationResult.failure(e)

    async def _installed_ids(self, mods_dir: str) -> set[str]:
        if not os.path.isdir(mods_dir):
            return set()
        ledger = LedgerState()
        ids = set()
        for folder in os.listdir(mods_dir):
            mod_path = os.path.join(mods_dir, folder)
            if os.path.isdir(mod_path):
                ids.add((await self._build_view(mod_path, folder, ledger)).id)
        return ids

    async def uninstall(self, install_dir: str, folder: str) -> OperationResult:
        """
        删除模组目录

        不修改清单；孤立条目在之后的 reorder(prune_missing=True) 中清理。
        """
        try:
            self._require_install_dir(install_dir)
            if not is_safe_folder_name(folder):
                raise ModError(f"无效的模组目录名: {folder}")
            target = os.path.join(mods_dir_for(install_dir), folder)
            if os.path.exists(target):
                await asyncio.to_thread(shutil.rmtree, target)
            logger.info(f"[模组] 已卸载: {folder}")
            return OperationResult.success()
        except (GameFetchError, OSError) as e:
            logger.error(f"[模组] 卸载 '{folder}' 失败: {e}")
            return OperationResult.failure(e)

    @staticmethod
    def _require_install_dir(install_dir: str) -> None:
        if not install_dir or not os.path.isdir(install_dir):
            raise PreconditionError(
                f"安装目录不存在: {install_dir}", context={"install_dir": install_dir}
            )
