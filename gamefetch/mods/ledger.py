"""
模组启用清单 (mods/mods.vdf)

文件格式::

    "ModList"
    {
        "author.mod"        "1"
        "other.mod"         "0"
    }

读取时宽松：在整个文件里扫描 "键" "0/1" 对，忽略其余内容；
写入时严格：固定格式、制表符缩进、字面量 0/1，顺序只取自显式顺序列表。
"""

import os
import re
from typing import Dict, Iterable, List, Optional

import aiofiles
from loguru import logger

from gamefetch.models import LedgerState


LEDGER_FILENAME = "mods.vdf"
LEDGER_BLOCK = "ModList"

_ENTRY_PATTERN = re.compile(r'"([^"]+)"\s*"([01])"')


def parse_ledger(text: str) -> LedgerState:
    """
    宽松解析清单文本

    重复出现的键保留首次出现的位置，启用状态取最后一次的值。
    """
    state = LedgerState()
    for match in _ENTRY_PATTERN.finditer(text):
        key, flag = match.group(1), match.group(2)
        if not key or key == LEDGER_BLOCK:
            continue
        if key not in state.enabled:
            state.order.append(key)
        state.enabled[key] = flag == "1"
    return state


def merge_order(
    requested: Optional[Iterable[str]],
    previous: Iterable[str],
    enabled: Dict[str, bool],
) -> List[str]:
    """
    稳定合并顺序

    先是 requested 中存在于 enabled 的键，其次是 previous 中剩余的键（保持原相对顺序），
    最后是 enabled 中全新的键。
    """
    final: List[str] = []
    seen: set[str] = set()
    for group in (requested or (), previous, enabled.keys()):
        for key in group:
            if key in enabled and key not in seen:
                seen.add(key)
                final.append(key)
    return final


def render_ledger(order: List[str], enabled: Dict[str, bool]) -> str:
    lines = [f'"{LEDGER_BLOCK}"', "{"]
    for key in order:
        lines.append(f'\t"{key}"\t\t"{"1" if enabled.get(key) else "0"}"')
    lines.append("}")
    return "\n".join(lines)


def _writable_key(key: str) -> bool:
    return bool(key) and not any(ch in key for ch in ('"', "\n", "\r"))


class ModLedger:
    """mods.vdf 读写"""

    @staticmethod
    def path(mods_dir: str) -> str:
        return os.path.join(mods_dir, LEDGER_FILENAME)

    async def read(self, mods_dir: str) -> LedgerState:
        """读取清单；文件不存在时返回空清单"""
        path = self.path(mods_dir)
        try:
            async with aiofiles.open(path, "r", encoding="utf-8", errors="replace") as f:
                text = await f.read()
        except FileNotFoundError:
            return LedgerState()
        return parse_ledger(text)

    async def write(
        self,
        mods_dir: str,
        order: Optional[Iterable[str]],
        enabled: Dict[str, bool],
    ) -> List[str]:
        """
        写入清单

        Args:
            mods_dir: mods 目录
            order: 期望的顺序（可为部分列表）
            enabled: 需要写入的全部条目及启用状态

        Returns:
            实际写入的顺序
        """
        previous = await self.read(mods_dir)

        entries: Dict[str, bool] = {}
        for key, value in enabled.items():
            if _writable_key(key):
                entries[key] = bool(value)
            else:
                logger.warning(f"[模组] 忽略无法写入清单的模组 ID: {key!r}")

        final_order = merge_order(order, previous.order, entries)

        os.makedirs(mods_dir, exist_ok=True)
        path = self.path(mods_dir)
        temp = f"{path}.tmp"
        async with aiofiles.open(temp, "w", encoding="utf-8", newline="\n") as f:
            await f.write(render_ledger(final_order, entries))
        os.replace(temp, path)

        logger.debug(f"[模组] 已写入 {LEDGER_FILENAME}: {len(final_order)} 个条目")
        return final_order
