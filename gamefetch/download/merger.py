"""
分片合并器

按数组顺序把分片写入同一个输出流，整个过程中只打开、关闭一次目标文件。
"""

import os
from typing import Optional, Sequence

import aiofiles
from loguru import logger

from gamefetch.download.progress import ProgressEmitter
from gamefetch.models import EventType


class PartMerger:
    """分片合并器"""

    CHUNK_SIZE = 1024 * 1024

    def __init__(self, emitter: Optional[ProgressEmitter] = None):
        self.emitter = emitter or ProgressEmitter()

    async def merge(
        self, path: str, part_paths: Sequence[str], destination: str
    ) -> None:
        """
        合并分片

        Args:
            path: 清单中的相对路径（事件键）
            part_paths: 已校验的临时分片，顺序即字节顺序
            destination: 输出文件
        """
        total_parts = len(part_paths)
        self.emitter.emit(EventType.MERGE_START, path, total_parts=total_parts)
        logger.debug(f"[合并] {path}: {total_parts} 个分片")

        async with aiofiles.open(destination, "wb") as out:
            for index, part_path in enumerate(part_paths):
                self.emitter.emit(
                    EventType.MERGE_PART, path, part=index, total_parts=total_parts
                )
                async with aiofiles.open(part_path, "rb") as src:
                    while True:
                        data = await src.read(self.CHUNK_SIZE)
                        if not data:
                            break
                        await out.write(data)
                os.remove(part_path)

        self.emitter.emit(EventType.MERGE_DONE, path, total_parts=total_parts)
