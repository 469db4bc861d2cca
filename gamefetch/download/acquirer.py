"""
单文件获取器

对清单中的一个条目：已存在且校验通过则跳过；否则整文件下载，
或多分片并发下载、逐片校验、按顺序合并，最后校验合并结果。
"""

import asyncio
import os
from typing import Optional

from loguru import logger

from gamefetch.download.cancel import CancelToken
from gamefetch.download.merger import PartMerger
from gamefetch.download.progress import ByteCounter, ProgressEmitter
from gamefetch.download.transport import RetryingTransport
from gamefetch.download.verifier import FileVerifier
from gamefetch.exceptions import (
    DownloadCancelled,
    DownloadError,
    DownloadFileError,
    IntegrityError,
)
from gamefetch.models import (
    AcquisitionResult,
    AcquisitionStatus,
    EventType,
    FileEntry,
    normalize_relative,
)


def build_url(base_url: str, relative: str) -> str:
    """拼接下载地址，路径分隔符统一为正斜杠"""
    return f"{base_url.rstrip('/')}/{normalize_relative(relative)}"


def resolve_target(target_dir: str, relative: str) -> str:
    """计算本地目标路径，拒绝跳出安装目录的路径"""
    rel = normalize_relative(relative)
    target = os.path.normpath(os.path.join(target_dir, *rel.split("/")))
    root = os.path.abspath(target_dir)
    if os.path.commonpath([root, os.path.abspath(target)]) != root:
        raise DownloadFileError(
            f"路径超出安装目录: {relative}", context={"path": relative}
        )
    return target


async def run_workers(tasks: list[asyncio.Task]) -> None:
    """等待全部工作任务；任一失败则取消其余任务并抛出该异常"""
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    except asyncio.CancelledError:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)

    for task in done:
        if not task.cancelled() and task.exception() is not None:
            raise task.exception()


class FileAcquirer:
    """单文件获取器"""

    def __init__(
        self,
        transport: RetryingTransport,
        verifier: Optional[FileVerifier] = None,
        emitter: Optional[ProgressEmitter] = None,
        merger: Optional[PartMerger] = None,
    ):
        self.transport = transport
        self.verifier = verifier or FileVerifier()
        self.emitter = emitter or ProgressEmitter()
        self.merger = merger or PartMerger(self.emitter)

    async def acquire(
        self,
        entry: FileEntry,
        base_url: str,
        target_dir: str,
        part_concurrency: int = 4,
        token: Optional[CancelToken] = None,
    ) -> AcquisitionResult:
        """
        获取一个清单条目

        Returns:
            AcquisitionResult: skipped / downloaded / failed / cancelled
        """
        token = token or CancelToken()
        try:
            status = await self._acquire(
                entry, base_url, target_dir, part_concurrency, token
            )
            return AcquisitionResult(entry.path, status)
        except DownloadCancelled as e:
            logger.info(f"[取消] '{entry.path}' 已取消")
            return AcquisitionResult(entry.path, AcquisitionStatus.CANCELLED, e)
        except DownloadError as e:
            logger.error(f"[错误] '{entry.path}' 获取失败: {e}")
            self.emitter.emit(EventType.ERROR, entry.path, message=str(e))
            return AcquisitionResult(entry.path, AcquisitionStatus.FAILED, e)
        except OSError as e:
            error = DownloadFileError(
                f"文件操作失败: {entry.path}: {e}", context={"path": entry.path}
            )
            logger.error(f"[错误] {error}")
            self.emitter.emit(EventType.ERROR, entry.path, message=str(error))
            return AcquisitionResult(entry.path, AcquisitionStatus.FAILED, error)

    async def _acquire(
        self,
        entry: FileEntry,
        base_url: str,
        target_dir: str,
        part_concurrency: int,
        token: CancelToken,
    ) -> AcquisitionStatus:
        target = resolve_target(target_dir, entry.path)
        os.makedirs(os.path.dirname(target), exist_ok=True)

        if await self.verifier.verify(target, entry.checksum, entry.size):
            self.emitter.emit(EventType.SKIP, entry.path)
            logger.info(f"[跳过] '{entry.path}' 已存在且校验通过")
            return AcquisitionStatus.SKIPPED

        token.raise_if_cancelled(entry.path)

        logger.info(f"[开始] 下载: {entry.path}")
        if entry.is_multipart:
            await self._acquire_parts(entry, base_url, target, part_concurrency, token)
        else:
            await self._acquire_whole(entry, base_url, target, token)

        logger.success(f"[完成] '{entry.path}' 下载完成")
        return AcquisitionStatus.DOWNLOADED

    async def _acquire_whole(
        self, entry: FileEntry, base_url: str, target: str, token: CancelToken
    ) -> None:
        """整文件下载到临时文件，校验通过后替换目标"""
        url = build_url(base_url, entry.path)
        temp = f"{target}.download"
        counter = ByteCounter(self.emitter, entry.path)

        def on_bytes(received: int, total: int) -> None:
            counter.update(received)
            size = entry.size or total
            self.emitter.emit(
                EventType.FILE,
                entry.path,
                received=min(received, size) if size else received,
                size=size,
            )

        await self.transport.fetch(url, temp, on_bytes, token)

        self.emitter.emit(EventType.VERIFY, entry.path)
        if not await self.verifier.verify(temp, entry.checksum, entry.size):
            actual = await self.verifier.digest(temp)
            actual_size = self.verifier.get_size(temp)
            self._discard(temp)
            counter.rollback()
            raise IntegrityError(
                f"校验失败: {entry.path} (期望 {entry.checksum}, 实际 {actual})",
                context={
                    "path": entry.path,
                    "expected": entry.checksum,
                    "actual": actual,
                    "expected_size": entry.size,
                    "actual_size": actual_size,
                },
            )

        os.replace(temp, target)

    async def _acquire_parts(
        self,
        entry: FileEntry,
        base_url: str,
        target: str,
        part_concurrency: int,
        token: CancelToken,
    ) -> None:
        """多分片下载：共享计数器分配分片，全部成功后按顺序合并"""
        total_parts = len(entry.parts)
        part_paths = [f"{target}.part{index}" for index in range(total_parts)]
        next_index = 0

        async def worker() -> None:
            nonlocal next_index
            while True:
                index = next_index
                next_index += 1
                if index >= total_parts:
                    return
                await self._acquire_part(
                    entry, index, part_paths[index], base_url, token
                )

        workers = [
            asyncio.ensure_future(worker())
            for _ in range(max(1, min(part_concurrency, total_parts)))
        ]
        await run_workers(workers)
        token.raise_if_cancelled(entry.path)

        try:
            await self.merger.merge(entry.path, part_paths, target)
        except OSError:
            self._discard(target)
            raise

        self.emitter.emit(EventType.VERIFY, entry.path)
        if not await self.verifier.verify(target, entry.checksum, entry.size):
            actual = await self.verifier.digest(target)
            self._discard(target)
            raise IntegrityError(
                f"合并后校验失败: {entry.path} (期望 {entry.checksum}, 实际 {actual})",
                context={
                    "path": entry.path,
                    "expected": entry.checksum,
                    "actual": actual,
                    "parts": total_parts,
                },
            )

    async def _acquire_part(
        self,
        entry: FileEntry,
        index: int,
        part_path: str,
        base_url: str,
        token: CancelToken,
    ) -> None:
        part = entry.parts[index]
        total_parts = len(entry.parts)

        # 已存在且校验通过的分片直接复用
        if os.path.exists(part_path):
            if await self.verifier.verify(part_path, part.checksum, part.size):
                size = part.size or self.verifier.get_size(part_path)
                self.emitter.emit(
                    EventType.PART,
                    entry.path,
                    part=index,
                    total_parts=total_parts,
                    received=size,
                    size=size,
                )
                logger.debug(f"[复用] '{entry.path}' 分片 {index} 已存在且校验通过")
                return
            self._discard(part_path)

        token.raise_if_cancelled(entry.path)

        url = build_url(base_url, part.path)
        counter = ByteCounter(self.emitter, entry.path)

        def on_bytes(received: int, total: int) -> None:
            counter.update(received)
            size = part.size or total
            self.emitter.emit(
                EventType.PART,
                entry.path,
                part=index,
                total_parts=total_parts,
                received=min(received, size) if size else received,
                size=size,
            )

        await self.transport.fetch(url, part_path, on_bytes, token)

        if not await self.verifier.verify(part_path, part.checksum, part.size):
            actual = await self.verifier.digest(part_path)
            self._discard(part_path)
            counter.rollback()
            self.emitter.emit(
                EventType.PART_RESET, entry.path, part=index, total_parts=total_parts
            )
            raise IntegrityError(
                f"分片校验失败: {entry.path} 分片 {index} ({part.path}) "
                f"(期望 {part.checksum}, 实际 {actual})",
                context={
                    "path": entry.path,
                    "part": index,
                    "part_path": part.path,
                    "expected": part.checksum,
                    "actual": actual,
                },
            )

    @staticmethod
    def _discard(path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
