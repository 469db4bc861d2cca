"""
下载引擎

把校验清单的文件列表分发给固定数量的工作协程。工作协程共享一个
"下一个索引" 计数器（而不是预先切分区间），先完成的协程立即领取新文件。
"""

import asyncio
import os
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from loguru import logger

from gamefetch.download.acquirer import FileAcquirer
from gamefetch.download.cancel import CancelToken
from gamefetch.download.progress import ProgressEmitter
from gamefetch.download.transport import RetryingTransport
from gamefetch.exceptions import DownloadCancelled, GameFetchError, PreconditionError
from gamefetch.models import (
    AcquisitionResult,
    AcquisitionStatus,
    EventType,
    FileEntry,
    Manifest,
    ProgressCallback,
    path_key,
)


PAUSE_POLL_INTERVAL = 0.1


@dataclass
class DownloadStats:
    """下载统计"""

    total: int = 0
    completed: int = 0
    downloaded: int = 0
    skipped: int = 0
    failed: int = 0
    cancelled: int = 0
    failed_paths: List[str] = field(default_factory=list)

    def record(self, result: AcquisitionResult) -> None:
        if result.status == AcquisitionStatus.DOWNLOADED:
            self.downloaded += 1
        elif result.status == AcquisitionStatus.SKIPPED:
            self.skipped += 1
        elif result.status == AcquisitionStatus.FAILED:
            self.failed += 1
            self.failed_paths.append(result.path)
        elif result.status == AcquisitionStatus.CANCELLED:
            self.cancelled += 1


@dataclass
class _RunState:
    """单次运行内工作协程共享的可变状态"""

    files: List[FileEntry]
    next_index: int = 0
    completed: int = 0
    first_error: Optional[GameFetchError] = None

    @property
    def total(self) -> int:
        return len(self.files)

    def claim(self) -> Optional[int]:
        # 读取与自增之间没有 await，在单线程事件循环中是原子的
        index = self.next_index
        self.next_index += 1
        return index if index < self.total else None

    def fail(self, error: GameFetchError) -> None:
        if self.first_error is None:
            self.first_error = error


class DownloadEngine:
    """下载引擎"""

    def __init__(
        self,
        transport: Optional[RetryingTransport] = None,
        acquirer: Optional[FileAcquirer] = None,
        progress_callback: Optional[ProgressCallback] = None,
        file_concurrency: int = 4,
        part_concurrency: int = 4,
        cancel_on_failure: bool = False,
    ):
        self.transport = transport or RetryingTransport()
        self.emitter = ProgressEmitter(progress_callback)
        self.acquirer = acquirer or FileAcquirer(self.transport, emitter=self.emitter)
        self.file_concurrency = file_concurrency
        self.part_concurrency = part_concurrency
        self.cancel_on_failure = cancel_on_failure
        self.stats = DownloadStats()
        self._in_flight: dict[str, asyncio.Future] = {}

    async def run(
        self,
        base_url: str,
        manifest: Manifest,
        target_dir: str,
        include_optional: bool = False,
        file_concurrency: Optional[int] = None,
        part_concurrency: Optional[int] = None,
        token: Optional[CancelToken] = None,
        is_paused: Optional[Callable[[], bool]] = None,
    ) -> DownloadStats:
        """
        下载清单中的全部文件

        任一文件的致命错误会在所有工作协程结束后抛出（只抛出第一个）；
        其他工作协程不会因此停止，除非设置了 cancel_on_failure。

        Raises:
            PreconditionError: 安装目录不存在
            DownloadCancelled: 令牌被取消
            DownloadError: 第一个失败文件的错误
        """
        token = token or CancelToken()
        if not target_dir or not os.path.isdir(target_dir):
            raise PreconditionError(
                f"安装目录不存在: {target_dir}", context={"target_dir": target_dir}
            )
        token.raise_if_cancelled()

        file_concurrency = max(1, file_concurrency or self.file_concurrency)
        part_concurrency = max(1, part_concurrency or self.part_concurrency)

        state = _RunState(files=manifest.select(include_optional))
        stats = DownloadStats(total=state.total)
        self.stats = stats

        total_bytes = sum(entry.expected_bytes for entry in state.files)
        self.emitter.emit(EventType.BYTES_TOTAL, size=total_bytes)
        logger.info(
            f"[启动] 下载 {state.total} 个文件 ({total_bytes / (1024 * 1024):.2f} MB)，"
            f"并发数: {file_concurrency}"
        )

        workers = [
            asyncio.create_task(
                self._worker(
                    state, stats, base_url, target_dir, part_concurrency, token, is_paused
                ),
                name=f"downloader-{i}",
            )
            for i in range(min(file_concurrency, max(1, state.total)))
        ]
        try:
            await asyncio.gather(*workers)
        except asyncio.CancelledError:
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise

        stats.completed = state.completed
        if state.first_error is not None:
            logger.error(
                f"[错误] 下载未完成: {stats.completed}/{stats.total} 完成, "
                f"{stats.failed} 失败, {stats.cancelled} 取消"
            )
            raise state.first_error

        logger.success(
            f"下载完成: {stats.downloaded} 下载, {stats.skipped} 跳过, 共 {stats.total} 个文件"
        )
        return stats

    async def _worker(
        self,
        state: _RunState,
        stats: DownloadStats,
        base_url: str,
        target_dir: str,
        part_concurrency: int,
        token: CancelToken,
        is_paused: Optional[Callable[[], bool]],
    ) -> None:
        while True:
            await self._wait_if_paused(is_paused, token)

            index = state.claim()
            if index is None:
                return
            entry = state.files[index]

            if token.cancelled:
                state.fail(
                    DownloadCancelled(
                        f"下载已取消: {entry.path}", context={"path": entry.path}
                    )
                )
                stats.cancelled += 1
                return

            self.emitter.emit(
                EventType.START,
                entry.path,
                index=index,
                total=state.total,
                completed=state.completed,
            )

            result = await self._acquire_shared(
                entry, base_url, target_dir, part_concurrency, token
            )
            stats.record(result)

            if result.status == AcquisitionStatus.CANCELLED:
                state.fail(result.error)
                return
            if result.status == AcquisitionStatus.FAILED:
                state.fail(result.error)
                if self.cancel_on_failure:
                    logger.warning(f"[取消] '{entry.path}' 失败，取消其余下载")
                    token.cancel()
                return

            state.completed += 1
            self.emitter.emit(
                EventType.DONE,
                entry.path,
                index=index,
                total=state.total,
                completed=state.completed,
            )

    async def _acquire_shared(
        self,
        entry: FileEntry,
        base_url: str,
        target_dir: str,
        part_concurrency: int,
        token: CancelToken,
    ) -> AcquisitionResult:
        """
        同一引擎上并发的多次运行共享同一路径的获取过程

        获取过程使用发起它的那次运行的令牌。后加入的运行只是等待结果，
        它自己的令牌被取消时立即返回 CANCELLED，不影响共享的获取过程。
        """
        key = path_key(os.path.join(os.path.abspath(target_dir), entry.path))
        existing = self._in_flight.get(key)
        if existing is not None:
            logger.debug(f"[等待] '{entry.path}' 正在被其他任务下载")
            return await self._wait_shared(entry, existing, token)

        future = asyncio.ensure_future(
            self.acquirer.acquire(entry, base_url, target_dir, part_concurrency, token)
        )
        self._in_flight[key] = future
        try:
            return await future
        finally:
            if self._in_flight.get(key) is future:
                del self._in_flight[key]

    @staticmethod
    async def _wait_shared(
        entry: FileEntry, shared: asyncio.Future, token: CancelToken
    ) -> AcquisitionResult:
        """等待共享的获取过程，同时响应本次运行的取消"""
        cancelled = asyncio.ensure_future(token.wait())
        try:
            await asyncio.wait({shared, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancelled.cancel()

        if shared.done():
            return shared.result()
        return AcquisitionResult(
            entry.path,
            AcquisitionStatus.CANCELLED,
            DownloadCancelled(f"下载已取消: {entry.path}", context={"path": entry.path}),
        )

    @staticmethod
    async def _wait_if_paused(
        is_paused: Optional[Callable[[], bool]], token: CancelToken
    ) -> None:
        while is_paused is not None and is_paused():
            if token.cancelled:
                return
            await token.sleep(PAUSE_POLL_INTERVAL)

    async def close(self):
        """关闭下载引擎"""
        await self.transport.close()

    async def __aenter__(self):
        """异步上下文管理器入口"""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """异步上下文管理器出口"""
        await self.close()
