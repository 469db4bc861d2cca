"""
全局下载限速器（令牌桶）
"""

import asyncio
import time

from loguru import logger


class RateLimiter:
    """
    按字节限速的令牌桶，所有传输共享一个实例。

    max_bytes_per_second 为 0 表示不限速。
    """

    def __init__(self, max_bytes_per_second: int = 0):
        self.max_bytes_per_second = max(0, int(max_bytes_per_second))
        self._tokens = float(self.max_bytes_per_second)
        self._last_refill = time.monotonic()
        self._lock = asyncio.Lock()

    @property
    def unlimited(self) -> bool:
        return self.max_bytes_per_second <= 0

    def set_max_speed(self, bytes_per_second: int) -> None:
        """调整限速值"""
        self.max_bytes_per_second = max(0, int(bytes_per_second))
        self._tokens = float(self.max_bytes_per_second)
        self._last_refill = time.monotonic()
        if self.unlimited:
            logger.debug("[限速] 已取消下载限速")
        else:
            logger.debug(f"[限速] 下载限速: {self.max_bytes_per_second / 1024:.0f} KB/s")

    async def consume(self, nbytes: int) -> None:
        """消耗 nbytes 个令牌，不足时等待"""
        if self.unlimited or nbytes <= 0:
            return

        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_refill
            self._tokens = min(
                float(self.max_bytes_per_second),
                self._tokens + elapsed * self.max_bytes_per_second,
            )
            self._last_refill = now

            if nbytes > self._tokens:
                deficit = nbytes - self._tokens
                await asyncio.sleep(deficit / self.max_bytes_per_second)
                self._tokens = 0.0
                self._last_refill = time.monotonic()
            else:
                self._tokens -= nbytes
