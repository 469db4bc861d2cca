"""
协作式取消令牌

一次运行共享一个令牌。取消是单向的：置位后不可恢复，
置位时中止所有已登记的请求，之后登记的请求会被立即中止。
"""

import asyncio
from typing import Optional

from gamefetch.exceptions import DownloadCancelled


class CancelToken:
    """取消令牌"""

    def __init__(self):
        self._cancelled = False
        self._requests: set[asyncio.Future] = set()
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def active_requests(self) -> frozenset:
        """当前登记的请求句柄"""
        return frozenset(self._requests)

    def cancel(self) -> None:
        """置位并中止所有在途请求"""
        if self._cancelled:
            return
        self._cancelled = True
        self._event.set()
        requests = list(self._requests)
        self._requests.clear()
        for request in requests:
            request.cancel()

    def register(self, request: asyncio.Future) -> None:
        """登记一个请求句柄；令牌已取消时直接中止它"""
        if self._cancelled:
            request.cancel()
            return
        self._requests.add(request)

    def unregister(self, request: asyncio.Future) -> None:
        self._requests.discard(request)

    def raise_if_cancelled(self, target: Optional[str] = None) -> None:
        if self._cancelled:
            message = f"下载已取消: {target}" if target else "下载已取消"
            raise DownloadCancelled(message, context={"target": target} if target else {})

    async def sleep(self, delay: float) -> None:
        """可被取消提前唤醒的等待（用于退避计时）"""
        if delay <= 0 or self._cancelled:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def wait(self) -> None:
        """等待令牌被取消"""
        await self._event.wait()
