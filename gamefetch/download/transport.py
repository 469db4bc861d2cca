"""
带重试的 HTTP 传输层

一次 GET 请求：连接超时、有限次数的退避重试、取消令牌支持。
最终失败时删除已写入的不完整文件。
"""

import asyncio
import errno
import os
import socket
from typing import Callable, Optional

import aiofiles
import aiohttp
from loguru import logger

from gamefetch.download.cancel import CancelToken
from gamefetch.download.rate_limiter import RateLimiter
from gamefetch.exceptions import (
    DownloadCancelled,
    DownloadFileError,
    TransportError,
)


RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})

RETRYABLE_ERRNOS = frozenset(
    {
        errno.ECONNRESET,
        errno.ETIMEDOUT,
        errno.ECONNABORTED,
        errno.ENETRESET,
        errno.EHOSTUNREACH,
        errno.ENETUNREACH,
        errno.EPIPE,
    }
)

BytesCallback = Callable[[int, int], None]


def is_retryable_error(exc: BaseException) -> bool:
    """判断网络异常是否属于可重试的瞬时错误"""
    if isinstance(exc, asyncio.TimeoutError):
        return True
    if isinstance(exc, (aiohttp.ServerDisconnectedError, aiohttp.ClientPayloadError)):
        # 连接中途断开 / 响应被中止
        return True
    if isinstance(exc, aiohttp.ClientConnectorError):
        os_error = exc.os_error
        if isinstance(os_error, socket.gaierror):
            return os_error.errno == socket.EAI_AGAIN
        return os_error.errno in RETRYABLE_ERRNOS
    if isinstance(exc, OSError):
        return exc.errno in RETRYABLE_ERRNOS
    return False


class RetryingTransport:
    """带重试的下载传输"""

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        connect_timeout: float = 45.0,
        read_timeout: Optional[float] = 90.0,
        max_attempts: int = 5,
        retry_delay: float = 2.0,
        max_retry_delay: float = 10.0,
        rate_limiter: Optional[RateLimiter] = None,
        chunk_size: int = 64 * 1024,
    ):
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        self.rate_limiter = rate_limiter or RateLimiter()
        self.chunk_size = chunk_size
        self._session = session
        self._owned_session = session is None

    @property
    def session(self) -> aiohttp.ClientSession:
        """获取或创建 aiohttp session"""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(
                total=None,
                sock_connect=self.connect_timeout or None,
                sock_read=self.read_timeout or None,
            )
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owned_session = True
        return self._session

    def backoff_delay(self, attempt: int) -> float:
        """第 attempt 次失败后的等待秒数"""
        return min(self.retry_delay * attempt, self.max_retry_delay)

    async def fetch(
        self,
        url: str,
        destination: str,
        on_bytes: Optional[BytesCallback] = None,
        token: Optional[CancelToken] = None,
    ) -> int:
        """
        下载 url 到 destination

        Args:
            url: 下载地址
            destination: 目标文件路径
            on_bytes: 进度回调 (已接收字节, 声明总长度)，总长度未知时为 0
            token: 取消令牌

        Returns:
            写入的字节数

        Raises:
            TransportError: 重试耗尽或不可重试的网络错误
            DownloadFileError: 本地文件写入失败
            DownloadCancelled: 令牌被取消
        """
        attempt = 1
        while True:
            if token is not None and token.cancelled:
                self._discard(destination)
                token.raise_if_cancelled(url)

            try:
                return await self._attempt_with_token(url, destination, on_bytes, token)
            except (DownloadCancelled, asyncio.CancelledError):
                self._discard(destination)
                raise
            except TransportError as e:
                error = e
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                error = TransportError(
                    f"请求失败: {url}: {e.__class__.__name__} {e}".rstrip(),
                    context={"url": url},
                    retryable=is_retryable_error(e),
                )
            except OSError as e:
                if e.errno not in RETRYABLE_ERRNOS:
                    self._discard(destination)
                    raise DownloadFileError(
                        f"写入文件失败: {destination}: {e}",
                        context={"url": url, "path": destination},
                    ) from e
                error = TransportError(
                    f"连接中断: {url}: {e}", context={"url": url}, retryable=True
                )

            if not error.retryable or attempt >= self.max_attempts:
                self._discard(destination)
                error.context["attempts"] = attempt
                logger.error(f"[错误] 下载 '{url}' 最终失败 (共 {attempt} 次): {error.message}")
                raise error

            delay = self.backoff_delay(attempt)
            logger.warning(
                f"[重试] 下载 '{url}' 失败 (第 {attempt} 次): {error.message}. "
                f"{delay:.1f}s 后重试..."
            )
            if token is not None:
                await token.sleep(delay)
            else:
                await asyncio.sleep(delay)
            attempt += 1

    async def _attempt_with_token(
        self,
        url: str,
        destination: str,
        on_bytes: Optional[BytesCallback],
        token: Optional[CancelToken],
    ) -> int:
        """把单次请求包装成可被令牌中止的任务"""
        request = asyncio.ensure_future(self._attempt(url, destination, on_bytes))
        if token is not None:
            token.register(request)
        try:
            return await request
        except asyncio.CancelledError:
            if token is not None and token.cancelled and request.cancelled():
                raise DownloadCancelled(
                    f"下载已取消: {url}", context={"url": url}
                ) from None
            raise
        finally:
            if token is not None:
                token.unregister(request)

    async def _attempt(
        self, url: str, destination: str, on_bytes: Optional[BytesCallback]
    ) -> int:
        """单次 GET 请求，流式写入文件"""
        async with self.session.get(url) as response:
            if response.status != 200:
                raise TransportError(
                    f"HTTP {response.status}: {url}",
                    context={"url": url},
                    status=response.status,
                    retryable=response.status in RETRYABLE_STATUS,
                )

            total = int(response.headers.get("Content-Length", 0) or 0)
            directory = os.path.dirname(destination)
            if directory:
                os.makedirs(directory, exist_ok=True)

            received = 0
            async with aiofiles.open(destination, "wb") as f:
                async for chunk in response.content.iter_chunked(self.chunk_size):
                    await self.rate_limiter.consume(len(chunk))
                    await f.write(chunk)
                    received += len(chunk)
                    if on_bytes:
                        on_bytes(received, total)

            return received

    @staticmethod
    def _discard(path: str) -> None:
        """删除不完整的文件"""
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"[清理] 无法删除不完整文件 '{path}': {e}")

    async def close(self):
        """关闭传输"""
        if self._owned_session and self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self):
        """异步上下文管理器入口"""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """异步上下文管理器出口"""
        await self.close()
