"""
进度事件分发
"""

from typing import Optional

from loguru import logger

from gamefetch.models import EventType, ProgressCallback, ProgressEvent


class ProgressEmitter:
    """把进度事件转发给外部回调，回调异常不影响下载"""

    def __init__(self, callback: Optional[ProgressCallback] = None):
        self._callback = callback

    def emit(self, event_type: EventType, path: str = "", **fields) -> None:
        if self._callback is None:
            return
        event = ProgressEvent(type=event_type, path=path, **fields)
        try:
            self._callback(event)
        except Exception as e:
            logger.warning(f"[事件] 进度回调异常 ({event_type.value} {path}): {e}")

    __call__ = emit


class ByteCounter:
    """
    跟踪一次传输的字节增量

    重试会让已接收字节数回落，此时先撤销上一次尝试计入的字节。
    """

    def __init__(self, emitter: ProgressEmitter, path: str):
        self._emitter = emitter
        self._path = path
        self._last = 0

    def update(self, received: int) -> None:
        if received < self._last:
            self.rollback()
        delta = received - self._last
        self._last = received
        if delta > 0:
            self._emitter.emit(EventType.BYTES, self._path, delta=delta)

    def rollback(self) -> None:
        """撤销本次已计入的字节"""
        if self._last > 0:
            self._emitter.emit(EventType.BYTES, self._path, delta=-self._last)
        self._last = 0
