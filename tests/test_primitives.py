"""
下载层基础组件测试：取消令牌、限速器、进度计数、分片合并、模组描述文件
"""

import asyncio
import time

import pytest

from gamefetch.download import CancelToken, PartMerger, ProgressEmitter, RateLimiter
from gamefetch.download.progress import ByteCounter
from gamefetch.exceptions import DownloadCancelled, DownloadError
from gamefetch.mods.descriptor import find_descriptor, parse_descriptor
from gamefetch.models import EventType


class TestCancelToken:
    """取消令牌"""

    def test_cancel_aborts_registered_requests(self):
        async def scenario():
            token = CancelToken()
            request = asyncio.ensure_future(asyncio.sleep(10))
            token.register(request)
            token.cancel()
            with pytest.raises(asyncio.CancelledError):
                await request
            return token

        token = asyncio.run(scenario())

        assert token.cancelled
        assert token.active_requests == frozenset()

    def test_register_after_cancel_aborts_immediately(self):
        async def scenario():
            token = CancelToken()
            token.cancel()
            request = asyncio.ensure_future(asyncio.sleep(10))
            token.register(request)
            with pytest.raises(asyncio.CancelledError):
                await request
            return token

        assert asyncio.run(scenario()).active_requests == frozenset()

    def test_raise_if_cancelled(self):
        token = CancelToken()
        token.raise_if_cancelled("a.txt")

        token.cancel()
        token.cancel()

        with pytest.raises(DownloadCancelled) as exc_info:
            token.raise_if_cancelled("a.txt")
        assert not isinstance(exc_info.value, DownloadError)

    def test_sleep_wakes_on_cancel(self):
        async def scenario():
            token = CancelToken()
            asyncio.get_running_loop().call_later(0.05, token.cancel)
            started = time.monotonic()
            await token.sleep(5)
            return time.monotonic() - started

        assert asyncio.run(scenario()) < 1


class TestRateLimiter:
    """令牌桶限速"""

    def test_unlimited_does_not_wait(self):
        limiter = RateLimiter()

        async def scenario():
            started = time.monotonic()
            for _ in range(100):
                await limiter.consume(1024 * 1024)
            return time.monotonic() - started

        assert limiter.unlimited
        assert asyncio.run(scenario()) < 0.5

    def test_limited_throughput(self):
        limiter = RateLimiter(10_000)

        async def scenario():
            started = time.monotonic()
            await limiter.consume(10_000)  # 初始令牌
            await limiter.consume(5_000)
            return time.monotonic() - started

        assert asyncio.run(scenario()) >= 0.4

    def test_set_max_speed(self):
        limiter = RateLimiter(100)
        limiter.set_max_speed(0)

        assert limiter.unlimited


class TestByteCounter:
    """字节增量"""

    def test_deltas_and_rollback(self):
        events = []
        counter = ByteCounter(ProgressEmitter(events.append), "a.bin")

        counter.update(10)
        counter.update(25)
        counter.update(5)  # 重试，重新计数
        counter.rollback()

        assert [e.delta for e in events] == [10, 15, -25, 5, -5]
        assert all(e.type == EventType.BYTES for e in events)

    def test_callback_errors_are_swallowed(self):
        def broken(event):
            raise RuntimeError("boom")

        ProgressEmitter(broken).emit(EventType.START, "a.bin")


class TestPartMerger:
    """分片合并"""

    def test_merge_in_order_and_remove_parts(self, tmp_path):
        parts = []
        for index, data in enumerate([b"one-", b"two-", b"three"]):
            path = tmp_path / f"f.part{index}"
            path.write_bytes(data)
            parts.append(str(path))
        events = []
        destination = tmp_path / "f"

        asyncio.run(
            PartMerger(ProgressEmitter(events.append)).merge("f", parts, str(destination))
        )

        assert destination.read_bytes() == b"one-two-three"
        assert not any((tmp_path / f"f.part{i}").exists() for i in range(3))
        assert [e.type for e in events] == [
            EventType.MERGE_START,
            EventType.MERGE_PART,
            EventType.MERGE_PART,
            EventType.MERGE_PART,
            EventType.MERGE_DONE,
        ]


class TestDescriptor:
    """mod.vdf 解析"""

    def test_parse_is_case_insensitive(self):
        descriptor = parse_descriptor('"Mod" { "ID" "a.b" "Name"   "Nice Mod" }')

        assert descriptor.id == "a.b"
        assert descriptor.name == "Nice Mod"

    def test_find_in_subdirectory(self, tmp_path):
        (tmp_path / "Inner").mkdir()
        (tmp_path / "Inner" / "mod.vdf").write_text('"id" "inner.mod"')

        assert asyncio.run(find_descriptor(str(tmp_path))).id == "inner.mod"

    def test_root_takes_precedence(self, tmp_path):
        (tmp_path / "mod.vdf").write_text('"id" "root.mod"')
        (tmp_path / "Inner").mkdir()
        (tmp_path / "Inner" / "mod.vdf").write_text('"id" "inner.mod"')

        assert asyncio.run(find_descriptor(str(tmp_path))).id == "root.mod"

    def test_missing_descriptor(self, tmp_path):
        assert asyncio.run(find_descriptor(str(tmp_path))).id is None
