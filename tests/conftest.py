"""
Pytest 配置与共享 fixture

内容服务器基于 aiohttp.test_utils.TestServer，在测试协程内启动：

    async with content_server as server:
        server.files["a.bin"] = b"..."
        url = server.url("a.bin")
"""

import asyncio
from typing import Dict, List

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer


class FakeContentServer:
    """
    可编程的本地内容服务器

    - files: 路径 -> 内容
    - statuses: 路径 -> 依次返回的状态码队列，用完后正常返回内容
    - always_status: 路径 -> 每次都返回的状态码
    - delays: 路径 -> 响应前等待的秒数（服务器关闭时提前结束）
    - redirects: 路径 -> Location
    """

    def __init__(self):
        self.files: Dict[str, bytes] = {}
        self.statuses: Dict[str, List[int]] = {}
        self.always_status: Dict[str, int] = {}
        self.delays: Dict[str, float] = {}
        self.redirects: Dict[str, str] = {}
        self.requests: List[str] = []
        self.app = web.Application()
        self.app.router.add_get("/{path:.*}", self._handle)
        self._server = None
        self._closing = None

    async def _handle(self, request: web.Request) -> web.StreamResponse:
        path = request.match_info["path"]
        self.requests.append(path)

        if path in self.always_status:
            return web.Response(status=self.always_status[path])
        queued = self.statuses.get(path)
        if queued:
            status = queued.pop(0)
            if status != 200:
                return web.Response(status=status)
        if path in self.redirects:
            return web.Response(status=302, headers={"Location": self.redirects[path]})

        delay = self.delays.get(path)
        if delay:
            try:
                await asyncio.wait_for(self._closing.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

        if path not in self.files:
            return web.Response(status=404)
        return web.Response(body=self.files[path])

    def url(self, path: str = "") -> str:
        return f"{self.base_url}/{path}"

    @property
    def base_url(self) -> str:
        return f"http://{self._server.host}:{self._server.port}"

    def count(self, path: str) -> int:
        return self.requests.count(path)

    async def wait_for_requests(self, count: int = 1, timeout: float = 5.0) -> None:
        """等待服务器收到至少 count 个请求"""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while len(self.requests) < count:
            if loop.time() > deadline:
                raise AssertionError(f"只收到 {len(self.requests)} 个请求，期望 {count} 个")
            await asyncio.sleep(0.01)

    async def __aenter__(self) -> "FakeContentServer":
        self._closing = asyncio.Event()
        self._server = TestServer(self.app)
        await self._server.start_server()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self._closing.set()
        await self._server.close()


@pytest.fixture
def content_server() -> FakeContentServer:
    """未启动的内容服务器，在测试协程内用 async with 启动"""
    return FakeContentServer()


@pytest.fixture
def install_dir(tmp_path):
    """空的安装目录"""
    path = tmp_path / "game"
    path.mkdir()
    return path
