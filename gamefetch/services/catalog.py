"""
模组目录客户端

从模组分发站点拉取全部包列表：先取分页索引，再并发获取各页，
索引不可用时退回到单一列表接口。
"""

import asyncio
import gzip
import json
from typing import Optional

import aiohttp
from loguru import logger

from gamefetch.exceptions import ModError
from gamefetch.models.config import DEFAULT_CATALOG_URL, DEFAULT_USER_AGENT


CATALOG_CONCURRENCY = 6


def gunzip_maybe(data: bytes) -> bytes:
    """内容可能经过 gzip 压缩，也可能没有"""
    try:
        return gzip.decompress(data)
    except (OSError, EOFError):
        return data


def filter_packages(packages: list, query: Optional[str]) -> list:
    """按 name / full_name 不区分大小写过滤"""
    if not query or not query.strip():
        return packages
    needle = query.strip().lower()
    return [
        package
        for package in packages
        if needle in str(package.get("name", "")).lower()
        or needle in str(package.get("full_name", "")).lower()
    ]


class ModCatalogClient:
    """模组目录客户端"""

    def __init__(
        self,
        base_url: str = DEFAULT_CATALOG_URL,
        session: Optional[aiohttp.ClientSession] = None,
        user_agent: str = DEFAULT_USER_AGENT,
    ):
        self.base_url = base_url.rstrip("/")
        self.user_agent = user_agent
        self._session = session
        self._owned_session = session is None

    @property
    def session(self) -> aiohttp.ClientSession:
        """获取或创建 aiohttp session"""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"User-Agent": self.user_agent, "Accept": "*/*"}
            )
            self._owned_session = True
        return self._session

    async def _get_bytes(self, url: str) -> bytes:
        async with self.session.get(url) as response:
            if response.status != 200:
                raise ModError(
                    f"HTTP {response.status}: {url}",
                    context={"url": url, "status_code": response.status},
                )
            return await response.read()

    async def _get_json(self, url: str):
        return json.loads(gunzip_maybe(await self._get_bytes(url)).decode("utf-8"))

    async def fetch_all(self, query: Optional[str] = None) -> list:
        """
        获取模组包列表

        Args:
            query: 可选的名称过滤

        Returns:
            包信息字典列表
        """
        try:
            packages = await self._fetch_indexed()
        except (ModError, aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning(f"[目录] 分页索引不可用，改用单一列表接口: {e}")
            try:
                data = await self._get_json(f"{self.base_url}/package/")
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as err:
                raise ModError(f"获取模组列表失败: {err}") from err
            packages = data if isinstance(data, list) else []

        return filter_packages(packages, query)

    async def _fetch_indexed(self) -> list:
        index = await self._get_json(f"{self.base_url}/package-listing-index/")
        urls = index if isinstance(index, list) else []
        results: list = []
        next_index = 0

        async def worker() -> None:
            nonlocal next_index
            while next_index < len(urls):
                url = urls[next_index]
                next_index += 1
                try:
                    packages = await self._get_json(url)
                except (ModError, aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                    logger.warning(f"[目录] 获取列表页失败 {url}: {e}")
                    continue
                if isinstance(packages, list):
                    results.extend(packages)

        await asyncio.gather(*(worker() for _ in range(CATALOG_CONCURRENCY)))
        logger.info(f"[目录] 共获取 {len(results)} 个模组包")
        return results

    async def close(self):
        """关闭客户端"""
        if self._owned_session and self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self):
        """异步上下文管理器入口"""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """异步上下文管理器出口"""
        await self.close()
