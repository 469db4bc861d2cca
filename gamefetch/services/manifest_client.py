"""
校验清单客户端

获取 {base_url}/checksums.json 并解析为 Manifest。
"""

import asyncio
from typing import Optional

import aiohttp
from loguru import logger

from gamefetch.exceptions import ManifestError
from gamefetch.models import Manifest


MANIFEST_FILENAME = "checksums.json"
MANIFEST_TIMEOUT = 30


def manifest_url(base_url: str) -> str:
    return f"{base_url.rstrip('/')}/{MANIFEST_FILENAME}"


class ManifestClient:
    """校验清单客户端"""

    def __init__(self, session: Optional[aiohttp.ClientSession] = None):
        self._session = session
        self._owned_session = session is None

    @property
    def session(self) -> aiohttp.ClientSession:
        """获取或创建 aiohttp session"""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=MANIFEST_TIMEOUT)
            )
            self._owned_session = True
        return self._session

    async def fetch(self, base_url: str) -> Manifest:
        """
        获取校验清单

        Raises:
            ManifestError: 网络错误、非 200 状态或 JSON 格式错误
        """
        url = manifest_url(base_url)
        logger.info(f"[清单] 获取校验清单: {url}")
        try:
            async with self.session.get(url) as response:
                if response.status != 200:
                    raise ManifestError(
                        f"HTTP {response.status}: {url}",
                        context={"url": url, "status_code": response.status},
                    )
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ManifestError(
                f"获取校验清单失败: {url}: {e.__class__.__name__} {e}".rstrip(),
                context={"url": url},
            ) from e
        except ValueError as e:
            raise ManifestError(
                f"校验清单不是有效的 JSON: {url}", context={"url": url}
            ) from e

        manifest = Manifest.from_dict(data)
        logger.info(f"[清单] 共 {len(manifest.files)} 个条目")
        return manifest

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
