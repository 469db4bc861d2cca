"""
主协调器

整合清单客户端、下载引擎与文件校验，实现安装/更新与完整性检查流程。
"""

import os
from typing import Callable, List, Optional

from loguru import logger

from gamefetch.download import (
    CancelToken,
    DownloadEngine,
    DownloadStats,
    FileVerifier,
    RateLimiter,
    RetryingTransport,
)
from gamefetch.download.acquirer import resolve_target
from gamefetch.exceptions import ConfigError
from gamefetch.models import GameFetchConfig, Manifest, ProgressCallback
from gamefetch.services import ManifestClient


class GameFetchOrchestrator:
    """GameFetch 主协调器"""

    def __init__(
        self,
        config: GameFetchConfig,
        progress_callback: Optional[ProgressCallback] = None,
        manifest_client: Optional[ManifestClient] = None,
    ):
        self.config = config
        self.manifest_client = manifest_client or ManifestClient()
        download = config.download
        self.rate_limiter = RateLimiter(download.max_speed)
        self.transport = RetryingTransport(
            connect_timeout=download.connect_timeout,
            read_timeout=download.read_timeout,
            max_attempts=download.max_attempts,
            retry_delay=download.retry_delay,
            max_retry_delay=download.max_retry_delay,
            rate_limiter=self.rate_limiter,
        )
        self.engine = DownloadEngine(
            transport=self.transport,
            progress_callback=progress_callback,
            file_concurrency=download.file_concurrency,
            part_concurrency=download.part_concurrency,
            cancel_on_failure=download.cancel_on_failure,
        )
        self.verifier = FileVerifier()
        self.manifest: Optional[Manifest] = None

    def _validate_config(self):
        """验证配置"""
        if not self.config.game.base_url:
            raise ConfigError("请配置 game.base_url")
        if not self.config.game.install_dir:
            raise ConfigError("请配置 game.install_dir")

    async def fetch_manifest(self) -> Manifest:
        """获取校验清单；新清单替换旧清单"""
        self.manifest = await self.manifest_client.fetch(self.config.game.base_url)
        return self.manifest

    async def download(
        self,
        token: Optional[CancelToken] = None,
        include_optional: Optional[bool] = None,
        is_paused: Optional[Callable[[], bool]] = None,
    ) -> DownloadStats:
        """运行完整的下载流程"""
        self._validate_config()
        game = self.config.game
        if include_optional is None:
            include_optional = game.include_optional

        logger.info(f"开始安装/更新: {game.install_dir}")
        manifest = await self.fetch_manifest()
        return await self.engine.run(
            game.base_url,
            manifest,
            game.install_dir,
            include_optional=include_optional,
            token=token,
            is_paused=is_paused,
        )

    async def verify(self, include_optional: Optional[bool] = None) -> List[str]:
        """
        检查本地安装的完整性，不下载任何文件

        Returns:
            缺失或校验失败的相对路径列表
        """
        self._validate_config()
        game = self.config.game
        if include_optional is None:
            include_optional = game.include_optional

        manifest = await self.fetch_manifest()
        entries = manifest.select(include_optional)
        invalid = []
        for entry in entries:
            target = resolve_target(game.install_dir, entry.path)
            if await self.verifier.verify(target, entry.checksum, entry.size):
                logger.debug(f"[校验] '{entry.path}' 正常")
                continue
            reason = "缺失" if not os.path.exists(target) else "校验失败"
            logger.warning(f"[校验] '{entry.path}' {reason}")
            invalid.append(entry.path)

        if invalid:
            logger.warning(f"{len(invalid)}/{len(entries)} 个文件需要重新下载")
        else:
            logger.success(f"全部 {len(entries)} 个文件校验通过")
        return invalid

    def set_max_speed(self, bytes_per_second: int) -> None:
        """运行期间调整下载限速"""
        self.rate_limiter.set_max_speed(bytes_per_second)

    def get_stats(self) -> DownloadStats:
        """获取最近一次下载的统计"""
        return self.engine.stats

    async def close(self):
        """关闭网络会话"""
        await self.manifest_client.close()
        await self.engine.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
