"""
模组安装器

只接受受信任主机上的压缩包：下载到 mods 目录下的临时文件（跟随有限次重定向），
清空目标目录后解压，读取 mod.vdf 确定模组 ID，并在清单中启用它。
"""

import asyncio
import os
import shutil
import time
import zipfile
import zlib
from typing import Iterable, Optional
from urllib.parse import urljoin, urlparse

import aiofiles
import aiohttp
from loguru import logger

from gamefetch.exceptions import (
    ArchiveError,
    GameFetchError,
    ModInstallError,
    PreconditionError,
    UntrustedSourceError,
)
from gamefetch.mods.descriptor import find_descriptor
from gamefetch.mods.ledger import ModLedger
from gamefetch.mods.registry import is_safe_folder_name, mods_dir_for
from gamefetch.mods.state import ModState
from gamefetch.models import InstallCallback, InstallProgress, OperationResult
from gamefetch.models.config import DEFAULT_TRUSTED_HOSTS, DEFAULT_USER_AGENT


PROGRESS_INTERVAL = 0.15


def extract_archive(archive: str, destination: str) -> None:
    """清空目标目录后解压（在线程中执行）"""
    if os.path.exists(destination):
        shutil.rmtree(destination)
    os.makedirs(destination, exist_ok=True)
    try:
        with zipfile.ZipFile(archive) as zf:
            zf.extractall(destination)
    except (zipfile.BadZipFile, zlib.error, RuntimeError, NotImplementedError, EOFError) as e:
        raise ArchiveError(
            f"无法解压模组包: {e}", context={"archive": archive}
        ) from e


class ModInstaller:
    """模组安装器"""

    def __init__(
        self,
        state: Optional[ModState] = None,
        ledger: Optional[ModLedger] = None,
        session: Optional[aiohttp.ClientSession] = None,
        trusted_hosts: Iterable[str] = DEFAULT_TRUSTED_HOSTS,
        max_redirects: int = 5,
        user_agent: str = DEFAULT_USER_AGENT,
        allowed_schemes: Iterable[str] = ("https",),
        progress_callback: Optional[InstallCallback] = None,
    ):
        self.state = state or ModState()
        self.ledger = ledger or ModLedger()
        self.trusted_hosts = [host.lower() for host in trusted_hosts]
        self.max_redirects = max_redirects
        self.allowed_schemes = tuple(allowed_schemes)
        self.user_agent = user_agent
        self._progress_callback = progress_callback
        self._session = session
        self._owned_session = session is None

    @property
    def session(self) -> aiohttp.ClientSession:
        """获取或创建 aiohttp session"""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=None, sock_connect=45, sock_read=90),
                headers={
                    "User-Agent": self.user_agent,
                    "Accept": "application/octet-stream,*/*;q=0.8",
                },
            )
            self._owned_session = True
        return self._session

    def is_trusted(self, url: str) -> bool:
        """只允许指定协议（默认 https）且主机属于受信任域名（含子域名）"""
        try:
            parsed = urlparse(str(url or ""))
        except ValueError:
            return False
        host = (parsed.hostname or "").lower()
        if parsed.scheme not in self.allowed_schemes or not host:
            return False
        return any(host == trusted or host.endswith("." + trusted) for trusted in self.trusted_hosts)

    def _emit(self, key: str, phase: str, received: int = 0, total: int = 0) -> None:
        if self._progress_callback is None:
            return
        try:
            self._progress_callback(InstallProgress(key, phase, received, total))
        except Exception as e:
            logger.warning(f"[事件] 安装进度回调异常 ({key} {phase}): {e}")

    async def install(
        self, install_dir: str, mod_key: str, download_url: str
    ) -> OperationResult:
        """
        安装模组

        同一个 mod_key 正在安装时直接返回成功。

        Returns:
            OperationResult，value 为写入清单的模组 ID
        """
        key = str(mod_key or "").strip()
        try:
            if not self.is_trusted(download_url):
                raise UntrustedSourceError(
                    f"下载地址不在受信任主机上: {download_url}",
                    context={"url": download_url, "trusted_hosts": self.trusted_hosts},
                )
            if not is_safe_folder_name(key):
                raise PreconditionError(f"无效的模组名称: {mod_key!r}")
            if not install_dir or not os.path.isdir(install_dir):
                raise PreconditionError(
                    f"安装目录不存在: {install_dir}", context={"install_dir": install_dir}
                )
        except GameFetchError as e:
            logger.error(f"[模组] 拒绝安装 '{key}': {e}")
            return OperationResult.failure(e)

        if not self.state.begin_install(key):
            logger.info(f"[模组] '{key}' 正在安装中，忽略重复请求")
            return OperationResult.success()

        temp_archive = None
        try:
            mods_dir = mods_dir_for(install_dir)
            os.makedirs(mods_dir, exist_ok=True)
            # 临时文件与目标放在同一目录，避免跨卷
            temp_archive = os.path.join(mods_dir, f".__mod_{int(time.time() * 1000)}.zip")

            logger.info(f"[模组] 开始下载 '{key}': {download_url}")
            await self._download(download_url, temp_archive, key)

            self._emit(key, "extracting")
            destination = os.path.join(mods_dir, key)
            await asyncio.to_thread(extract_archive, temp_archive, destination)

            descriptor = await find_descriptor(destination)
            mod_id = descriptor.id or key

            async with self.state.ledger_lock:
                ledger = await self.ledger.read(mods_dir)
                entries = dict(ledger.enabled)
                entries[mod_id] = True
                await self.ledger.write(mods_dir, ledger.order, entries)

            self._emit(key, "done")
            logger.success(f"[模组] '{key}' 安装完成 (ID: {mod_id})")
            return OperationResult.success(mod_id)
        except (GameFetchError, OSError) as e:
            logger.error(f"[模组] 安装 '{key}' 失败: {e}")
            return OperationResult.failure(e)
        finally:
            if temp_archive is not None:
                try:
                    os.remove(temp_archive)
                except FileNotFoundError:
                    pass
            self.state.end_install(key)

    async def _download(self, url: str, destination: str, key: str) -> None:
        """下载压缩包，手动跟随重定向"""
        visited: set[str] = set()
        current = url
        for _ in range(self.max_redirects + 1):
            visited.add(current)
            try:
                async with self.session.get(current, allow_redirects=False) as response:
                    location = response.headers.get("Location")
                    if 300 <= response.status < 400 and location:
                        current = urljoin(current, location)
                        if current in visited:
                            raise ModInstallError(
                                f"重定向循环: {current}", context={"url": url}
                            )
                        logger.debug(f"[模组] 重定向到 {current}")
                        continue
                    if response.status != 200:
                        raise ModInstallError(
                            f"HTTP {response.status}: {current}",
                            context={"url": current, "status_code": response.status},
                        )
                    await self._save(response, destination, key)
                    return
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                raise ModInstallError(
                    f"下载模组包失败: {current}: {e.__class__.__name__} {e}".rstrip(),
                    context={"url": current},
                ) from e

        raise ModInstallError(
            f"重定向次数过多 (超过 {self.max_redirects} 次): {url}", context={"url": url}
        )

    async def _save(
        self, response: aiohttp.ClientResponse, destination: str, key: str
    ) -> None:
        total = int(response.headers.get("Content-Length", 0) or 0)
        received = 0
        last_tick = time.monotonic()
        async with aiofiles.open(destination, "wb") as f:
            async for chunk in response.content.iter_chunked(64 * 1024):
                await f.write(chunk)
                received += len(chunk)
                now = time.monotonic()
                if now - last_tick > PROGRESS_INTERVAL:
                    last_tick = now
                    self._emit(key, "downloading", received, total)
        self._emit(key, "downloading", received, total)

    async def close(self):
        """关闭安装器"""
        if self._owned_session and self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self):
        """异步上下文管理器入口"""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """异步上下文管理器出口"""
        await self.close()
