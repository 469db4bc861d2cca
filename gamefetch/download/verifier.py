"""
文件校验器

流式计算 SHA-256，并与期望的摘要、大小比较。
"""

import hashlib
import os
from typing import Optional

import aiofiles


class FileVerifier:
    """文件校验器"""

    CHUNK_SIZE = 1024 * 1024

    @staticmethod
    async def digest(file_path: str) -> Optional[str]:
        """
        计算文件的 SHA-256 值

        Args:
            file_path: 文件路径

        Returns:
            十六进制摘要或 None（如果文件不存在或无法读取）
        """
        if not os.path.isfile(file_path):
            return None

        sha256 = hashlib.sha256()
        try:
            async with aiofiles.open(file_path, "rb") as f:
                while True:
                    data = await f.read(FileVerifier.CHUNK_SIZE)
                    if not data:
                        break
                    sha256.update(data)
            return sha256.hexdigest()
        except (IOError, OSError):
            return None

    @staticmethod
    def digests_equal(actual: Optional[str], expected: Optional[str]) -> bool:
        """不区分大小写的十六进制比较"""
        if not actual or not expected:
            return False
        return actual.strip().lower() == expected.strip().lower()

    @staticmethod
    def get_size(file_path: str) -> int:
        """获取文件大小"""
        try:
            return os.path.getsize(file_path)
        except (IOError, OSError):
            return -1

    @staticmethod
    async def verify(
        file_path: str, expected_digest: str, expected_size: Optional[int] = None
    ) -> bool:
        """
        检查文件是否存在且与期望值一致

        expected_size 非零时先比较大小，不一致则不再计算哈希。
        """
        if not os.path.isfile(file_path):
            return False

        if expected_size and FileVerifier.get_size(file_path) != int(expected_size):
            return False

        actual = await FileVerifier.digest(file_path)
        return FileVerifier.digests_equal(actual, expected_digest)
