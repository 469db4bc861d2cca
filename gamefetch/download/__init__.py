"""
GameFetch 下载层

包含取消令牌、重试传输、文件校验、分片合并、单文件获取与下载引擎。
"""

from gamefetch.download.cancel import CancelToken
from gamefetch.download.rate_limiter import RateLimiter
from gamefetch.download.transport import RetryingTransport
from gamefetch.download.verifier import FileVerifier
from gamefetch.download.merger import PartMerger
from gamefetch.download.progress import ProgressEmitter
from gamefetch.download.acquirer import FileAcquirer
from gamefetch.download.engine import DownloadEngine, DownloadStats

__all__ = [
    "CancelToken",
    "RateLimiter",
    "RetryingTransport",
    "FileVerifier",
    "PartMerger",
    "ProgressEmitter",
    "FileAcquirer",
    "DownloadEngine",
    "DownloadStats",
]
