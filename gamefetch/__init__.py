"""
GameFetch

基于校验清单的游戏文件下载与模组管理工具。
"""

from gamefetch.logger import setup_logger

__version__ = "0.1.0"

__all__ = ["setup_logger", "__version__"]
