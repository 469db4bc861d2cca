"""
日志模块

loguru 的统一配置：终端输出到 stderr（stdout 留给命令结果，例如 --json），
可选地再写一份完整的调试日志文件。
"""

import os
import sys
from typing import Optional

from loguru import logger


CONSOLE_FORMAT = "{time:HH:mm:ss} | {level: <8} | {message}"
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{line} | {message}"


def resolve_level(level: Optional[str] = None) -> str:
    """显式级别优先，其次是 GAMEFETCH_DEBUG 环境变量"""
    if level:
        return level.upper()
    return "DEBUG" if os.environ.get("GAMEFETCH_DEBUG", "0") == "1" else "INFO"


def setup_logger(
    level: Optional[str] = None,
    sink=None,
    log_file: Optional[str] = None,
    colorize: Optional[bool] = None,
) -> str:
    """
    设置日志记录器

    Args:
        level: 日志级别 (DEBUG, INFO, WARNING, ERROR)，为空时读取环境变量
        sink: 终端输出目标，默认 sys.stderr
        log_file: 额外的日志文件路径，每次运行覆盖，始终记录 DEBUG
        colorize: 是否启用颜色，默认由 loguru 按终端判断

    Returns:
        实际使用的日志级别
    """
    level = resolve_level(level)
    debug = level == "DEBUG"

    logger.remove()
    logger.add(
        sink=sink or sys.stderr,
        format=CONSOLE_FORMAT,
        level=level,
        colorize=colorize,
        backtrace=debug,
        diagnose=debug,
    )

    if log_file:
        try:
            directory = os.path.dirname(os.path.abspath(log_file))
            os.makedirs(directory, exist_ok=True)
            logger.add(
                log_file,
                format=FILE_FORMAT,
                level="DEBUG",
                mode="w",
                encoding="utf-8",
            )
        except OSError as e:
            logger.warning(f"[日志] 无法创建日志文件: {e}")
        else:
            logger.debug(f"[日志] 写入日志文件: {log_file}")

    return level


__all__ = ["logger", "setup_logger", "resolve_level"]
