"""
模组描述文件 (mod.vdf) 解析

只用模式扫描提取带引号的 id 与 name 字段。
"""

import os
import re

import aiofiles

from gamefetch.models import ModDescriptor


DESCRIPTOR_FILENAME = "mod.vdf"

_ID_PATTERN = re.compile(r'"id"\s*"([^"]+)"', re.IGNORECASE)
_NAME_PATTERN = re.compile(r'"name"\s*"([^"]+)"', re.IGNORECASE)


def parse_descriptor(text: str) -> ModDescriptor:
    id_match = _ID_PATTERN.search(text)
    name_match = _NAME_PATTERN.search(text)
    return ModDescriptor(
        id=id_match.group(1) if id_match else None,
        name=name_match.group(1) if name_match else None,
    )


async def read_descriptor(path: str) -> ModDescriptor:
    """读取描述文件；不存在时返回空描述"""
    try:
        async with aiofiles.open(path, "r", encoding="utf-8", errors="replace") as f:
            return parse_descriptor(await f.read())
    except FileNotFoundError:
        return ModDescriptor()


async def find_descriptor(root: str) -> ModDescriptor:
    """
    在解压根目录查找描述文件，找不到时扫描一级子目录
    """
    primary = os.path.join(root, DESCRIPTOR_FILENAME)
    if os.path.isfile(primary):
        return await read_descriptor(primary)

    if not os.path.isdir(root):
        return ModDescriptor()

    for name in sorted(os.listdir(root)):
        candidate = os.path.join(root, name, DESCRIPTOR_FILENAME)
        if os.path.isfile(candidate):
            descriptor = await read_descriptor(candidate)
            if descriptor.id:
                return descriptor
    return ModDescriptor()
