"""
GameFetch 服务层

包含校验清单客户端和模组目录客户端。
"""

from gamefetch.services.manifest_client import ManifestClient
from gamefetch.services.catalog import ModCatalogClient

__all__ = [
    "ManifestClient",
    "ModCatalogClient",
]
