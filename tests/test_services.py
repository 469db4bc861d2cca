"""
服务层测试：校验清单客户端与模组目录客户端
"""

import asyncio
import gzip
import json

import pytest

from gamefetch.exceptions import ManifestError, ModError
from gamefetch.services import ManifestClient, ModCatalogClient
from gamefetch.services.catalog import filter_packages, gunzip_maybe


class TestManifestClient:
    """获取 checksums.json"""

    def test_fetch(self, content_server):
        payload = {"files": [{"path": "a.txt", "checksum": "abc", "size": 3}]}

        async def scenario():
            async with content_server as server:
                server.files["checksums.json"] = json.dumps(payload).encode()
                async with ManifestClient() as client:
                    return await client.fetch(server.base_url + "/")

        manifest = asyncio.run(scenario())

        assert [entry.path for entry in manifest.files] == ["a.txt"]

    def test_http_error(self, content_server):
        async def scenario():
            async with content_server as server:
                async with ManifestClient() as client:
                    await client.fetch(server.base_url)

        with pytest.raises(ManifestError) as exc_info:
            asyncio.run(scenario())
        assert exc_info.value.context["status_code"] == 404

    def test_invalid_json(self, content_server):
        async def scenario():
            async with content_server as server:
                server.files["checksums.json"] = b"{not json"
                async with ManifestClient() as client:
                    await client.fetch(server.base_url)

        with pytest.raises(ManifestError):
            asyncio.run(scenario())


    @pytest.mark.parametrize("size", ["abc", [1], -4])
    def test_invalid_size(self, content_server, size):
        payload = {"files": [{"path": "a.bin", "checksum": "00", "size": size}]}

        async def scenario():
            async with content_server as server:
                server.files["checksums.json"] = json.dumps(payload).encode()
                async with ManifestClient() as client:
                    await client.fetch(server.base_url)

        with pytest.raises(ManifestError) as exc_info:
            asyncio.run(scenario())
        assert "a.bin" in str(exc_info.value)


class TestCatalog:
    """模组目录"""

    PAGE_ONE = [{"name": "Alpha", "full_name": "Team-Alpha"}]
    PAGE_TWO = [{"name": "Beta", "full_name": "Team-Beta"}, {"name": "Gamma"}]

    def test_indexed_listing(self, content_server):
        async def scenario():
            async with content_server as server:
                index = [server.url("pages/1.json.gz"), server.url("pages/2.json.gz")]
                server.files["package-listing-index/"] = gzip.compress(json.dumps(index).encode())
                server.files["pages/1.json.gz"] = gzip.compress(json.dumps(self.PAGE_ONE).encode())
                server.files["pages/2.json.gz"] = gzip.compress(json.dumps(self.PAGE_TWO).encode())
                async with ModCatalogClient(server.base_url) as client:
                    return await client.fetch_all()

        packages = asyncio.run(scenario())

        assert sorted(p["name"] for p in packages) == ["Alpha", "Beta", "Gamma"]

    def test_missing_page_is_skipped(self, content_server):
        async def scenario():
            async with content_server as server:
                index = [server.url("pages/1.json"), server.url("pages/missing.json")]
                server.files["package-listing-index/"] = json.dumps(index).encode()
                server.files["pages/1.json"] = json.dumps(self.PAGE_ONE).encode()
                async with ModCatalogClient(server.base_url) as client:
                    return await client.fetch_all()

        packages = asyncio.run(scenario())

        assert [p["name"] for p in packages] == ["Alpha"]

    def test_falls_back_to_package_list(self, content_server):
        async def scenario():
            async with content_server as server:
                server.files["package/"] = json.dumps(self.PAGE_TWO).encode()
                async with ModCatalogClient(server.base_url) as client:
                    return await client.fetch_all("beta")

        packages = asyncio.run(scenario())

        assert [p["name"] for p in packages] == ["Beta"]

    def test_both_sources_unavailable(self, content_server):
        async def scenario():
            async with content_server as server:
                async with ModCatalogClient(server.base_url) as client:
                    await client.fetch_all()

        with pytest.raises(ModError):
            asyncio.run(scenario())

    def test_filter_packages(self):
        packages = self.PAGE_ONE + self.PAGE_TWO

        assert filter_packages(packages, None) == packages
        assert filter_packages(packages, "  ") == packages
        assert [p["name"] for p in filter_packages(packages, "TEAM-")] == ["Alpha", "Beta"]

    def test_gunzip_maybe(self):
        assert gunzip_maybe(gzip.compress(b"data")) == b"data"
        assert gunzip_maybe(b"plain") == b"plain"
