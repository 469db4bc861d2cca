"""
模组安装器测试
"""

import asyncio
import io
import zipfile

import pytest

from gamefetch.mods import ModInstaller, ModState
from gamefetch.mods.installer import extract_archive
from gamefetch.exceptions import ArchiveError


def _zip(files: dict) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name, data in files.items():
            zf.writestr(name, data)
    return buffer.getvalue()


def _corrupt_deflated(name: str, data: bytes) -> bytes:
    """压缩数据中间翻转 8 个字节"""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr(name, data)
    raw = bytearray(buffer.getvalue())
    with zipfile.ZipFile(io.BytesIO(bytes(raw))) as zf:
        info = zf.getinfo(name)
    start = info.header_offset + 30 + len(info.filename.encode())
    middle = start + info.compress_size // 2
    for i in range(middle, middle + 8):
        raw[i] ^= 0xFF
    return bytes(raw)


def _unsupported_method(name: str, data: bytes) -> bytes:
    """把中央目录中的压缩方式改成未知值"""
    raw = bytearray(_zip({name: data}))
    central = raw.index(b"PK\x01\x02")
    raw[central + 10 : central + 12] = (99).to_bytes(2, "little")
    return bytes(raw)


VDF_BODY = "".join(f'\t"key{i}"\t"{i * 7919}"\n' for i in range(400)).encode()


MOD_ZIP = _zip(
    {
        "Author-Mod/mod.vdf": '"Mod"\n{\n\t"id"\t"author.mod"\n\t"name"\t"Mod"\n}\n',
        "Author-Mod/scripts/init.nut": "print(1)",
        "manifest.json": '{"name": "Mod", "version_number": "1.0.0"}',
    }
)


def _local_installer(state=None, events=None, **kwargs) -> ModInstaller:
    return ModInstaller(
        state=state or ModState(),
        trusted_hosts=["127.0.0.1"],
        allowed_schemes=("http", "https"),
        progress_callback=events.append if events is not None else None,
        **kwargs,
    )


class TestTrust:
    """受信任主机"""

    def test_default_hosts(self):
        installer = ModInstaller()

        assert installer.is_trusted("https://thunderstore.io/package/download/a/b/1.0.0/")
        assert installer.is_trusted("https://gcdn.thunderstore.io/live/x.zip")
        assert not installer.is_trusted("http://thunderstore.io/x.zip")
        assert not installer.is_trusted("https://evilthunderstore.io/x.zip")
        assert not installer.is_trusted("https://thunderstore.io.evil.com/x.zip")
        assert not installer.is_trusted("not a url")

    def test_untrusted_url_rejected_without_request(self, content_server, install_dir):
        async def scenario():
            async with content_server as server:
                server.files["pkg.zip"] = MOD_ZIP
                async with ModInstaller() as installer:
                    result = await installer.install(
                        str(install_dir), "Author-Mod", server.url("pkg.zip")
                    )
                return result, len(server.requests)

        result, requests = asyncio.run(scenario())

        assert not result.ok
        assert "E401" in result.error
        assert requests == 0
        assert not (install_dir / "mods").exists()


class TestInstall:
    """安装流程"""

    def test_install_enables_descriptor_id(self, content_server, install_dir):
        events = []
        stale = install_dir / "mods" / "Author-Mod" / "old.txt"
        stale.parent.mkdir(parents=True)
        stale.write_text("stale")

        async def scenario():
            async with content_server as server:
                server.files["pkg.zip"] = MOD_ZIP
                async with _local_installer(events=events) as installer:
                    return await installer.install(
                        str(install_dir), "Author-Mod", server.url("pkg.zip")
                    )

        result = asyncio.run(scenario())

        assert result.ok
        assert result.value == "author.mod"
        mods_dir = install_dir / "mods"
        assert (mods_dir / "Author-Mod" / "Author-Mod" / "scripts" / "init.nut").exists()
        assert not stale.exists()
        assert (mods_dir / "mods.vdf").read_text() == (
            '"ModList"\n{\n\t"author.mod"\t\t"1"\n}'
        )
        assert not any(path.name.startswith(".__mod_") for path in mods_dir.iterdir())
        phases = [event.phase for event in events]
        assert phases.index("extracting") < phases.index("done")

    def test_install_without_descriptor_uses_key(self, content_server, install_dir):
        async def scenario():
            async with content_server as server:
                server.files["pkg.zip"] = _zip({"readme.txt": "hi"})
                async with _local_installer() as installer:
                    return await installer.install(
                        str(install_dir), "Plain-Mod", server.url("pkg.zip")
                    )

        result = asyncio.run(scenario())

        assert result.value == "Plain-Mod"

    def test_install_preserves_existing_order(self, content_server, install_dir):
        mods_dir = install_dir / "mods"
        mods_dir.mkdir()
        (mods_dir / "mods.vdf").write_text('"ModList"\n{\n\t"b"\t\t"0"\n\t"a"\t\t"1"\n}')

        async def scenario():
            async with content_server as server:
                server.files["pkg.zip"] = MOD_ZIP
                async with _local_installer() as installer:
                    await installer.install(str(install_dir), "Author-Mod", server.url("pkg.zip"))

        asyncio.run(scenario())

        assert (mods_dir / "mods.vdf").read_text() == (
            '"ModList"\n{\n\t"b"\t\t"0"\n\t"a"\t\t"1"\n\t"author.mod"\t\t"1"\n}'
        )

    def test_duplicate_install_is_noop(self, content_server, install_dir):
        state = ModState()
        state.begin_install("Author-Mod")

        async def scenario():
            async with content_server as server:
                server.files["pkg.zip"] = MOD_ZIP
                async with _local_installer(state=state) as installer:
                    result = await installer.install(
                        str(install_dir), "Author-Mod", server.url("pkg.zip")
                    )
                return result, len(server.requests)

        result, requests = asyncio.run(scenario())

        assert result.ok
        assert result.value is None
        assert requests == 0
        assert state.is_installing("Author-Mod")

    def test_missing_install_dir(self, tmp_path):
        result = asyncio.run(
            _local_installer().install(
                str(tmp_path / "nope"), "Author-Mod", "http://127.0.0.1/pkg.zip"
            )
        )

        assert not result.ok
        assert "E400" in result.error

    def test_bad_archive_clears_marker(self, content_server, install_dir):
        state = ModState()

        async def scenario():
            async with content_server as server:
                server.files["pkg.zip"] = b"definitely not a zip"
                async with _local_installer(state=state) as installer:
                    return await installer.install(
                        str(install_dir), "Author-Mod", server.url("pkg.zip")
                    )

        result = asyncio.run(scenario())

        assert not result.ok
        assert "E502" in result.error
        assert not state.is_installing("Author-Mod")
        assert not (install_dir / "mods" / "mods.vdf").exists()


    def test_corrupt_member_clears_marker(self, content_server, install_dir):
        state = ModState()

        async def scenario():
            async with content_server as server:
                server.files["pkg.zip"] = _corrupt_deflated("Author-Mod/mod.vdf", VDF_BODY)
                async with _local_installer(state=state) as installer:
                    return await installer.install(
                        str(install_dir), "Author-Mod", server.url("pkg.zip")
                    )

        result = asyncio.run(scenario())

        assert result.ok is False
        assert result.code == "E502"
        assert not state.is_installing("Author-Mod")
        assert not (install_dir / "mods" / "mods.vdf").exists()


class TestRedirects:
    """重定向"""

    def test_follows_redirect(self, content_server, install_dir):
        async def scenario():
            async with content_server as server:
                server.files["cdn/pkg.zip"] = MOD_ZIP
                server.redirects["download"] = "/cdn/pkg.zip"
                async with _local_installer() as installer:
                    return await installer.install(
                        str(install_dir), "Author-Mod", server.url("download")
                    )

        result = asyncio.run(scenario())

        assert result.ok
        assert result.value == "author.mod"

    def test_redirect_loop_fails(self, content_server, install_dir):
        async def scenario():
            async with content_server as server:
                server.redirects["a"] = "/b"
                server.redirects["b"] = "/a"
                async with _local_installer() as installer:
                    result = await installer.install(
                        str(install_dir), "Author-Mod", server.url("a")
                    )
                return result, list(server.requests)

        result, requests = asyncio.run(scenario())

        assert not result.ok
        assert "E501" in result.error
        assert requests == ["a", "b"]

    def test_too_many_redirects(self, content_server, install_dir):
        async def scenario():
            async with content_server as server:
                for i in range(5):
                    server.redirects[f"r{i}"] = f"/r{i + 1}"
                server.files["r5"] = MOD_ZIP
                async with _local_installer(max_redirects=3) as installer:
                    result = await installer.install(
                        str(install_dir), "Author-Mod", server.url("r0")
                    )
                return result, len(server.requests)

        result, requests = asyncio.run(scenario())

        assert not result.ok
        assert "E501" in result.error
        assert requests == 4

    def test_error_status_fails(self, content_server, install_dir):
        async def scenario():
            async with content_server as server:
                async with _local_installer() as installer:
                    return await installer.install(
                        str(install_dir), "Author-Mod", server.url("missing.zip")
                    )

        result = asyncio.run(scenario())

        assert not result.ok
        assert "HTTP 404" in result.error


def test_extract_archive_rejects_garbage(tmp_path):
    archive = tmp_path / "bad.zip"
    archive.write_bytes(b"garbage")

    with pytest.raises(ArchiveError):
        extract_archive(str(archive), str(tmp_path / "out"))


@pytest.mark.parametrize("build", [_corrupt_deflated, _unsupported_method])
def test_extract_archive_wraps_member_errors(tmp_path, build):
    archive = tmp_path / "broken.zip"
    archive.write_bytes(build("Author-Mod/mod.vdf", VDF_BODY))

    with pytest.raises(ArchiveError):
        extract_archive(str(archive), str(tmp_path / "out"))
