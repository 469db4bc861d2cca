"""
CLI 模块

命令行接口实现。
"""

import asyncio
import json
import os
import signal
from pathlib import Path
from typing import Optional

import click
import toml
import yaml
from loguru import logger

from gamefetch import __version__
from gamefetch.download import CancelToken
from gamefetch.exceptions import (
    ConfigError,
    ConfigParseError,
    DownloadCancelled,
    GameFetchError,
)
from gamefetch.logger import setup_logger
from gamefetch.mods import ModInstaller, ModRegistry, ModState
from gamefetch.models import (
    EventType,
    GameFetchConfig,
    InstallProgress,
    OperationResult,
    ProgressEvent,
)
from gamefetch.orchestrator import GameFetchOrchestrator
from gamefetch.services import ModCatalogClient


DEFAULT_CONFIG = "gamefetch.toml"


def load_config(config_path: str) -> dict:
    """加载配置文件"""
    path = Path(config_path)

    if not path.exists():
        raise ConfigError(f"配置文件不存在: {config_path}", context={"path": config_path})

    suffix = path.suffix.lower()

    try:
        if suffix == ".toml":
            data = toml.load(config_path)
        elif suffix == ".json":
            data = json.loads(path.read_text(encoding="utf-8"))
        elif suffix in (".yaml", ".yml"):
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        else:
            raise ConfigError(
                f"不支持的配置文件格式: {suffix}", context={"path": config_path}
            )
    except (toml.TomlDecodeError, ValueError, yaml.YAMLError) as e:
        raise ConfigParseError(
            f"配置文件解析失败: {e}", context={"path": config_path}
        ) from e

    if not isinstance(data, dict):
        raise ConfigParseError("配置文件根节点必须是表/对象", context={"path": config_path})
    return data


def build_config(config_path: Optional[str], overrides: dict) -> GameFetchConfig:
    """读取配置并应用命令行覆盖"""
    try:
        if config_path:
            data = load_config(config_path)
        elif Path(DEFAULT_CONFIG).exists():
            data = load_config(DEFAULT_CONFIG)
        else:
            data = {}
    except GameFetchError as e:
        raise click.ClickException(str(e))

    for section, values in overrides.items():
        for key, value in values.items():
            if value is not None:
                data.setdefault(section, {})[key] = value

    try:
        return GameFetchConfig.from_dict(data)
    except GameFetchError as e:
        raise click.ClickException(str(e))


class ConsoleProgress:
    """在终端打印文件级进度"""

    def __init__(self):
        self.total_bytes = 0
        self.received_bytes = 0

    def __call__(self, event: ProgressEvent) -> None:
        if event.type == EventType.BYTES_TOTAL:
            self.total_bytes = event.size
        elif event.type == EventType.BYTES:
            self.received_bytes += event.delta
        elif event.type == EventType.DONE:
            mb = self.received_bytes / (1024 * 1024)
            click.echo(f"[{event.completed}/{event.total}] {event.path} ({mb:.1f} MB 已下载)")
        elif event.type == EventType.MERGE_START:
            click.echo(f"[合并] {event.path}: {event.total_parts} 个分片")
        elif event.type == EventType.ERROR:
            click.echo(f"[错误] {event.path}: {event.message}", err=True)


def print_install_progress(progress: InstallProgress) -> None:
    if progress.phase == "downloading" and progress.total:
        percent = progress.received / progress.total * 100
        click.echo(f"[{progress.key}] 下载中 {percent:.0f}%")
    elif progress.phase != "downloading":
        click.echo(f"[{progress.key}] {progress.phase}")


def report(result: OperationResult) -> None:
    if not result.ok:
        raise click.ClickException(result.error or "操作失败")


@click.group()
@click.option("-c", "--config", "config_path", type=click.Path(), help="配置文件 (toml/json/yaml)")
@click.option("--debug", is_flag=True, help="启用调试模式")
@click.option("--log-file", type=click.Path(dir_okay=False), help="同时写入日志文件")
@click.version_option(version=__version__)
@click.pass_context
def main(
    ctx: click.Context, config_path: Optional[str], debug: bool, log_file: Optional[str]
):
    """GameFetch - 游戏文件下载与模组管理工具"""
    if debug or log_file or os.environ.get("GAMEFETCH_DEBUG") == "1":
        level = setup_logger(level="DEBUG" if debug else None, log_file=log_file)
        logger.debug(f"日志级别: {level}")
    ctx.obj = {"config_path": config_path}


async def run_download(config: GameFetchConfig, verify_only: bool = False) -> None:
    """异步运行下载或校验"""
    token = CancelToken()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, token.cancel)
    except (NotImplementedError, RuntimeError):
        pass

    async with GameFetchOrchestrator(config, ConsoleProgress()) as orchestrator:
        if verify_only:
            invalid = await orchestrator.verify()
            for path in invalid:
                click.echo(path)
            if invalid:
                raise click.ClickException(f"{len(invalid)} 个文件缺失或损坏")
            return

        stats = await orchestrator.download(token=token)
        click.echo(
            f"完成: {stats.downloaded} 下载, {stats.skipped} 跳过, 共 {stats.total} 个文件"
        )


def _run(config: GameFetchConfig, verify_only: bool) -> None:
    try:
        asyncio.run(run_download(config, verify_only))
    except DownloadCancelled:
        click.echo("下载已取消", err=True)
        raise click.exceptions.Exit(130)
    except GameFetchError as e:
        logger.debug(f"错误详情: {e.to_dict()}")
        raise click.ClickException(str(e))


@main.command()
@click.option("--optional/--no-optional", "include_optional", default=None, help="是否包含可选文件")
@click.option("--base-url", help="内容服务器地址")
@click.option("--install-dir", type=click.Path(file_okay=False), help="安装目录")
@click.option("--max-speed", type=int, help="限速 (字节/秒，0 不限速)")
@click.pass_context
def download(ctx, include_optional, base_url, install_dir, max_speed):
    """按校验清单下载或修复游戏文件"""
    config = build_config(
        ctx.obj["config_path"],
        {
            "game": {
                "base_url": base_url,
                "install_dir": install_dir,
                "include_optional": include_optional,
            },
            "download": {"max_speed": max_speed},
        },
    )
    if config.game.install_dir:
        Path(config.game.install_dir).mkdir(parents=True, exist_ok=True)
    _run(config, verify_only=False)


@main.command()
@click.option("--base-url", help="内容服务器地址")
@click.option("--install-dir", type=click.Path(file_okay=False), help="安装目录")
@click.pass_context
def verify(ctx, base_url, install_dir):
    """检查本地安装的完整性"""
    config = build_config(
        ctx.obj["config_path"],
        {"game": {"base_url": base_url, "install_dir": install_dir}},
    )
    _run(config, verify_only=True)


@main.group()
@click.option("--install-dir", type=click.Path(file_okay=False), help="安装目录")
@click.pass_context
def mods(ctx, install_dir):
    """模组管理"""
    config = build_config(ctx.obj["config_path"], {"game": {"install_dir": install_dir}})
    if not config.game.install_dir:
        raise click.ClickException("请指定 --install-dir 或配置 game.install_dir")
    state = ModState()
    ctx.obj["config"] = config
    ctx.obj["install_dir"] = config.game.install_dir
    ctx.obj["registry"] = ModRegistry(state)
    ctx.obj["state"] = state


@mods.command("list")
@click.option("--json", "as_json", is_flag=True, help="以 JSON 输出")
@click.pass_context
def mods_list(ctx, as_json):
    """列出已安装模组"""
    result = asyncio.run(ctx.obj["registry"].list_installed(ctx.obj["install_dir"]))
    report(result)
    if as_json:
        click.echo(
            json.dumps(
                [view.to_dict() for view in result.value], ensure_ascii=False, indent=2
            )
        )
        return
    for view in result.value:
        mark = "✓" if view.enabled else "✗"
        version = f" v{view.version}" if view.version else ""
        click.echo(f"  [{mark}] {view.name}{version} ({view.id}) - {view.folder}")


@mods.command("enable")
@click.argument("mod_id")
@click.pass_context
def mods_enable(ctx, mod_id):
    """启用模组"""
    report(asyncio.run(ctx.obj["registry"].set_enabled(ctx.obj["install_dir"], mod_id, True)))


@mods.command("disable")
@click.argument("mod_id")
@click.pass_context
def mods_disable(ctx, mod_id):
    """禁用模组"""
    report(asyncio.run(ctx.obj["registry"].set_enabled(ctx.obj["install_dir"], mod_id, False)))


@mods.command("reorder")
@click.argument("mod_ids", nargs=-1, required=True)
@click.option("--prune", is_flag=True, help="移除未列出且已卸载的孤立条目")
@click.pass_context
def mods_reorder(ctx, mod_ids, prune):
    """调整模组加载顺序"""
    result = asyncio.run(
        ctx.obj["registry"].reorder(ctx.obj["install_dir"], list(mod_ids), prune_missing=prune)
    )
    report(result)
    for index, mod_id in enumerate(result.value, start=1):
        click.echo(f"  {index}. {mod_id}")


@mods.command("uninstall")
@click.argument("folder")
@click.pass_context
def mods_uninstall(ctx, folder):
    """卸载模组（删除模组目录）"""
    report(asyncio.run(ctx.obj["registry"].uninstall(ctx.obj["install_dir"], folder)))


@mods.command("install")
@click.argument("mod_key")
@click.argument("download_url")
@click.pass_context
def mods_install(ctx, mod_key, download_url):
    """从受信任主机下载并安装模组"""
    mods_config = ctx.obj["config"].mods

    async def _install() -> OperationResult:
        async with ModInstaller(
            state=ctx.obj["state"],
            trusted_hosts=mods_config.trusted_hosts,
            max_redirects=mods_config.max_redirects,
            user_agent=mods_config.user_agent,
            progress_callback=print_install_progress,
        ) as installer:
            return await installer.install(ctx.obj["install_dir"], mod_key, download_url)

    result = asyncio.run(_install())
    report(result)
    if result.value:
        click.echo(f"已安装并启用: {result.value}")


@mods.command("search")
@click.argument("query", required=False)
@click.pass_context
def mods_search(ctx, query):
    """搜索模组目录"""
    mods_config = ctx.obj["config"].mods

    async def _search() -> list:
        async with ModCatalogClient(
            mods_config.catalog_url, user_agent=mods_config.user_agent
        ) as client:
            return await client.fetch_all(query)

    try:
        packages = asyncio.run(_search())
    except GameFetchError as e:
        raise click.ClickException(str(e))
    for package in packages:
        click.echo(f"  {package.get('full_name') or package.get('name')}")


if __name__ == "__main__":
    main()
