"""CLI interface for pyipfsync."""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Optional

import click

from . import __version__
from .api import IpfsClient
from .config import DEFAULT_CONFIG_PATH, DEFAULT_DB_PATH, ConfigFile, Configuration
from .estuary import EstuaryClient
from .exceptions import IpfsConfigError, IpfsSyncError
from .output import OutputFormatter
from .sync import FingerprintStore, MonitoredDirectory, SyncEngine
from .utils import parse_duration

logger = logging.getLogger(__name__)

COPYRIGHT = "Copyright © 2022, The ipfs-sync Contributors. All rights reserved."


def _duration(ctx: Any, param: Any, value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        return parse_duration(value)
    except ValueError as e:
        raise click.BadParameter(str(e)) from e


def _json_dirs(ctx: Any, param: Any, value: Optional[str]) -> Optional[list]:
    if value is None:
        return None
    try:
        dirs = json.loads(value)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"Invalid JSON: {e}") from e
    if not isinstance(dirs, list):
        raise click.BadParameter("Expected a JSON array of directory entries")
    return dirs


def _suffixes(ctx: Any, param: Any, value: Optional[str]) -> Optional[list[str]]:
    if value is None:
        return None
    return [suffix.strip() for suffix in value.split(",") if suffix.strip()]


def _print_copyright(ctx: Any, param: Any, value: bool) -> None:
    if not value or ctx.resilient_parsing:
        return
    click.echo(COPYRIGHT)
    ctx.exit(0)


def configure_logging(verbose: bool) -> None:
    """Configure logging based on the verbose flag."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("pyipfsync").setLevel(logging.DEBUG)
    else:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
        # keep httpx request lines out of the normal output
        logging.getLogger("httpx").setLevel(logging.WARNING)


async def run_engine(
    config: Configuration,
    directories: list[MonitoredDirectory],
    out: OutputFormatter,
) -> None:
    """Open the store, build the engine and sync until cancelled."""
    store = await FingerprintStore(config.db).open() if config.db else None
    client = IpfsClient(
        endpoint=config.endpoint, base_path=config.base_path, timeout=config.timeout
    )
    estuary = EstuaryClient(api_key=config.estuary_api_key, timeout=config.timeout)
    engine = SyncEngine(
        client,
        directories,
        store=store,
        estuary=estuary,
        output=out,
        ignore_suffixes=config.ignore,
        ignore_hidden=config.ignore_hidden,
        sync_interval=config.sync,
        verify_filestore=config.verify_filestore,
    )
    out.info(f"pyipfsync v{config.version} starting up...")
    await engine.run()


@click.command()
@click.option("--base-path", help="Relative MFS directory path (default: /ipfs-sync/)")
@click.option(
    "--endpoint",
    help="Node to connect to over HTTP (default: http://127.0.0.1:5001)",
)
@click.option(
    "--sync",
    callback=_duration,
    help='Time to wait between IPNS syncs, eg. "10s" or "1m 30s" (default: 10s)',
)
@click.option(
    "--timeout",
    callback=_duration,
    help='Longest time to wait for short API calls like "version" and '
    '"files/mkdir", eg. "10s" or "1m 30s" (default: 30s)',
)
@click.option(
    "--config",
    type=click.Path(dir_okay=False, path_type=Path),
    help=f"Path to config file to use (default: {DEFAULT_CONFIG_PATH})",
)
@click.option(
    "--db",
    help=f"Path to file where db should be stored (default: {DEFAULT_DB_PATH})",
)
@click.option(
    "--ignore-hidden/--no-ignore-hidden",
    default=None,
    help='Ignore files prefixed with "." (default: false)',
)
@click.option(
    "--dirs",
    callback=_json_dirs,
    help="A JSON array of directory configurations to monitor, eg. "
    '[{"ID": "Example1", "Dir": "/home/user/Documents/", "Nocopy": false}]',
)
@click.option(
    "--ignore",
    callback=_suffixes,
    help="A comma-separated list of suffixes to ignore "
    "(default: kate-swp,swp,part,crdownload)",
)
@click.option(
    "--verify",
    "verify_filestore",
    is_flag=True,
    default=None,
    help="Verify filestore on startup; not recommended unless you're having "
    "issues (default: false)",
)
@click.option(
    "--estuary-api-key",
    envvar="ESTUARY_API_KEY",
    help="Estuary API key used for directories with Estuary set",
)
@click.option(
    "--copyright",
    is_flag=True,
    expose_value=False,
    is_eager=True,
    callback=_print_copyright,
    help="Display copyright and exit",
)
@click.version_option(
    __version__, "--version", prog_name="pyipfsync", message="%(prog)s %(version)s"
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.pass_context
def main(ctx: Any, **kwargs: Any) -> None:
    """pyipfsync - Keep local directories in sync with IPFS and IPNS."""
    verbose = kwargs["verbose"]
    configure_logging(verbose)
    out = OutputFormatter()

    if verbose:
        logger.debug(f"CLI args: {kwargs}")

    out.info("Loading configuration...")
    config_path = kwargs["config"] or DEFAULT_CONFIG_PATH
    try:
        config_file = ConfigFile.load(Path(config_path).expanduser())
        config = Configuration.create(kwargs, config_file)
        directories = config.directories()
    except IpfsConfigError as e:
        out.fatal(str(e))
        ctx.exit(1)

    if config.verbose:
        logger.debug(f"Configuration: {config}")

    try:
        asyncio.run(run_engine(config, directories, out))
    except KeyboardInterrupt:
        out.warning("Sync cancelled by user")
        ctx.exit(130)
    except (IpfsSyncError, OSError) as e:
        out.fatal(str(e))
        ctx.exit(1)


if __name__ == "__main__":
    main()
