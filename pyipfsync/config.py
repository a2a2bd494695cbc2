"""Configuration loading for pyipfsync.

Settings come from three places, in order of precedence: command line
arguments, the YAML config file, and built-in defaults.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from . import __version__
from .api import DEFAULT_BASE_PATH, DEFAULT_ENDPOINT
from .exceptions import IpfsConfigError
from .sync.directory import MonitoredDirectory
from .utils import (
    DEFAULT_IGNORE_SUFFIXES,
    DEFAULT_SYNC_INTERVAL,
    DEFAULT_TIMEOUT,
    parse_duration,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".ipfs-sync.yaml"
DEFAULT_DB_PATH = Path.home() / ".ipfs-sync.db"

SAMPLE_CONFIG = """\
# Relative MFS directory all synced directories live under
BasePath: /ipfs-sync/
# IPFS daemon API
EndPoint: http://127.0.0.1:5001
# Directories to keep in sync
Dirs: []
#  - ID: Example
#    Dir: /home/user/Documents/
#    Nocopy: false
#    DontHash: false
#    Pin: false
#    Estuary: false
# Time between IPNS syncs
Sync: 10s
# Longest time to wait for short API calls
Timeout: 30s
# File suffixes to ignore
Ignore:
  - kate-swp
  - swp
  - part
  - crdownload
# Fingerprint database; an empty string runs without change tracking
DB: {db}
IgnoreHidden: true
VerifyFilestore: false
# EstuaryAPIKey: <key>
"""


def _optional_duration(value: Any, name: str) -> Optional[float]:
    if value is None:
        return None
    try:
        return parse_duration(value)
    except ValueError as e:
        raise IpfsConfigError(f"Invalid {name} duration in config file: {e}") from e


@dataclass
class ConfigFile:
    """Settings read from the YAML config file. Unset keys stay None."""

    base_path: Optional[str] = None
    endpoint: Optional[str] = None
    dirs: Optional[list[dict[str, Any]]] = None
    sync: Optional[float] = None
    ignore: Optional[list[str]] = None
    db: Optional[str] = None
    ignore_hidden: Optional[bool] = None
    timeout: Optional[float] = None
    estuary_api_key: Optional[str] = None
    verify_filestore: Optional[bool] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConfigFile":
        """Create settings from the parsed YAML mapping."""
        dirs = data.get("Dirs")
        if dirs is not None and not isinstance(dirs, list):
            raise IpfsConfigError("Dirs must be a list in the config file")
        return cls(
            base_path=data.get("BasePath"),
            endpoint=data.get("EndPoint"),
            dirs=dirs,
            sync=_optional_duration(data.get("Sync"), "Sync"),
            ignore=data.get("Ignore"),
            db=data.get("DB"),
            ignore_hidden=data.get("IgnoreHidden"),
            timeout=_optional_duration(data.get("Timeout"), "Timeout"),
            estuary_api_key=data.get("EstuaryAPIKey"),
            verify_filestore=data.get("VerifyFilestore"),
        )

    @classmethod
    def load(cls, path: Path) -> Optional["ConfigFile"]:
        """Load the config file at ``path``.

        A sample config file is written when none exists yet.

        Returns:
            The parsed settings, or None if the file can't be written, read
            or parsed
        """
        logger.info(f"Loading config file {path}")

        if not path.exists():
            logger.info(f"Config file not found at {path}, generating...")
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(
                    SAMPLE_CONFIG.format(db=DEFAULT_DB_PATH), encoding="utf-8"
                )
            except OSError as e:
                logger.error(f"Could not generate config file: {e}")
                logger.error("Skipping config file")
                return None

        try:
            contents = path.read_text(encoding="utf-8")
        except OSError as e:
            logger.error(f"Could not read config file at {path}: {e}")
            return None

        try:
            data = yaml.safe_load(contents) or {}
        except yaml.YAMLError as e:
            logger.error(f"Could not parse config file: {e}")
            return None

        if not isinstance(data, dict):
            logger.error(f"Config file {path} does not contain a mapping")
            return None
        return cls.from_dict(data)


def _pick(arg: Any, file_value: Any, default: Any) -> Any:
    """Return the first configured value: CLI argument, file, then default."""
    if arg is not None:
        return arg
    if file_value is not None:
        return file_value
    return default


@dataclass
class Configuration:
    """Working configuration of the application."""

    base_path: str = DEFAULT_BASE_PATH
    """Relative MFS directory path"""

    endpoint: str = DEFAULT_ENDPOINT
    """IPFS daemon to connect to over HTTP"""

    sync: float = DEFAULT_SYNC_INTERVAL
    """Seconds to sleep between IPNS syncs"""

    timeout: float = DEFAULT_TIMEOUT
    """Longest time in seconds to wait for short API calls"""

    config: Path = DEFAULT_CONFIG_PATH
    """Config file in use"""

    db: Optional[Path] = DEFAULT_DB_PATH
    """Fingerprint database, None to run without one"""

    ignore_hidden: bool = False
    """Ignore files prefixed with a dot"""

    dirs: list[dict[str, Any]] = field(default_factory=list)
    """Raw directory entries"""

    ignore: list[str] = field(default_factory=lambda: list(DEFAULT_IGNORE_SUFFIXES))
    """File suffixes to ignore"""

    verify_filestore: bool = False
    """Verify the filestore on startup"""

    verbose: bool = False
    version: str = __version__
    estuary_api_key: Optional[str] = None

    @classmethod
    def create(
        cls, args: dict[str, Any], config_file: Optional[ConfigFile]
    ) -> "Configuration":
        """Merge command line arguments with the config file.

        Args:
            args: Values from the command line; None means "not given"
            config_file: Values from the config file, if one was loaded

        Returns:
            The merged configuration
        """
        file = config_file or ConfigFile()
        db = _pick(args.get("db"), file.db, DEFAULT_DB_PATH)
        return cls(
            base_path=_pick(args.get("base_path"), file.base_path, DEFAULT_BASE_PATH),
            endpoint=_pick(args.get("endpoint"), file.endpoint, DEFAULT_ENDPOINT),
            sync=_pick(args.get("sync"), file.sync, DEFAULT_SYNC_INTERVAL),
            timeout=_pick(args.get("timeout"), file.timeout, DEFAULT_TIMEOUT),
            config=Path(args.get("config") or DEFAULT_CONFIG_PATH),
            db=Path(db).expanduser() if db else None,
            ignore_hidden=_pick(args.get("ignore_hidden"), file.ignore_hidden, False),
            dirs=_pick(args.get("dirs"), file.dirs, []),
            ignore=_pick(args.get("ignore"), file.ignore, list(DEFAULT_IGNORE_SUFFIXES)),
            verify_filestore=_pick(
                args.get("verify_filestore"), file.verify_filestore, False
            ),
            verbose=bool(args.get("verbose", False)),
            estuary_api_key=_pick(
                args.get("estuary_api_key"), file.estuary_api_key, None
            ),
        )

    def directories(self) -> list[MonitoredDirectory]:
        """Build the monitored directories.

        Raises:
            IpfsConfigError: If no directories are configured, an entry has
                an empty path, or two entries share an ID
        """
        if not self.dirs:
            raise IpfsConfigError(
                "Missing configuration for directories to watch; provide the "
                '"--dirs" CLI option or configure the "Dirs" sequence in the '
                "YAML config file"
            )

        directories = [MonitoredDirectory.from_dict(entry) for entry in self.dirs]
        ids = [d.id for d in directories]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise IpfsConfigError(f"Duplicate directory ID(s): {', '.join(duplicates)}")
        return directories
