"""
Configuration management for prsync.
Handles user defaults and the per-run transfer configuration.
"""

from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
import json
import logging
from typing import Optional, Tuple

from prsync.core.batch import BatchConfig

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when a transfer cannot be configured"""

    pass


class Direction(Enum):
    """Which side of the transfer is remote"""

    UPLOAD = "upload"  # local source, remote destination
    DOWNLOAD = "download"  # remote source, local destination


@dataclass(frozen=True)
class RemoteEndpoint:
    """A parsed `[user@]host:path` rsync argument"""

    host: str
    path: str
    user: Optional[str] = None

    def with_host(self, host: str) -> "RemoteEndpoint":
        return RemoteEndpoint(host=host, path=self.path, user=self.user)

    def __str__(self) -> str:
        prefix = f"{self.user}@" if self.user else ""
        return f"{prefix}{self.host}:{self.path}"


@dataclass(frozen=True)
class TransferConfig:
    """Everything a worker needs, built once and shared read-only"""

    options: Tuple[str, ...]
    direction: Direction
    endpoint: RemoteEndpoint
    local_path: str
    workers: int
    batch_size: int = BatchConfig.DEFAULT_BATCH_SIZE
    host_start: Optional[int] = None
    bandwidth_limit_kbs: int = 0
    rsync_path: str = "rsync"

    def sides(self, endpoint: Optional[RemoteEndpoint] = None) -> Tuple[str, str]:
        """rsync (source, destination) pair, optionally for another host"""
        remote = str(endpoint or self.endpoint)
        if self.direction == Direction.DOWNLOAD:
            return remote, self.local_path
        return self.local_path, remote

    @property
    def source(self) -> str:
        return self.sides()[0]

    @property
    def destination(self) -> str:
        return self.sides()[1]


@dataclass
class UserDefaults:
    """Defaults read from the user's config file"""

    parallel: int = BatchConfig.DEFAULT_PARALLEL
    batch_size: int = BatchConfig.DEFAULT_BATCH_SIZE
    total_bw: Optional[int] = None  # Mbit/s
    rsync_path: str = "rsync"
    log_dir: Optional[str] = None


class ConfigManager:
    """Manages prsync configuration"""

    def __init__(self, config_dir: Optional[Path] = None):
        """Initialize configuration manager"""
        self.config_dir = Path(config_dir) if config_dir else Path.home() / ".config" / "prsync"
        self.config_file = self.config_dir / "config.json"
        self.defaults = UserDefaults()
        self._load_config()

    @property
    def log_dir(self) -> Path:
        if self.defaults.log_dir:
            return Path(self.defaults.log_dir).expanduser()
        return self.config_dir / "logs"

    def _load_config(self):
        """Load configuration from file"""
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)

            if not self.config_file.exists():
                # Create default config
                self._save_config()

            with open(self.config_file, 'r') as f:
                data = json.load(f)

            known = UserDefaults.__dataclass_fields__
            self.defaults = UserDefaults(
                **{k: v for k, v in data.items() if k in known}
            )
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.warning("Failed to load config %s: %s", self.config_file, e)
            # Use default config
            self.defaults = UserDefaults()

    def _save_config(self):
        """Save configuration to file"""
        try:
            with open(self.config_file, 'w') as f:
                json.dump(asdict(self.defaults), f, indent=4)
        except OSError as e:
            logger.warning("Failed to save config %s: %s", self.config_file, e)

    def update(self, **values):
        """Change stored defaults"""
        for key, value in values.items():
            if key not in UserDefaults.__dataclass_fields__:
                raise ConfigurationError(f"Unknown config key: {key}")
            setattr(self.defaults, key, value)
        self._save_config()
