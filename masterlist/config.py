# masterlist: configuration
# Override paths and server settings via config.yaml, environment, or CLI args.

import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_PATH = Path.home() / ".config" / "masterlist" / "config.yaml"
LOG_FORMAT = "%(asctime)s [masterlist] %(levelname)s: %(message)s"


@dataclass
class Config:
    """Runtime configuration for the store and the local server."""

    db_path: str = "~/.local/share/masterlist/masterlist.db"
    default_category: str = "Personal"

    # Local API
    host: str = "127.0.0.1"
    port: int = 3000

    log_level: str = "INFO"

    def apply_env(self):
        """Environment variables win over file values."""
        if os.environ.get("MASTERLIST_DB"):
            self.db_path = os.environ["MASTERLIST_DB"]
        if os.environ.get("MASTERLIST_HOST"):
            self.host = os.environ["MASTERLIST_HOST"]
        port = os.environ.get("MASTERLIST_PORT")
        if port:
            try:
                self.port = int(port)
            except ValueError:
                logger.warning("Ignoring non-numeric MASTERLIST_PORT=%r", port)
        if os.environ.get("MASTERLIST_LOG_LEVEL"):
            self.log_level = os.environ["MASTERLIST_LOG_LEVEL"]

    def resolve_paths(self):
        """Expand ~ in file paths (":memory:" is left alone)."""
        if self.db_path != ":memory:":
            self.db_path = str(Path(self.db_path).expanduser())

    @classmethod
    def load(cls, path: Optional[str] = None) -> "Config":
        """Load config from YAML file, falling back to defaults."""
        if path:
            cfg_path = Path(path)
        elif os.environ.get("MASTERLIST_CONFIG"):
            cfg_path = Path(os.environ["MASTERLIST_CONFIG"])
        else:
            cfg_path = CONFIG_PATH

        cfg = cls()
        if cfg_path.exists():
            try:
                with open(cfg_path, "r") as f:
                    data = yaml.safe_load(f) or {}
                cfg = cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})
            except (yaml.YAMLError, OSError, TypeError, AttributeError) as e:
                logger.warning("Could not read %s (%s); using defaults", cfg_path, e)
                cfg = cls()
        cfg.apply_env()
        cfg.resolve_paths()
        return cfg


def setup_logging(level: str = "INFO") -> None:
    """Configure root logging for entry points. Logs go to stdout."""
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )
