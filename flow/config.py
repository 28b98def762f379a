# FLOW server: configuration
# Override paths and ports via flow.yaml, FLOW_CONFIG, or CLI args.

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_PATH = Path(__file__).resolve().parent.parent / "flow.yaml"


@dataclass
class Config:
    """Runtime configuration for the FLOW server."""

    # HTTP
    host: str = "127.0.0.1"
    port: int = 3456

    # Local state (board, events, activity, messages, memory, deliverables)
    data_dir: str = "./data"
    app_dir: str = "./app"

    # OpenClaw integration (derived from openclaw_home when empty)
    openclaw_home: str = "~/.openclaw"
    workspace_dir: str = ""
    sessions_dir: str = ""
    openclaw_config: str = ""
    openclaw_bin: str = "openclaw"
    cli_timeout: float = 5.0

    # Behavior
    memory_refresh_interval: float = 3600.0  # 1 hour
    log_level: str = "INFO"

    def resolve_paths(self):
        """Expand ~ and fill in OpenClaw paths that were left empty."""
        home = Path(self.openclaw_home).expanduser()
        self.openclaw_home = str(home)

        if not self.workspace_dir:
            self.workspace_dir = str(home / "workspace")
        if not self.sessions_dir:
            self.sessions_dir = str(home / "agents" / "main" / "sessions")
        if not self.openclaw_config:
            self.openclaw_config = str(home / "openclaw.json")

        self.workspace_dir = str(Path(self.workspace_dir).expanduser())
        self.sessions_dir = str(Path(self.sessions_dir).expanduser())
        self.openclaw_config = str(Path(self.openclaw_config).expanduser())
        self.data_dir = str(Path(self.data_dir).expanduser())
        self.app_dir = str(Path(self.app_dir).expanduser())

    @property
    def memory_dir(self) -> Path:
        """Directory holding the DD-MM-YYYY.md daily logs."""
        return Path(self.workspace_dir) / "memory"

    @classmethod
    def load(cls, path: Optional[str] = None) -> "Config":
        """Load config from YAML file, falling back to defaults."""
        if path is None:
            path = os.environ.get("FLOW_CONFIG")
        cfg_path = Path(path) if path else CONFIG_PATH
        if cfg_path.exists():
            try:
                with open(cfg_path, "r") as f:
                    data = yaml.safe_load(f) or {}
                cfg = cls(**{k: v for k, v in data.items() if hasattr(cls, k)})
            except Exception as e:
                logger.warning(f"Ignoring unreadable config {cfg_path}: {e}")
                cfg = cls()
        else:
            cfg = cls()
        cfg.resolve_paths()
        return cfg
