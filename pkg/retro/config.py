# Retro board configuration
# Override via config.yaml, RETRO_* environment variables or CLI args.

import os
import yaml
from pathlib import Path
from dataclasses import dataclass
from typing import Optional

CONFIG_PATH = Path(__file__).resolve().parent.parent.parent / "config.yaml"


@dataclass
class Config:
    """Runtime configuration for the retro board server."""

    # Storage
    db_path: str = "~/.local/share/retro/retro.db"

    # Server (localhost only by default: the board is single-user)
    host: str = "127.0.0.1"
    port: int = 3000
    log_level: str = "INFO"

    # Notes
    max_note_length: int = 500

    # Defaults for the create-session form
    default_allow_voting: bool = True
    default_allow_anonymous: bool = False
    default_max_notes_per_person: int = 10
    default_timer_minutes: int = 60

    def resolve_paths(self):
        """Apply environment overrides and expand ~."""
        env_db = os.environ.get("RETRO_DB")
        if env_db:
            self.db_path = env_db
        self.db_path = str(Path(self.db_path).expanduser())

    @classmethod
    def load(cls, path: Optional[str] = None) -> "Config":
        """Load config from YAML file, falling back to defaults."""
        path = path or os.environ.get("RETRO_CONFIG")
        cfg_path = Path(path) if path else CONFIG_PATH
        if cfg_path.exists():
            try:
                with open(cfg_path, "r") as f:
                    data = yaml.safe_load(f) or {}
                cfg = cls(**{k: v for k, v in data.items() if hasattr(cls, k)})
            except Exception:
                cfg = cls()
        else:
            cfg = cls()
        cfg.resolve_paths()
        return cfg
