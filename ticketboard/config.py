# Ticket board configuration
# Override paths and column limits via config.yaml, TICKETBOARD_DB, or CLI args.

import logging
import os
import sys
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Optional, Tuple

import yaml

from .schema import Column, TicketStatus, DEFAULT_BOARD_ID, DEFAULT_BOARD_NAME, DEFAULT_COLUMNS

CONFIG_PATH = Path(__file__).parent.parent / "config.yaml"

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration is invalid or incomplete."""
    pass


def _default_limits() -> Dict[str, Optional[int]]:
    return {c.status.value: c.limit for c in DEFAULT_COLUMNS}


@dataclass
class BoardConfig:
    """Runtime configuration for the ticket board."""

    # Storage
    db_path: str = "~/.local/share/ticketboard/board.db"
    quota_bytes: Optional[int] = 5 * 1024 * 1024

    # Board layout: statuses are fixed, only limits are configurable
    board_id: str = DEFAULT_BOARD_ID
    board_name: str = DEFAULT_BOARD_NAME
    column_limits: Dict[str, Optional[int]] = field(default_factory=_default_limits)

    # Runtime
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 3000

    def resolve_paths(self):
        """Apply TICKETBOARD_DB and expand ~."""
        env = os.environ.get("TICKETBOARD_DB")
        if env:
            self.db_path = env
        self.db_path = str(Path(self.db_path).expanduser())

    def build_columns(self) -> Tuple[Column, ...]:
        """Default columns with the configured limits applied."""
        for status, limit in self.column_limits.items():
            if TicketStatus.from_str(status) is None:
                raise ConfigError(f"column_limits names unknown status '{status}'")
            if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit < 0):
                raise ConfigError(f"column limit for '{status}' must be a non-negative integer or null")
        limits = {TicketStatus.from_str(k): v for k, v in self.column_limits.items()}
        return tuple(
            replace(c, limit=limits[c.status]) if c.status in limits else c
            for c in DEFAULT_COLUMNS
        )

    @classmethod
    def load(cls, path: Optional[str] = None) -> "BoardConfig":
        """Load config from YAML file, falling back to defaults."""
        cfg_path = Path(path) if path else CONFIG_PATH
        if cfg_path.exists():
            try:
                with open(cfg_path, "r") as f:
                    data = yaml.safe_load(f) or {}
                cfg = cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})
            except Exception as e:
                logger.warning(f"Cannot read {cfg_path}, using defaults: {e}")
                cfg = cls()
        else:
            cfg = cls()
        cfg.resolve_paths()
        return cfg


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s [ticketboard] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
