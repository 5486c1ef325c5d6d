"""Runtime configuration loaded from the environment (and an optional .env file)."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

_ROOT = Path(__file__).parent.parent.parent

DEFAULT_TIMELINE_URL = "https://timeline-api.rebble.io"


@dataclass(frozen=True)
class Config:
    timeline_url: str
    timeline_token: str | None  # None disables real pushes
    ephemeris_file: str  # JPL kernel name, downloaded into data_dir on first use
    data_dir: Path
    push_cache_file: Path | None  # None keeps the push cache in memory only
    cache_minutes: float
    http_timeout: float  # Seconds
    log_level: str


def load_config(env_file: str | os.PathLike | None = None) -> Config:
    """Build a Config from environment variables.

    A ``.env`` file is loaded first (without overriding variables that are
    already set), so deployment environments always win.

    Args:
        env_file: Explicit .env path. Defaults to python-dotenv's search.

    Returns:
        Frozen Config.

    Raises:
        ValueError: If a numeric variable cannot be parsed.
    """
    load_dotenv(env_file)

    cache_file = os.environ.get("HUBBLE_PUSH_CACHE_FILE")
    return Config(
        timeline_url=os.environ.get("HUBBLE_TIMELINE_URL", DEFAULT_TIMELINE_URL).rstrip("/"),
        timeline_token=os.environ.get("HUBBLE_TIMELINE_TOKEN") or None,
        ephemeris_file=os.environ.get("HUBBLE_EPHEMERIS", "de421.bsp"),
        data_dir=Path(os.environ.get("HUBBLE_DATA_DIR", str(_ROOT / "resources"))),
        push_cache_file=Path(cache_file) if cache_file else None,
        cache_minutes=float(os.environ.get("HUBBLE_CACHE_MINUTES", "30")),
        http_timeout=float(os.environ.get("HUBBLE_HTTP_TIMEOUT", "10")),
        log_level=os.environ.get("HUBBLE_LOG_LEVEL", "INFO").upper(),
    )


def configure_logging(level: str = "INFO") -> None:
    """Install a basic stderr handler for the hubble loggers."""
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )
