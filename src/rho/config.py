"""Configuration loading from environment variables and rho.toml."""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

_DEFAULT_HOME = Path.home() / ".rho"
_CONFIG_FILENAME = "rho.toml"

DEFAULT_PROMPT_BUDGET = 2000
DEFAULT_LOCK_TIMEOUT = 10.0


@dataclass
class BrainConfig:
    """Top-level brain store configuration."""

    home: Path = _DEFAULT_HOME
    brain_dir: Path = _DEFAULT_HOME / "brain"
    brain_path: Path = _DEFAULT_HOME / "brain" / "brain.jsonl"
    prompt_budget: int = DEFAULT_PROMPT_BUDGET
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT
    log_level: str = "INFO"


def load_config(config_path: Path | None = None) -> BrainConfig:
    """Load configuration from environment variables and optional rho.toml.

    Priority: environment variables > rho.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        # Search current dir and ~/.rho/
        for candidate in [Path.cwd() / _CONFIG_FILENAME, _DEFAULT_HOME / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    brain_data = file_data.get("brain", {})

    home = Path(os.getenv("RHO_HOME", file_data.get("home", str(_DEFAULT_HOME))))
    brain_dir = Path(os.getenv("RHO_BRAIN_DIR", brain_data.get("dir", str(home / "brain"))))
    brain_path = Path(
        os.getenv("RHO_BRAIN_PATH", brain_data.get("path", str(brain_dir / "brain.jsonl")))
    )

    return BrainConfig(
        home=home,
        brain_dir=brain_dir,
        brain_path=brain_path,
        prompt_budget=int(
            os.getenv("RHO_PROMPT_BUDGET", brain_data.get("prompt_budget", DEFAULT_PROMPT_BUDGET))
        ),
        lock_timeout=float(
            os.getenv("RHO_LOCK_TIMEOUT", brain_data.get("lock_timeout", DEFAULT_LOCK_TIMEOUT))
        ),
        log_level=os.getenv("RHO_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )


def setup_logging(level: str) -> None:
    """Root logging for a host process embedding the brain store. Library code never calls this."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
