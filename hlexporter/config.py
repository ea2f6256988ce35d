"""Exporter configuration from the environment, a .env file and flags."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from . import logger


@dataclass(frozen=True)
class Flags:
    """Command-line values that take precedence over the environment."""

    node_home: str = ""
    node_binary: str = ""
    chain: str = ""
    enable_evm: bool = True


@dataclass(frozen=True)
class Config:
    """Resolved settings for the exporter."""

    home_dir: str = ""
    node_home: str = ""
    binary_home: str = ""
    node_binary: str = ""
    chain: str = ""
    enable_evm: bool = True


def _load_dotenv() -> None:
    path = Path.cwd() / ".env"
    if not path.is_file():
        logger.debug("No .env file found, using environment variables and flags")
        return
    load_dotenv(path)


def load_config(flags: Flags | None = None, environ: Mapping[str, str] | None = None) -> Config:
    """Build a Config from ``environ`` (the process environment plus .env by
    default), with non-empty flag values taking precedence."""
    if environ is None:
        _load_dotenv()
        environ = os.environ
    flags = flags or Flags()

    home_dir = environ.get("HOME", "")
    node_home = environ.get("NODE_HOME") or f"{home_dir}/hl"
    binary_home = environ.get("BINARY_HOME") or home_dir
    node_binary = environ.get("NODE_BINARY") or f"{binary_home}/hl-node"

    return Config(
        home_dir=home_dir,
        node_home=flags.node_home or node_home,
        binary_home=binary_home,
        node_binary=flags.node_binary or node_binary,
        chain=flags.chain,
        enable_evm=flags.enable_evm,
    )