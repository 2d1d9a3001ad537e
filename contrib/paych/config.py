"""
paych - Configuration

Defaults < <repo>/config.json < environment < command-line flags.
"""

import json
import logging
import os
from dataclasses import dataclass, fields
from typing import Mapping, Optional

log = logging.getLogger(__name__)

DEFAULT_REPO = os.path.expanduser("~/.paych")

# Environment overrides
ENV_VARS = {
    "PAYCH_API_URL": "api_url",
    "PAYCH_API_TOKEN": "api_token",
    "PAYCH_REPO": "repo_path",
    "PAYCH_LOG_LEVEL": "log_level",
}

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


class ConfigError(Exception):
    """Configuration file is unreadable or invalid."""


@dataclass
class Config:
    # Client
    api_url: str = "http://127.0.0.1:1234/rpc/v0"
    api_token: str = ""
    timeout: int = 30  # seconds

    # Node
    repo_path: str = DEFAULT_REPO
    store_path: str = ""  # "" keeps channels in memory (devnet chain is in memory too)
    host: str = "127.0.0.1"
    port: int = 1234
    settle_delay: int = 10  # blocks
    faucet_amount: int = 1_000_000

    log_level: str = "INFO"

    def validate(self):
        if self.log_level.upper() not in LOG_LEVELS:
            raise ConfigError(f"invalid log level: {self.log_level}")
        if self.timeout <= 0:
            raise ConfigError("timeout must be positive")
        if self.settle_delay < 0:
            raise ConfigError("settle_delay must not be negative")
        if self.faucet_amount < 0:
            raise ConfigError("faucet_amount must not be negative")
        self.log_level = self.log_level.upper()


def _apply(config: Config, values: Mapping[str, object], source: str):
    """Set known fields from values, coercing to the field's type."""
    known = {f.name for f in fields(Config)}
    for key, value in values.items():
        if key not in known:
            log.warning(f"Ignoring unknown config key '{key}' from {source}")
            continue
        current = getattr(config, key)
        try:
            setattr(config, key, type(current)(value))
        except (TypeError, ValueError):
            raise ConfigError(f"invalid value for '{key}' in {source}: {value!r}")


def load_config(path: Optional[str] = None,
                env: Optional[Mapping[str, str]] = None) -> Config:
    """
    Build the effective configuration.

    Args:
        path: JSON config file (default <repo>/config.json)
        env: Environment mapping (default os.environ)
    """
    env = os.environ if env is None else env
    config = Config()

    repo = env.get("PAYCH_REPO")
    if repo:
        config.repo_path = os.path.expanduser(repo)

    path = path or os.path.join(config.repo_path, "config.json")
    if os.path.exists(path):
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise ConfigError(f"failed to read config {path}: {e}")
        if not isinstance(data, dict):
            raise ConfigError(f"config {path} must be a JSON object")
        _apply(config, data, path)

    overrides = {field: env[name] for name, field in ENV_VARS.items() if env.get(name)}
    _apply(config, overrides, "environment")

    config.repo_path = os.path.expanduser(config.repo_path)
    config.validate()
    return config
