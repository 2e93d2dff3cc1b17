"""Layered configuration for prw.

Precedence, lowest first: built-in defaults, ``~/.prw/config.yaml``,
``PRW_*`` environment variables, then CLI flags (applied by the caller via
:meth:`Config.with_overrides`).

Example config.yaml::

    repo: owner/name
    monitor:
      interval: 60
      timeout: 30
    ci:
      interval: 30
      timeout: 15
    quiet_period: 300
    call_timeout: 60
"""

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional

import yaml

from prw_core.gh_ops import MERGE_STRATEGIES
from prw_core.paths import config_file


class ConfigError(Exception):
    """Raised when the config file or an env var holds an invalid value."""


@dataclass(frozen=True)
class Config:
    repo: Optional[str] = None
    # Seconds between samples / minutes of wall-clock budget
    monitor_interval: int = 60
    monitor_timeout: int = 30
    ci_interval: int = 30
    ci_timeout: int = 15
    # Seconds with no activity before the feedback flow is considered settled
    quiet_period: int = 300
    # Per gh invocation timeout (seconds)
    call_timeout: int = 60
    merge_strategy: str = "squash"

    def with_overrides(self, **kwargs) -> "Config":
        """Return a copy with every non-None keyword applied."""
        changes = {k: v for k, v in kwargs.items() if v is not None}
        return replace(self, **changes)


_ENV_VARS = {
    "PRW_REPO": ("repo", str),
    "PRW_INTERVAL": ("monitor_interval", int),
    "PRW_TIMEOUT": ("monitor_timeout", int),
    "PRW_QUIET_PERIOD": ("quiet_period", int),
    "PRW_CALL_TIMEOUT": ("call_timeout", int),
}


def _as_int(key: str, value) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{key}: expected an integer, got {value!r}")
    if n < 0:
        raise ConfigError(f"{key}: must not be negative, got {n}")
    return n


def _from_mapping(data: dict) -> dict:
    """Flatten the YAML layout into Config field names."""
    fields: dict = {}
    if "repo" in data and data["repo"]:
        repo = str(data["repo"])
        if repo.count("/") != 1:
            raise ConfigError(f"repo: expected OWNER/REPO, got {repo!r}")
        fields["repo"] = repo
    for section, prefix in (("monitor", "monitor_"), ("ci", "ci_")):
        sub = data.get(section) or {}
        if not isinstance(sub, dict):
            raise ConfigError(f"{section}: expected a mapping")
        for key in ("interval", "timeout"):
            if key in sub:
                fields[prefix + key] = _as_int(f"{section}.{key}", sub[key])
    for key in ("quiet_period", "call_timeout"):
        if key in data:
            fields[key] = _as_int(key, data[key])
    if "merge_strategy" in data:
        strategy = str(data["merge_strategy"])
        if strategy not in MERGE_STRATEGIES:
            raise ConfigError(
                f"merge_strategy: must be one of {', '.join(MERGE_STRATEGIES)}")
        fields["merge_strategy"] = strategy
    return fields


def load_config(path: Optional[Path] = None, env: Optional[dict] = None) -> Config:
    """Load configuration from the YAML file and environment.

    Args:
        path: Config file override (defaults to ~/.prw/config.yaml).
        env: Environment mapping override (defaults to os.environ).
    """
    path = path or config_file()
    env = os.environ if env is None else env

    fields: dict = {}
    if path.exists():
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"{path}: {e}")
        if not isinstance(data, dict):
            raise ConfigError(f"{path}: top level must be a mapping")
        fields.update(_from_mapping(data))

    for var, (name, kind) in _ENV_VARS.items():
        raw = env.get(var)
        if not raw:
            continue
        fields[name] = _as_int(var, raw) if kind is int else raw

    return Config(**fields)
