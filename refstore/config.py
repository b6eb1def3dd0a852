"""Global configuration stored as ``config.yaml`` in the data directory.

The engine only consumes these settings; ``mcp_scope`` is read by a
tool-surface caller to decide whether write operations are allowed.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

import yaml

from refstore.errors import ConfigError, ManifestError

logger = logging.getLogger(__name__)

CONFIG_FILE = "config.yaml"
DATA_DIR_ENV = "REFSTORE_DATA_DIR"


class McpScope(Enum):
    """What a tool-surface caller may do with the repository."""

    READ_ONLY = "read_only"
    READ_WRITE = "read_write"


@dataclass
class RegistryInfo:
    """A remote registry recorded in the config."""

    name: str
    url: str


@dataclass
class GlobalConfig:
    mcp_scope: McpScope = McpScope.READ_ONLY
    git_depth: int = 1
    default_branch: str | None = None
    registries: list[RegistryInfo] = field(default_factory=list)

    @property
    def allows_writes(self) -> bool:
        return self.mcp_scope == McpScope.READ_WRITE

    def get_value(self, key: str) -> str:
        """Return a setting rendered as a string."""
        if key == "mcp_scope":
            return self.mcp_scope.value
        if key == "git_depth":
            return str(self.git_depth)
        if key == "default_branch":
            return self.default_branch or ""
        raise ConfigError(f"unknown config key: {key}")

    def set_value(self, key: str, value: str) -> None:
        """Parse and set a setting from its string form."""
        if key == "mcp_scope":
            try:
                self.mcp_scope = McpScope(value)
            except ValueError:
                choices = ", ".join(s.value for s in McpScope)
                raise ConfigError(
                    f"invalid value for mcp_scope: '{value}' (expected one of: {choices})"
                ) from None
        elif key == "git_depth":
            try:
                depth = int(value)
            except ValueError:
                raise ConfigError(f"git_depth must be an integer, got '{value}'") from None
            if depth < 0:
                raise ConfigError("git_depth must be >= 0 (0 means full clone)")
            self.git_depth = depth
        elif key == "default_branch":
            self.default_branch = value or None
        else:
            raise ConfigError(f"unknown config key: {key}")


def default_data_dir() -> Path:
    """Resolve the data directory when none is given explicitly.

    Order: ``$REFSTORE_DATA_DIR``, ``$XDG_DATA_HOME/refstore``,
    ``~/.local/share/refstore``.
    """
    env = os.environ.get(DATA_DIR_ENV)
    if env:
        return Path(env).expanduser()
    xdg = os.environ.get("XDG_DATA_HOME")
    if xdg:
        return Path(xdg).expanduser() / "refstore"
    return Path.home() / ".local" / "share" / "refstore"


def load_config(data_dir: str | Path) -> GlobalConfig:
    """Load ``config.yaml`` from a data directory; defaults when absent."""
    path = Path(data_dir) / CONFIG_FILE
    if not path.exists():
        return GlobalConfig()

    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ManifestError(f"failed to parse {path}: {e}") from e

    if not isinstance(data, dict):
        raise ManifestError(f"{path} must be a mapping")
    try:
        config = GlobalConfig(
            git_depth=int(data.get("git_depth", 1)),
            default_branch=data.get("default_branch") or None,
            registries=[
                RegistryInfo(name=str(r["name"]), url=str(r["url"]))
                for r in data.get("registries") or []
            ],
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ManifestError(f"invalid config in {path}: {e!r}") from e
    if config.git_depth < 0:
        raise ManifestError(f"git_depth must be >= 0 in {path}")
    scope = data.get("mcp_scope")
    if scope:
        try:
            config.mcp_scope = McpScope(scope)
        except ValueError:
            raise ManifestError(f"invalid mcp_scope '{scope}' in {path}") from None
    return config


def save_config(data_dir: str | Path, config: GlobalConfig) -> None:
    path = Path(data_dir) / CONFIG_FILE
    data: dict = {
        "mcp_scope": config.mcp_scope.value,
        "git_depth": config.git_depth,
    }
    if config.default_branch:
        data["default_branch"] = config.default_branch
    if config.registries:
        data["registries"] = [{"name": r.name, "url": r.url} for r in config.registries]

    with open(path, "w") as f:
        yaml.safe_dump(data, f, sort_keys=False)
    logger.debug("Wrote config %s", path)
