"""Minimal user-facing configuration.

This module defines only the config fields that users should care about.
Everything else uses opinionated defaults.

User config is stored in .memoplane/config.yaml next to the memoized program.
"""

from pathlib import Path

import yaml
from pydantic import BaseModel, Field

from memoplane.config.models import LogLevel

DEFAULT_ENABLED = True
DEFAULT_LOG_LEVEL: LogLevel = "WARNING"


class UserConfig(BaseModel):
    """User-facing configuration options."""

    enabled: bool = Field(
        default=DEFAULT_ENABLED,
        description="Set to false to run without caching.",
    )
    log_level: LogLevel = Field(
        default=DEFAULT_LOG_LEVEL,
        description="Log level. DEBUG logs every cache decision.",
    )
    ignore: list[str] = Field(
        default_factory=list,
        description="fnmatch patterns of functions (module.qualname) never memoized.",
    )


def write_user_config(path: Path, config: UserConfig | None = None) -> None:
    """Write user config file with helpful comments.

    Args:
        path: Path to write config.yaml
        config: Config values (uses defaults if None)
    """
    cfg = config or UserConfig()

    lines = [
        "# Memoplane Configuration",
        "",
        "# Master switch. When false, functions run normally and nothing is cached.",
    ]
    if cfg.enabled != DEFAULT_ENABLED:
        lines.append(f"enabled: {str(cfg.enabled).lower()}")
    else:
        lines.append(f"# enabled: {str(cfg.enabled).lower()}")
    lines.append("")

    lines.append("# Log level: DEBUG, INFO, WARNING, ERROR, CRITICAL")
    lines.append("# DEBUG logs every cache hit, miss and commit.")
    if cfg.log_level != DEFAULT_LOG_LEVEL:
        lines.append(f"log_level: {cfg.log_level}")
    else:
        lines.append(f"# log_level: {cfg.log_level}")
    lines.append("")

    lines.append("# Functions that must never be memoized, as module.qualname patterns.")
    if cfg.ignore:
        lines.append(yaml.dump({"ignore": cfg.ignore}, default_flow_style=False).rstrip())
    else:
        lines.append("# ignore:")
        lines.append("#   - mymodule.fetch_*")
    lines.append("")

    path.write_text("\n".join(lines))


def load_user_config(path: Path) -> UserConfig:
    """Load user config from YAML file."""
    if not path.exists():
        return UserConfig()
    try:
        with path.open() as f:
            data = yaml.safe_load(f) or {}
        return UserConfig(**data)
    except Exception:
        return UserConfig()
