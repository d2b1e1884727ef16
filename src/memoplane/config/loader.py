"""Configuration loading with pydantic-settings.

Supports loading configuration from multiple sources with precedence:
1. Direct kwargs (highest priority)
2. Environment variables (MEMOPLANE__SECTION__KEY)
3. User config (.memoplane/config.yaml) - minimal user-facing options
4. Global config (~/.config/memoplane/config.yaml)
5. Built-in defaults (lowest priority)
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from memoplane.config.constants import CACHE_DB_NAME, MEMOPLANE_DIR_NAME
from memoplane.config.models import (
    CacheConfig,
    DatabaseConfig,
    IgnoreConfig,
    LoggingConfig,
    MemoplaneConfig,
    TrackingConfig,
)
from memoplane.config.user_config import load_user_config
from memoplane.core.errors import ConfigError

GLOBAL_CONFIG_PATH = Path("~/.config/memoplane/config.yaml").expanduser()


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with path.open() as f:
            return yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError.parse_error(str(path), str(e)) from e


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


class _YamlSource(PydanticBaseSettingsSource):
    """Settings source that reads from pre-loaded YAML config."""

    def __init__(self, settings_cls: type[BaseSettings], yaml_config: dict[str, Any]) -> None:
        super().__init__(settings_cls)
        self._yaml_config = yaml_config

    def get_field_value(
        self,
        field: Any,  # noqa: ARG002
        field_name: str,
    ) -> tuple[Any, str, bool]:
        val = self._yaml_config.get(field_name)
        return val, field_name, val is not None

    def __call__(self) -> dict[str, Any]:
        return self._yaml_config


def _make_settings_class(yaml_config: dict[str, Any]) -> type[BaseSettings]:
    """Create a Settings class with instance-based YAML source."""

    class MemoplaneSettings(BaseSettings):
        """Root config. Env vars: MEMOPLANE__LOGGING__LEVEL, MEMOPLANE__CACHE__ENABLED, etc."""

        model_config = SettingsConfigDict(
            env_prefix="MEMOPLANE__",
            env_nested_delimiter="__",
            case_sensitive=False,
        )

        logging: LoggingConfig = LoggingConfig()
        cache: CacheConfig = CacheConfig()
        tracking: TrackingConfig = TrackingConfig()
        ignore: IgnoreConfig = IgnoreConfig()
        database: DatabaseConfig = DatabaseConfig()

        @classmethod
        def settings_customise_sources(
            cls,
            settings_cls: type[BaseSettings],
            init_settings: PydanticBaseSettingsSource,
            env_settings: PydanticBaseSettingsSource,
            dotenv_settings: PydanticBaseSettingsSource,  # noqa: ARG003
            file_secret_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        ) -> tuple[PydanticBaseSettingsSource, ...]:
            # Precedence (first wins): init kwargs > env vars > yaml files
            return (init_settings, env_settings, _YamlSource(settings_cls, yaml_config))

    return MemoplaneSettings


MemoplaneSettings = _make_settings_class({})


def load_config(program_dir: Path | None = None, **kwargs: Any) -> MemoplaneConfig:
    """Load config: defaults < global config < user config < env vars < kwargs.

    Args:
        program_dir: Directory of the memoized program. Defaults to the
                     current working directory.
        **kwargs: Override values (highest precedence).

    Returns:
        Fully resolved configuration object.

    Raises:
        ConfigError: On invalid YAML syntax or validation errors.
    """
    program_dir = program_dir or Path.cwd()
    memoplane_dir = program_dir / MEMOPLANE_DIR_NAME

    user_config = load_user_config(memoplane_dir / "config.yaml")

    yaml_config: dict[str, Any] = {
        "cache": {"enabled": user_config.enabled},
        "logging": {"level": user_config.log_level},
    }
    if user_config.ignore:
        yaml_config["ignore"] = {"patterns": list(user_config.ignore)}

    global_config = _load_yaml(GLOBAL_CONFIG_PATH)
    if global_config:
        yaml_config = _deep_merge(global_config, yaml_config)

    settings_cls = _make_settings_class(yaml_config)
    try:
        settings = settings_cls(**kwargs)
    except ValidationError as e:
        err = e.errors()[0]
        field = ".".join(str(loc) for loc in err["loc"])
        raise ConfigError.invalid_value(field, err.get("input"), err["msg"]) from e
    return MemoplaneConfig.model_validate(settings.model_dump())


def get_cache_db_path(program_dir: Path, config: MemoplaneConfig | None = None) -> Path:
    """Get the cache database path, respecting config.cache.cache_dir."""
    config = config or load_config(program_dir)
    if config.cache.cache_dir:
        cache_dir = Path(config.cache.cache_dir).expanduser()
    else:
        cache_dir = program_dir / MEMOPLANE_DIR_NAME
    return cache_dir / CACHE_DB_NAME
