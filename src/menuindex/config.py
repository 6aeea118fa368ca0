"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Constructor arguments
  2. Environment variables  (MENUINDEX__WATCHER__DEBOUNCE_MS=80)
  3. menuindex.yaml         (searched in cwd, then the platform config dir)
  4. Hardcoded defaults

The config file is optional. All fields have sensible defaults, and the
default descriptor directories follow the XDG base directory layout. The
record store lives in ``data_dir`` unless ``cache.db_path`` names a file.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

_DEFAULT_DATA_DIR = platformdirs.user_data_dir("menuindex")
_DB_FILENAME = "cache.db"

_FLATPAK_USER_EXPORTS = Path.home() / ".local" / "share" / "flatpak" / "exports" / "share"
_FLATPAK_SYSTEM_EXPORTS = Path("/var/lib/flatpak/exports/share")


def _find_config_file() -> str | None:
    """Return the path of the first menuindex.yaml found, or None."""
    candidates = [
        Path("menuindex.yaml"),
        Path(platformdirs.user_config_dir("menuindex")) / "menuindex.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


def default_application_dirs() -> list[str]:
    """XDG application directories, highest priority first.

    User-level definitions come before system-level ones so a file in
    ``~/.local/share/applications`` overrides the packaged one.
    """
    data_dirs = [Path(platformdirs.user_data_dir()), _FLATPAK_USER_EXPORTS]
    site_dirs = platformdirs.site_data_dir(multipath=True).split(os.pathsep)
    data_dirs += [Path(p) for p in site_dirs if p]
    data_dirs.append(_FLATPAK_SYSTEM_EXPORTS)

    seen: set[str] = set()
    result: list[str] = []
    for base in data_dirs:
        path = str(base / "applications")
        if path not in seen:
            seen.add(path)
            result.append(path)
    return result


class DirectorySettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    paths: list[str] = Field(default_factory=default_application_dirs)

    @field_validator("paths")
    @classmethod
    def dedupe_paths(cls, v: list[str]) -> list[str]:
        # Order is priority, so keep the first occurrence of each path
        return list(dict.fromkeys(os.path.expanduser(p) for p in v))


class LocaleSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    tag: str | None = None  # e.g. "de_DE"; falls back to LC_ALL / LC_MESSAGES / LANG


class WatcherSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    debounce_ms: int = Field(default=50, ge=0)


class CacheSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    db_path: str | None = None  # defaults to <data_dir>/cache.db
    # "hash" compares a content digest, for filesystems with coarse mtimes
    fingerprint: Literal["stat", "hash"] = "stat"


class LaunchSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    use_scopes: bool = True
    scope_timeout_seconds: float = Field(default=3.0, gt=0)
    terminal: list[str] | None = None  # argv prefix, e.g. ["foot", "-e"]
    systemd_run: str = "systemd-run"
    passthrough_env: list[str] = [
        "DISPLAY",
        "WAYLAND_DISPLAY",
        "XDG_CURRENT_DESKTOP",
        "XDG_SESSION_TYPE",
        "DBUS_SESSION_BUS_ADDRESS",
    ]


class LoggingSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "text"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: MENUINDEX__CACHE__DB_PATH=/tmp/x.db
        env_prefix="MENUINDEX__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    data_dir: str = _DEFAULT_DATA_DIR
    directories: DirectorySettings = DirectorySettings()
    locale: LocaleSettings = LocaleSettings()
    watcher: WatcherSettings = WatcherSettings()
    cache: CacheSettings = Field(default_factory=CacheSettings)
    launch: LaunchSettings = LaunchSettings()
    logging: LoggingSettings = LoggingSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,  # Constructor args (highest priority)
            env_settings,  # Environment variables
            YamlConfigSettingsSource(settings_cls),  # YAML file
            # dotenv and file secrets intentionally excluded
        )

    @model_validator(mode="after")
    def default_db_path(self) -> Settings:
        if self.cache.db_path is None:
            self.cache.db_path = str(Path(self.data_dir).expanduser() / _DB_FILENAME)
        return self


def resolve_locale(settings: LocaleSettings) -> str | None:
    """Return the configured locale tag, else the first non-empty locale env var."""
    if settings.tag:
        return settings.tag
    for var in ("LC_ALL", "LC_MESSAGES", "LANG"):
        value = os.environ.get(var)
        if value and value not in ("C", "POSIX"):
            return value
    return None
