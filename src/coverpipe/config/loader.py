"""Configuration loading with pydantic-settings.

Supports loading configuration from multiple sources with precedence:
1. Direct kwargs (highest priority, CLI flags)
2. Environment variables (COVERPIPE__SECTION__KEY)
3. Repo config (.coverpipe/config.yaml, or an explicit --config file)
4. Global config (~/.config/coverpipe/config.yaml)
5. Built-in defaults (lowest priority)

The upload token additionally falls back to COVERPIPE_TOKEN or
CODECOV_TOKEN, the variables CI systems conventionally expose.
"""

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import SecretStr, ValidationError
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from coverpipe.config.models import (
    CoverPipeConfig,
    LoggingConfig,
    ReportConfig,
    RunConfig,
    TargetConfig,
    UploadConfig,
)
from coverpipe.core.errors import ConfigError

GLOBAL_CONFIG_PATH = Path("~/.config/coverpipe/config.yaml").expanduser()
REPO_CONFIG_PATH = Path(".coverpipe") / "config.yaml"
TOKEN_ENV_VARS = ("COVERPIPE_TOKEN", "CODECOV_TOKEN")


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with path.open() as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError.parse_error(str(path), str(e)) from e
    if not isinstance(data, dict):
        raise ConfigError.parse_error(str(path), "top level must be a mapping")
    return data


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

    class CoverPipeSettings(BaseSettings):
        """Root config. Env vars: COVERPIPE__RUN__TIMEOUT_SEC, COVERPIPE__UPLOAD__URL, etc."""

        model_config = SettingsConfigDict(
            env_prefix="COVERPIPE__",
            env_nested_delimiter="__",
            case_sensitive=False,
        )

        logging: LoggingConfig = LoggingConfig()
        run: RunConfig = RunConfig()
        report: ReportConfig = ReportConfig()
        upload: UploadConfig = UploadConfig()
        targets: list[TargetConfig] = []

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

    return CoverPipeSettings


def _fallback_token(config: CoverPipeConfig, env: Mapping[str, str]) -> CoverPipeConfig:
    if config.upload.token is not None:
        return config
    for name in TOKEN_ENV_VARS:
        value = env.get(name)
        if value:
            upload = config.upload.model_copy(update={"token": SecretStr(value)})
            return config.model_copy(update={"upload": upload})
    return config


def load_config(
    repo_root: Path | None = None,
    *,
    config_path: Path | None = None,
    **kwargs: Any,
) -> CoverPipeConfig:
    """Load config: defaults < global yaml < repo yaml < env vars < kwargs.

    Args:
        repo_root: Repository root to load .coverpipe/config.yaml from.
                   Defaults to current working directory.
        config_path: Explicit config file used instead of the repo config.
        **kwargs: Override values per section (highest precedence), e.g.
                  ``run={"timeout_sec": 120}``.

    Returns:
        Fully resolved, frozen configuration object.

    Raises:
        ConfigError: On a missing explicit file, invalid YAML or validation errors.
    """
    repo_root = repo_root or Path.cwd()

    if config_path is not None and not config_path.exists():
        raise ConfigError.file_not_found(str(config_path))
    repo_config = _load_yaml(config_path or repo_root / REPO_CONFIG_PATH)

    yaml_config = _deep_merge(_load_yaml(GLOBAL_CONFIG_PATH), repo_config)

    settings_cls = _make_settings_class(yaml_config)
    try:
        settings = settings_cls(**kwargs)
        config = CoverPipeConfig.model_validate(settings.model_dump())
    except ValidationError as e:
        err = e.errors()[0]
        field = ".".join(str(loc) for loc in err["loc"])
        raise ConfigError.invalid_value(field, err.get("input"), err["msg"]) from e

    return _fallback_token(config, os.environ)
