"""Layered configuration loading.

Layers, later wins key by key:

1. Built-in defaults
2. Global YAML (~/.config/indexsync/config.yaml)
3. Project YAML (indexsync.yaml in the working directory, or an explicit path)
4. Environment variables (INDEXSYNC__SECTION__KEY)
5. Keyword overrides to ``load_config``

Every layer is a pydantic-settings source; merging nested sections is left
to pydantic-settings. Entity sections accept a bare policy as shorthand, so
``Article: enqueue`` reads as ``Article: {updates: enqueue}``.
"""

from contextvars import ContextVar
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError
from pydantic_settings import (
    BaseSettings,
    InitSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from indexsync.config.models import IndexSyncConfig
from indexsync.core.errors import ConfigError

GLOBAL_CONFIG_PATH = Path("~/.config/indexsync/config.yaml").expanduser()
PROJECT_CONFIG_NAME = "indexsync.yaml"

# YAML layers of the load in progress, lowest precedence first
_yaml_layers: ContextVar[tuple[dict[str, Any], ...]] = ContextVar("yaml_layers", default=())


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with path.open() as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError.parse_error(str(path), str(e)) from e
    if not isinstance(data, dict):
        raise ConfigError.parse_error(str(path), "top-level value must be a mapping")
    return _expand_entity_shorthand(data)


def _expand_entity_shorthand(data: dict[str, Any]) -> dict[str, Any]:
    entities = data.get("entities")
    if not isinstance(entities, dict):
        return data
    expanded: dict[str, Any] = {}
    for name, section in entities.items():
        if section is None:
            section = {}
        elif not isinstance(section, dict):
            section = {"updates": section}
        expanded[name] = section
    return {**data, "entities": expanded}


class _IndexSyncSettings(BaseSettings, IndexSyncConfig):
    model_config = SettingsConfigDict(
        env_prefix="INDEXSYNC__",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        file_secret_settings: PydanticBaseSettingsSource,  # noqa: ARG003
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # First source wins
        yaml_sources = [
            InitSettingsSource(settings_cls, layer) for layer in reversed(_yaml_layers.get())
        ]
        return (init_settings, env_settings, *yaml_sources)


def load_config(config_path: Path | None = None, **kwargs: Any) -> IndexSyncConfig:
    """Resolve the configuration of one indexsync process.

    Args:
        config_path: Project config file. Defaults to ./indexsync.yaml, which
                     may be absent. An explicit path must exist.
        **kwargs: Section overrides, applied last.

    Raises:
        ConfigError: On a missing explicit file, invalid YAML, or a value that
                     fails validation (reported by its dotted field path).
    """
    if config_path is not None and not config_path.exists():
        raise ConfigError.file_not_found(str(config_path))
    project_path = config_path or Path.cwd() / PROJECT_CONFIG_NAME

    token = _yaml_layers.set((_load_yaml(GLOBAL_CONFIG_PATH), _load_yaml(project_path)))
    try:
        settings = _IndexSyncSettings(**kwargs)
    except ValidationError as e:
        err = e.errors()[0]
        field = ".".join(str(loc) for loc in err["loc"])
        raise ConfigError.invalid_value(field, err.get("input"), err["msg"]) from e
    finally:
        _yaml_layers.reset(token)
    return IndexSyncConfig.model_validate(settings.model_dump())
