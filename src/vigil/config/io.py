import copy
import logging
import pathlib
from typing import Any, cast

import pydantic
import ruamel.yaml

from vigil import exceptions
from vigil.config import models

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "vigil.yaml"


def get_config_path(project_dir: pathlib.Path) -> pathlib.Path:
    """Get project config path (vigil.yaml at the project root)."""
    return project_dir / CONFIG_FILE_NAME


def _load_yaml(path: pathlib.Path) -> dict[str, Any]:
    """Load YAML config with error handling."""
    if not path.exists():
        return {}

    try:
        yaml = ruamel.yaml.YAML(typ="safe")
        with path.open() as f:
            data = yaml.load(f)
    except ruamel.yaml.YAMLError as e:
        raise exceptions.ConfigError(f"Invalid YAML in {path}: {e}") from e
    except PermissionError:
        raise exceptions.ConfigError(f"Permission denied reading {path}") from None

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise exceptions.ConfigError(f"Expected a mapping at the top level of {path}")
    return cast("dict[str, Any]", data)


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge override into base, recursively for nested dicts."""
    result = copy.deepcopy(base)
    for key, val in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(val, dict):
            nested_override = cast("dict[str, Any]", val)
            result[key] = deep_merge(result[key], nested_override)
        else:
            result[key] = copy.deepcopy(val)
    return result


def load_config(
    project_dir: pathlib.Path, overrides: dict[str, Any] | None = None
) -> models.VigilConfig:
    """Load vigil.yaml from the project and apply command-line overrides.

    A missing file yields the defaults.

    Raises:
        ConfigError: If the file is not valid YAML or does not match the schema.
    """
    path = get_config_path(project_dir)
    data = _load_yaml(path)
    if overrides:
        data = deep_merge(data, overrides)

    try:
        config = models.VigilConfig.model_validate(data)
    except pydantic.ValidationError as e:
        raise exceptions.ConfigError(f"Invalid configuration in {path}:\n{e}") from e

    logger.debug("Loaded configuration from %s", path if path.exists() else "defaults")
    return config
