import os
from typing import Any, Mapping, Optional, Type
import yaml
from pydantic import BaseModel
from ..schema.config import CoreConfig

CONFIG_FILE_ENV = "CONFIG_FILE_PATH"


def pick_known_fields(
    source: Mapping[str, Any], model: Type[BaseModel], upper_fallback: bool = False
) -> dict[str, Any]:
    """Keep the entries of `source` that name a field of `model`.

    With `upper_fallback`, a field missing under its own name is also looked
    up in upper case, which is how environment variables are usually spelled.
    """
    picked = {}
    for field in model.model_fields:
        value = source.get(field)
        if value is None and upper_fallback:
            value = source.get(field.upper())
        if value is not None:
            picked[field] = value
    return picked


def read_yaml_config(path: str) -> dict[str, Any]:
    if not os.path.isfile(path):
        return {}
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path} must hold a mapping, got {type(data).__name__}")
    return data


def load_core_config(
    path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None
) -> CoreConfig:
    """Build the config from the environment, overlaid by the YAML file."""
    environ = os.environ if environ is None else environ
    path = path or environ.get(CONFIG_FILE_ENV, "config.yaml")

    from_env = pick_known_fields(environ, CoreConfig, upper_fallback=True)
    from_yaml = pick_known_fields(read_yaml_config(path), CoreConfig)
    return CoreConfig(**{**from_env, **from_yaml})
