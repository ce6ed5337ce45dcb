# src/cloudstrap/config/loader.py

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from ..errors import ConfigError
from .models import CloudstrapConfig


def load_config(path: Optional[str | Path] = None) -> CloudstrapConfig:
    if path is None:
        return CloudstrapConfig()

    try:
        raw = Path(path).read_text()
    except OSError as exc:
        raise ConfigError(f"Cannot read config {path}: {exc.strerror or exc}") from exc

    # expand environment variables like ${HOME}
    expanded = os.path.expandvars(raw)

    try:
        data = yaml.safe_load(expanded) or {}
        return CloudstrapConfig.model_validate(data)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Config {path} is not valid YAML: {exc}") from exc
    except ValidationError as exc:
        raise ConfigError(f"Invalid config {path}: {_first_error(exc)}") from exc


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    err = errors[0]
    where = ".".join(str(p) for p in err.get("loc", ()))
    more = f" (+{len(errors) - 1} more)" if len(errors) > 1 else ""
    return f"{where}: {err.get('msg')}{more}"
