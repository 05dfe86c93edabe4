# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netform/config/loader.py

import logging
import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from netform.errors import ConfigurationError
from .models import RunConfig

log = logging.getLogger("netform")


def _load_yaml(path: Path) -> dict:
    """Load a YAML file, expanding ${ENV_VAR} references."""
    raw = path.read_text()
    expanded = os.path.expandvars(raw)
    try:
        data = yaml.safe_load(expanded) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"{path}: not valid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path}: top level must be a mapping")
    return data


def load_config(path: Optional[str | Path]) -> RunConfig:
    """
    Load and validate a netform run file.

    ``${ENV_VAR}`` placeholders anywhere in the file are resolved at load
    time, so SSH passwords and key paths can stay out of the file itself.
    With no path the built-in defaults are used (flat topology, 2 servers +
    1 agent).
    """
    if path is None:
        log.debug("No run file given, using defaults")
        return RunConfig()

    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"run file {path} does not exist")

    data = _load_yaml(path)
    try:
        return RunConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"{path}: invalid run file:\n{exc}") from exc
