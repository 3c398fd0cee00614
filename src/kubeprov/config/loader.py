# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeprov/config/loader.py

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from ..provision.errors import ConfigurationError
from .models import NodeConfig

log = logging.getLogger("kubeprov")


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Recursively merge *override* into *base* (mutates base).
    Only overwrites when the override value is non-empty.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            _deep_merge(base[key], value)
        else:
            if value not in (None, ""):
                base[key] = value
    return base


def _find_secrets_file(config_path: Path) -> Path | None:
    """
    Locate secrets.yaml using this priority:

    1. KUBEPROV_SECRETS_FILE environment variable (explicit override)
    2. secrets.yaml in the same directory as the node config
    """
    env = os.environ.get("KUBEPROV_SECRETS_FILE")
    if env:
        p = Path(env)
        if p.is_file():
            return p
        log.warning("KUBEPROV_SECRETS_FILE=%s does not exist, skipping", env)
        return None

    p = config_path.parent / "secrets.yaml"
    if p.is_file():
        return p

    return None


def _load_yaml(path: Path) -> dict:
    """Load a YAML file, expanding ${ENV_VAR} references."""
    try:
        raw = path.read_text()
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {path}: {e}") from e
    expanded = os.path.expandvars(raw)
    try:
        data = yaml.safe_load(expanded) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must contain a mapping at the top level")
    return data


def _format_validation(err: ValidationError) -> str:
    parts = []
    for e in err.errors():
        loc = ".".join(str(x) for x in e.get("loc", ())) or "config"
        parts.append(f"{loc}: {e.get('msg')}")
    return "; ".join(parts)


def build_config(data: Dict[str, Any], overrides: Optional[Dict[str, Any]] = None) -> NodeConfig:
    """
    Validate a raw mapping (plus CLI overrides) into a NodeConfig.
    Raises ConfigurationError instead of pydantic's ValidationError.
    """
    merged = copy.deepcopy(dict(data))
    if overrides:
        _deep_merge(merged, overrides)
    try:
        return NodeConfig.model_validate(merged)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {_format_validation(e)}") from e


def load_config(path: str | Path, overrides: Optional[Dict[str, Any]] = None) -> NodeConfig:
    """
    Load and validate a node config.

    Join tokens and CA hashes are better kept out of the main file:

    **secrets.yaml** mirrors the node config structure and is deep-merged
    before validation. Discovery order:
      1. ``KUBEPROV_SECRETS_FILE`` env var
      2. ``secrets.yaml`` next to the node config file

    **environment variables** can be referenced as ``${ENV_VAR}`` anywhere in
    either file; ``os.path.expandvars`` resolves them at load time.
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"Config file not found: {path}")
    data = _load_yaml(path)

    secrets_path = _find_secrets_file(path)
    if secrets_path:
        log.debug("Merging secrets from %s", secrets_path)
        _deep_merge(data, _load_yaml(secrets_path))
    else:
        log.debug("No secrets.yaml found, proceeding without secrets merge")

    return build_config(data, overrides)


def default_state_dir() -> Path:
    env = os.environ.get("KUBEPROV_STATE_DIR")
    if env:
        return Path(env).expanduser()
    if hasattr(os, "geteuid") and os.geteuid() == 0:
        return Path("/var/lib/kubeprov")
    return Path.home() / ".kubeprov" / "state"
