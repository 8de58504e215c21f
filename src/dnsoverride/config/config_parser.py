"""Configuration parsing and normalization helpers for dnsoverride.

Brief:
  This module contains the configuration-parsing utilities used by the CLI
  entrypoint. It centralizes:
    - reading YAML config files
    - merging variables from config/env/CLI
    - expanding variables, so legacy values may use ${VAR} references too
    - folding the legacy flat keys (log_level, db_settings, upstream_dns,
      bind_address, port) into the structured layout
    - JSON Schema validation
    - building the typed section models

Inputs:
  - YAML config dicts and paths

Outputs:
  - Normalized config dicts and typed section models
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import yaml

from .config_schema import expand_variables, is_var_key, validate_config
from .models import (
    CacheConfig,
    ListenConfig,
    OverrideStoreConfig,
    ResolverConfig,
    UpstreamConfig,
    load_section,
)


def _parse_yaml_value(text: str) -> Any:
    """Brief: Parse a CLI/environment variable value as YAML.

    Inputs:
      - text: String containing YAML scalar/list/dict.

    Outputs:
      - Any: Parsed value (falls back to original string on parse errors).
    """

    try:
        return yaml.safe_load(text)
    except yaml.YAMLError:
        return text


def parse_config_variables(
    cfg: Dict[str, Any],
    *,
    cli_vars: Optional[List[str]] = None,
    environ: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """Brief: Merge config/environment/CLI variables into cfg['variables'].

    Inputs:
      - cfg: Parsed YAML configuration mapping (mutated in-place).
      - cli_vars: Optional list of CLI `KEY=YAML` assignments.
      - environ: Optional environment mapping (defaults to os.environ).

    Outputs:
      - dict: The merged variables mapping stored back onto cfg['variables'].

    Precedence:
      - CLI (-v/--var) overrides environment overrides config-file variables.
      - Only environment keys already declared in cfg['variables'] are taken
        from the environment, so unrelated process variables are ignored.

    Example:
      >>> cfg = {'variables': {'TTL': 100}}
      >>> parse_config_variables(cfg, cli_vars=['TTL=300'], environ={})['TTL']
      300
    """

    base = cfg.get("variables")
    if base is None:
        merged: Dict[str, Any] = {}
    elif isinstance(base, dict):
        merged = dict(base)
    else:
        raise ValueError("config.variables must be a mapping when present")

    env = os.environ if environ is None else environ
    for k in list(merged.keys()):
        if k in env:
            merged[k] = _parse_yaml_value(str(env[k]))

    for assignment in cli_vars or []:
        if "=" not in assignment:
            raise ValueError(
                "Invalid -v/--var value (expected KEY=YAML), got: %r" % assignment
            )
        k, raw = assignment.split("=", 1)
        k = k.strip()
        if not is_var_key(k):
            raise ValueError(
                "Invalid variable name %r (must be ALL_UPPERCASE and match [A-Z_][A-Z0-9_]*)"
                % k
            )
        merged[k] = _parse_yaml_value(raw)

    if merged:
        cfg["variables"] = merged
    return merged


def parse_host_port(text: str, default_port: int = 53) -> Dict[str, Any]:
    """Brief: Split "host:port" (or "[v6]:port") into a mapping.

    Inputs:
      - text: Endpoint string.
      - default_port: Port used when none is given.

    Outputs:
      - {'host': str, 'port': int}

    Example:
      >>> parse_host_port("8.8.8.8:53")
      {'host': '8.8.8.8', 'port': 53}
    """
    text = str(text).strip()
    if text.startswith("["):
        host, _, rest = text[1:].partition("]")
        port = rest.lstrip(":") or default_port
    elif text.count(":") == 1:
        host, _, port = text.partition(":")
    else:
        host, port = text, default_port
    try:
        return {"host": host, "port": int(port)}
    except ValueError as exc:
        raise ValueError(f"Invalid endpoint {text!r}: bad port") from exc


def fold_legacy_config(cfg: Dict[str, Any]) -> None:
    """Brief: Fold the legacy flat config keys into the structured layout.

    Inputs:
      - cfg: Parsed configuration mapping (mutated in-place).

    Outputs:
      - None. Structured keys already present win over legacy ones.

    Legacy keys:
      - log_level -> logging.level
      - db_settings -> override_store.url
      - upstream_dns ("host:port") -> upstream
      - bind_address / port -> listen.host / listen.port
    """

    if "log_level" in cfg:
        level = cfg.pop("log_level")
        logging_cfg = cfg.setdefault("logging", {}) or {}
        logging_cfg.setdefault("level", level)
        cfg["logging"] = logging_cfg

    if "db_settings" in cfg:
        url = cfg.pop("db_settings")
        store_cfg = cfg.setdefault("override_store", {}) or {}
        store_cfg.setdefault("url", url)
        cfg["override_store"] = store_cfg

    if "upstream_dns" in cfg:
        upstream = cfg.pop("upstream_dns")
        if "upstream" not in cfg:
            cfg["upstream"] = parse_host_port(upstream)

    if "bind_address" in cfg or "port" in cfg:
        listen_cfg = cfg.setdefault("listen", {}) or {}
        if "bind_address" in cfg:
            listen_cfg.setdefault("host", cfg.pop("bind_address"))
        if "port" in cfg:
            listen_cfg.setdefault("port", cfg.pop("port"))
        cfg["listen"] = listen_cfg


def normalize_upstream_config(cfg: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Brief: Normalize the upstream section to {'host', 'port'}.

    Inputs:
      - cfg: Configuration mapping; cfg['upstream'] may be a mapping, a
        "host:port" string, or absent.

    Outputs:
      - dict or None when no upstream is configured.
    """
    raw = cfg.get("upstream")
    if raw is None:
        return None
    if isinstance(raw, str):
        raw = parse_host_port(raw)
    model = load_section(UpstreamConfig, raw)
    return {"host": model.host, "port": model.port}


@dataclass
class AppConfig:
    """Typed view of a validated configuration file."""

    logging: Dict[str, Any]
    listen: ListenConfig
    upstream: Optional[Dict[str, Any]]
    timeout_ms: int
    override_store: OverrideStoreConfig
    cache: CacheConfig
    resolver: ResolverConfig


def build_app_config(cfg: Dict[str, Any]) -> AppConfig:
    """Brief: Build typed section models from a validated config mapping.

    Inputs:
      - cfg: Validated configuration mapping.

    Outputs:
      - AppConfig.

    Raises:
      - ValueError: When a section fails model validation.
    """
    return AppConfig(
        logging=dict(cfg.get("logging") or {}),
        listen=load_section(ListenConfig, cfg.get("listen")),
        upstream=normalize_upstream_config(cfg),
        timeout_ms=max(0, int(cfg.get("timeout_ms", 2000))),
        override_store=load_section(OverrideStoreConfig, cfg.get("override_store")),
        cache=load_section(CacheConfig, cfg.get("cache")),
        resolver=load_section(ResolverConfig, cfg.get("resolver")),
    )


def parse_config_file(
    config_path: str,
    *,
    cli_vars: Optional[List[str]] = None,
    environ: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """Brief: Read, variable-merge, legacy-fold and schema-validate a YAML config file.

    Inputs:
      - config_path: Path to the YAML (or legacy JSON) configuration file.
      - cli_vars: Optional list of CLI `KEY=YAML` assignments (from -v/--var).
      - environ: Optional environment mapping.

    Outputs:
      - dict: Parsed configuration mapping.

    Raises:
      - ValueError: When schema validation fails or variables are invalid.
      - OSError: When the file cannot be read.
    """

    with open(config_path, "r", encoding="utf-8") as f:
        try:
            cfg = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Could not parse {config_path}: {exc}") from exc

    if not isinstance(cfg, dict):
        raise ValueError("Configuration root must be a mapping")

    parse_config_variables(cfg, cli_vars=list(cli_vars or []), environ=environ)
    expand_variables(cfg)
    fold_legacy_config(cfg)
    validate_config(cfg, config_path=config_path)
    return cfg
