"""JSON Schema-based validation for dnsoverride YAML configuration.

This module centralizes validating the main ``config.yaml`` using an external
JSON Schema document stored under ``assets/config-schema.json``. Variable
expansion and legacy-key folding run before validation so the schema only ever
sees the structured form.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from jsonschema import Draft202012Validator, ValidationError
from jsonschema.exceptions import SchemaError

logger = logging.getLogger(__name__)

_VAR_KEY_RE = re.compile(r"[A-Z_][A-Z0-9_]*")
_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)\}")
_WHOLE_VAR_PATTERN = re.compile(r"^\$\{?([A-Z_][A-Z0-9_]*)\}?$")


def is_var_key(key: object) -> bool:
    """Return True when key is an ALL_UPPERCASE variable name."""
    return isinstance(key, str) and bool(_VAR_KEY_RE.fullmatch(key))


def expand_variables(cfg: Dict[str, Any]) -> None:
    """Brief: Expand top-level `variables` into the config and remove the group.

    Inputs:
      - cfg: Parsed YAML configuration mapping (mutated in-place).

    Outputs:
      - None.

    Behavior:
      - Replaces `${KEY}` occurrences inside strings.
      - A string that is exactly `$KEY` or `${KEY}` is replaced with the
        variable's YAML value (list/dict/int/etc.).
      - Unknown variables are left as-is; cycles raise ValueError.
    """

    variables = cfg.pop("variables", None)
    if variables is None:
        return
    if not isinstance(variables, dict):
        raise ValueError("config.variables must be a mapping when present")
    for k in variables:
        if not is_var_key(k):
            raise ValueError(f"config.variables key {k!r} must match [A-Z_][A-Z0-9_]*")

    resolved: Dict[str, Any] = {}

    def _resolve(key: str, stack: List[str]) -> Any:
        if key in resolved:
            return resolved[key]
        if key in stack:
            raise ValueError(
                "config.variables contains a cycle: " + " -> ".join(stack + [key])
            )
        value = _expand(variables[key], stack + [key])
        resolved[key] = value
        return value

    def _expand(obj: Any, stack: List[str]) -> Any:
        if isinstance(obj, dict):
            return {k: _expand(v, stack) for k, v in obj.items()}
        if isinstance(obj, list):
            return [_expand(v, stack) for v in obj]
        if not isinstance(obj, str):
            return obj
        whole = _WHOLE_VAR_PATTERN.match(obj)
        if whole and whole.group(1) in variables:
            return _resolve(whole.group(1), stack)

        def _sub(m: "re.Match[str]") -> str:
            key = m.group(1)
            if key not in variables:
                return m.group(0)
            return str(_resolve(key, stack))

        return _VAR_PATTERN.sub(_sub, obj)

    for key in list(cfg.keys()):
        cfg[key] = _expand(cfg[key], [])


def get_default_schema_path() -> Path:
    """Brief: Resolve the default JSON Schema path for configuration.

    Inputs:
      - None.

    Outputs:
      - Path to ``assets/config-schema.json`` in the nearest ancestor that has
        one (source checkout), or the project-root location otherwise.
    """

    here = Path(__file__).resolve()
    for ancestor in here.parents:
        candidate = ancestor / "assets" / "config-schema.json"
        if candidate.is_file():
            return candidate
    return here.parents[3] / "assets" / "config-schema.json"


def _load_schema(schema_path: Path) -> Dict[str, Any]:
    with schema_path.open("r", encoding="utf-8") as f:
        return json.load(f)


def _format_errors(errors: List[ValidationError], *, config_path: Optional[str]) -> str:
    """Brief: Format jsonschema validation errors into a human-readable string.

    Inputs:
      - errors: List of jsonschema.ValidationError instances.
      - config_path: Optional path to the YAML config being validated.

    Outputs:
      - String suitable for display in logs or CLI output.
    """

    lines: List[str] = [f"Invalid configuration in {config_path or '<config dict>'}:"]
    for err in errors:
        instance_path = "/".join(str(p) for p in err.path) or "<root>"
        schema_path = "/".join(str(p) for p in err.schema_path)
        lines.append(f"- {instance_path}: {err.message} (schema: {schema_path})")
    return "\n".join(lines)


def validate_config(
    cfg: Dict[str, Any],
    *,
    schema_path: Optional[Path] = None,
    config_path: Optional[str] = "./config/config.yaml",
) -> None:
    """Brief: Validate a parsed YAML configuration mapping against JSON Schema.

    Inputs:
      - cfg: Dict loaded from YAML (top-level configuration mapping).
      - schema_path: Optional explicit path to JSON Schema file.
      - config_path: Optional string path to the YAML file, used only for
        error messages.

    Outputs:
      - None on success.

    Raises:
      - ValueError: when validation fails; the message includes all validation
        errors and the offending instance paths.

    Example:
      >>> import yaml
      >>> data = yaml.safe_load("listen: {host: 127.0.0.1, port: 5353}\\nupstream: {host: 1.1.1.1}")
      >>> validate_config(data)  # does not raise for valid config
    """
    expand_variables(cfg)

    effective_schema_path = schema_path or get_default_schema_path()
    if not effective_schema_path.is_file():
        logger.warning(
            "Configuration schema file %s not found; skipping JSON Schema validation",
            effective_schema_path,
        )
        return None

    try:
        schema = _load_schema(effective_schema_path)
        Draft202012Validator.check_schema(schema)
        validator = Draft202012Validator(schema)
    except (OSError, json.JSONDecodeError, SchemaError) as exc:
        logger.warning(
            "Failed to load configuration schema at %s: %s; skipping JSON Schema validation",
            effective_schema_path,
            exc,
        )
        return None

    errors = sorted(validator.iter_errors(cfg), key=lambda e: list(e.path))
    if errors:
        raise ValueError(_format_errors(errors, config_path=config_path))
    return None
