"""JSON Schema-based validation for zonekeeper YAML configuration.

This module holds the configuration schema and validates parsed YAML against
it after expanding ``${VAR}`` references from the top-level ``vars`` mapping.
"""

from __future__ import annotations

import copy
import logging
import re
from typing import Any, Dict, List, Optional

from jsonschema import Draft202012Validator, ValidationError

from ..dnssec.algorithms import parse_algorithm

logger = logging.getLogger(__name__)

_ALGORITHM_LIST = {"type": "array", "items": {"type": ["string", "integer"]}, "minItems": 1}

CONFIG_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "logging": {
            "type": ["object", "null"],
            "additionalProperties": False,
            "properties": {
                "level": {
                    "type": "string",
                    "enum": ["debug", "info", "warn", "warning", "error", "crit", "critical"],
                },
                "stderr": {"type": "boolean"},
                "file": {"type": ["string", "null"]},
                "syslog": {"type": ["boolean", "object"]},
            },
        },
        "dnssec": {
            "type": "object",
            "additionalProperties": False,
            "required": ["key_dir"],
            "properties": {
                "key_dir": {"type": "string", "minLength": 1},
                "algorithms": _ALGORITHM_LIST,
                "ksk_bits": {"type": "integer", "minimum": 2048, "maximum": 4096},
                "zsk_bits": {"type": "integer", "minimum": 1024, "maximum": 4096},
                "tld_algorithms": {
                    "type": "object",
                    "additionalProperties": _ALGORITHM_LIST,
                },
            },
        },
        "signing": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "validity_days": {"type": "number", "exclusiveMinimum": 0},
                "margin_days": {"type": "number", "minimum": 0},
                "inception_offset_seconds": {"type": "integer", "minimum": 0},
                "dnskey_ttl": {"type": "integer", "minimum": 0},
                "default_ttl": {"type": "integer", "minimum": 0},
                "nsec3": {
                    "type": "object",
                    "additionalProperties": False,
                    "properties": {
                        "iterations": {"type": "integer", "minimum": 0, "maximum": 100},
                        "salt": {"type": "string", "pattern": "^([0-9a-fA-F]{2})*$"},
                    },
                },
            },
        },
        "zones": {
            "type": "object",
            "additionalProperties": False,
            "required": ["source_dir", "output_dir"],
            "properties": {
                "source_dir": {"type": "string", "minLength": 1},
                "output_dir": {"type": "string", "minLength": 1},
            },
        },
        "scheduler": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "interval_hours": {"type": "number", "exclusiveMinimum": 0},
                "max_workers": {"type": "integer", "minimum": 1, "maximum": 64},
            },
        },
    },
    "required": ["dnssec", "zones"],
}

_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)\}")


def _normalize_variables_for_validation(cfg: Dict[str, Any]) -> None:
    """Brief: Expand top-level ``vars`` into the config and remove the group.

    Inputs:
      - cfg: Parsed YAML configuration mapping (mutated in-place).

    Outputs:
      - None.

    Behavior:
      - A string that is exactly ``${KEY}`` is replaced by the variable's value
        (which may be a list or mapping); ``${KEY}`` inside a longer string is
        substituted textually. Unknown references are left untouched.
      - Variable keys must be ALL_UPPERCASE.
    """

    variables = cfg.pop("vars", None)
    if variables is None:
        return
    if not isinstance(variables, dict):
        raise ValueError("config.vars must be a mapping when present")
    for k in variables:
        if not isinstance(k, str) or not re.fullmatch(r"[A-Z_][A-Z0-9_]*", k):
            raise ValueError(f"config.vars key {k!r} must be ALL_UPPERCASE and match [A-Z_][A-Z0-9_]*")

    def _expand(obj: Any) -> Any:
        if isinstance(obj, str):
            whole = _VAR_PATTERN.fullmatch(obj)
            if whole and whole.group(1) in variables:
                return copy.deepcopy(variables[whole.group(1)])
            return _VAR_PATTERN.sub(
                lambda m: str(variables[m.group(1)]) if m.group(1) in variables else m.group(0),
                obj,
            )
        if isinstance(obj, list):
            return [_expand(item) for item in obj]
        if isinstance(obj, dict):
            return {k: _expand(v) for k, v in obj.items()}
        return obj

    for top_key in list(cfg.keys()):
        cfg[top_key] = _expand(cfg[top_key])


def _check_algorithms(cfg: Dict[str, Any]) -> List[str]:
    """Return messages for algorithm names that are unknown or unsupported."""

    dnssec_cfg = cfg.get("dnssec")
    if not isinstance(dnssec_cfg, dict):
        return []

    names: List[tuple[str, Any]] = []
    for value in dnssec_cfg.get("algorithms") or []:
        names.append(("dnssec/algorithms", value))
    overrides = dnssec_cfg.get("tld_algorithms") or {}
    if isinstance(overrides, dict):
        for tld, values in overrides.items():
            for value in values or []:
                names.append((f"dnssec/tld_algorithms/{tld}", value))

    problems: List[str] = []
    for path, value in names:
        try:
            parse_algorithm(value)
        except ValueError as exc:
            problems.append(f"- {path}: {exc}")
    return problems


def _format_errors(errors: List[ValidationError]) -> List[str]:
    lines: List[str] = []
    for err in errors:
        instance_path = "/".join(str(p) for p in err.path) or "<root>"
        schema_path = "/".join(str(p) for p in err.schema_path)
        lines.append(f"- {instance_path}: {err.message} (schema: {schema_path})")
    return lines


def validate_config(
    cfg: Dict[str, Any],
    *,
    config_path: Optional[str] = None,
    unknown_keys: str = "warn",
) -> None:
    """Brief: Validate a parsed YAML configuration mapping against the schema.

    Inputs:
      - cfg: Dict loaded from YAML (mutated: ``vars`` are expanded and removed).
      - config_path: Optional path used in error messages.
      - unknown_keys: "ignore", "warn" (default) or "error" for keys the schema
        does not describe.

    Outputs:
      - None on success.

    Raises:
      - ValueError: listing every offending instance path.
    """

    if unknown_keys not in {"ignore", "warn", "error"}:
        raise ValueError(
            f"unknown_keys policy must be 'ignore', 'warn', or 'error', got {unknown_keys!r}"
        )

    _normalize_variables_for_validation(cfg)

    validator = Draft202012Validator(CONFIG_SCHEMA)
    errors = sorted(validator.iter_errors(cfg), key=lambda e: list(e.path))
    extra = [e for e in errors if e.validator == "additionalProperties"]
    other = [e for e in errors if e.validator != "additionalProperties"]

    header = f"Invalid configuration in {config_path or '<config dict>'}:"
    lines = _format_errors(other)
    if not other:
        lines.extend(_check_algorithms(cfg))
    if extra and unknown_keys == "error":
        lines.extend(_format_errors(extra))
    elif extra and unknown_keys == "warn":
        logger.warning("\n".join([header] + _format_errors(extra)))

    if lines:
        raise ValueError("\n".join([header] + lines))
