"""Configuration parsing and component wiring for zonekeeper.

Brief:
  This module contains the configuration-parsing utilities that are used by the
  CLI entrypoint. It centralizes:
    - reading YAML config files
    - merging variables from config/env/CLI
    - JSON Schema validation (including variable expansion performed by
      validate_config)
    - conversion into typed pydantic settings
    - building the key store, signer, publisher and renewal scheduler

Inputs:
  - YAML config dicts and paths

Outputs:
  - Settings instances and a ready-to-run RenewalScheduler
"""

from __future__ import annotations

import datetime
import os
import re
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from ..dnssec.algorithms import KeyPolicy
from ..dnssec.key_generator import KeyGenerator
from ..dnssec.key_store import FileKeyStore
from ..dnssec.zone_signer import SigningOptions, ZoneSigner
from ..errors import ConfigError
from ..publication import FilePublicationBridge
from ..scheduler.renewal import RenewalScheduler
from ..zones import DirectoryZoneSource
from .config_schema import validate_config

DEFAULT_ALGORITHMS = ["RSASHA1-NSEC3-SHA1", "RSASHA256"]


def _is_var_key(key: str) -> bool:
    """Brief: True when ``key`` is ALL_UPPERCASE and matches [A-Z_][A-Z0-9_]*."""

    return bool(key) and bool(re.fullmatch(r"[A-Z_][A-Z0-9_]*", key))


def _parse_yaml_value(text: str) -> Any:
    """Brief: Parse a CLI/environment variable value as YAML.

    Inputs:
      - text: String containing YAML scalar/list/dict.

    Outputs:
      - Any: Parsed value (falls back to the original string on parse errors).
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
    """Brief: Merge config/environment/CLI variables into cfg['vars'].

    Inputs:
      - cfg: Parsed YAML configuration mapping (mutated in-place).
      - cli_vars: Optional list of CLI `KEY=YAML` assignments.
      - environ: Optional environment mapping (defaults to os.environ).

    Outputs:
      - dict: The merged variables mapping stored back onto cfg['vars'].

    Precedence:
      - CLI (-v/--var) overrides environment overrides config-file variables.
      - Only environment variables prefixed ``ZONEKEEPER_`` are imported, with
        the prefix removed.

    Example:
      >>> cfg = {'vars': {'KEYS': '/tmp/keys'}}
      >>> parse_config_variables(cfg, cli_vars=['KEYS=/srv/keys'], environ={})['KEYS']
      '/srv/keys'
    """

    base = cfg.get("vars")
    if base is None:
        merged: Dict[str, Any] = {}
    elif isinstance(base, dict):
        merged = dict(base)
    else:
        raise ValueError("config.vars must be a mapping when present")

    env = os.environ if environ is None else environ
    for k, v in env.items():
        if not k.startswith("ZONEKEEPER_"):
            continue
        name = k[len("ZONEKEEPER_"):]
        if _is_var_key(name):
            merged[name] = _parse_yaml_value(str(v))

    for assignment in cli_vars or []:
        if "=" not in assignment:
            raise ValueError(
                "Invalid -v/--var value (expected KEY=YAML), got: %r" % assignment
            )
        k, raw = assignment.split("=", 1)
        k = k.strip()
        if not _is_var_key(k):
            raise ValueError(
                "Invalid variable name %r (must be ALL_UPPERCASE and match [A-Z_][A-Z0-9_]*)"
                % k
            )
        merged[k] = _parse_yaml_value(raw)

    if merged:
        cfg["vars"] = merged
    return merged


def parse_config_file(
    config_path: str,
    *,
    cli_vars: Optional[List[str]] = None,
    environ: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """Brief: Read, variable-merge, and schema-validate a YAML config file.

    Inputs:
      - config_path: Path to the YAML configuration file.
      - cli_vars: Optional list of CLI `KEY=YAML` assignments (from -v/--var).
      - environ: Optional environment mapping (defaults to os.environ).

    Outputs:
      - dict: Parsed configuration mapping with variables expanded.

    Raises:
      - ConfigError: When the file is unreadable, is not YAML, or fails
        schema validation.
    """

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            cfg = yaml.safe_load(f) or {}
    except OSError as exc:
        raise ConfigError(f"Cannot read configuration {config_path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Configuration {config_path} is not valid YAML: {exc}") from exc

    if not isinstance(cfg, dict):
        raise ConfigError("Configuration root must be a mapping")

    try:
        parse_config_variables(cfg, cli_vars=list(cli_vars or []), environ=environ)
        validate_config(cfg, config_path=config_path)
    except ConfigError:
        raise
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc
    return cfg


class DnssecSettings(BaseModel):
    """Brief: Key material location and policy.

    Inputs:
      - key_dir: Directory holding key files and active markers.
      - algorithms: Algorithms provisioned every cycle.
      - ksk_bits / zsk_bits: RSA modulus sizes.
      - tld_algorithms: TLD -> algorithms override.
    """

    key_dir: str
    algorithms: List[Any] = Field(default_factory=lambda: list(DEFAULT_ALGORITHMS))
    ksk_bits: int = Field(default=2048, ge=2048)
    zsk_bits: int = Field(default=1024, ge=1024)
    tld_algorithms: Dict[str, List[Any]] = Field(default_factory=dict)


class Nsec3Settings(BaseModel):
    iterations: int = Field(default=0, ge=0)
    salt: str = ""


class SigningSettings(BaseModel):
    """Brief: Signature validity window and record defaults."""

    validity_days: float = Field(default=30, gt=0)
    margin_days: float = Field(default=3, ge=0)
    inception_offset_seconds: int = Field(default=3600, ge=0)
    dnskey_ttl: int = Field(default=3600, ge=0)
    default_ttl: int = Field(default=1800, ge=0)
    nsec3: Nsec3Settings = Field(default_factory=Nsec3Settings)

    @property
    def validity(self) -> datetime.timedelta:
        return datetime.timedelta(days=self.validity_days)

    @property
    def margin(self) -> datetime.timedelta:
        return datetime.timedelta(days=self.margin_days)


class ZonesSettings(BaseModel):
    source_dir: str
    output_dir: str


class SchedulerSettings(BaseModel):
    interval_hours: float = Field(default=24, gt=0)
    max_workers: int = Field(default=4, ge=1)


class Settings(BaseModel):
    """Brief: Typed view of a validated configuration mapping.

    Inputs:
      - logging: Raw logging mapping handed to init_logging().
      - dnssec / signing / zones / scheduler: Section models.

    Outputs:
      - Settings instance with defaults applied.
    """

    logging: Optional[Dict[str, Any]] = None
    dnssec: DnssecSettings
    signing: SigningSettings = Field(default_factory=SigningSettings)
    zones: ZonesSettings
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)


def load_settings(cfg: Dict[str, Any]) -> Settings:
    """Brief: Convert a validated config mapping into Settings.

    Inputs:
      - cfg: Mapping returned by parse_config_file().

    Outputs:
      - Settings.

    Raises:
      - ConfigError: When the mapping does not fit the settings models or the
        margin is not shorter than the validity window.
    """

    try:
        settings = Settings.model_validate(cfg)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc
    if settings.signing.margin >= settings.signing.validity:
        raise ConfigError("signing.margin_days must be smaller than signing.validity_days")
    return settings


def build_key_generator(settings: Settings) -> KeyGenerator:
    try:
        policy = KeyPolicy(ksk_bits=settings.dnssec.ksk_bits, zsk_bits=settings.dnssec.zsk_bits)
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc
    return KeyGenerator(FileKeyStore(settings.dnssec.key_dir), policy)


def build_signer(settings: Settings) -> ZoneSigner:
    signing = settings.signing
    return ZoneSigner(
        SigningOptions(
            inception_offset=datetime.timedelta(seconds=signing.inception_offset_seconds),
            dnskey_ttl=signing.dnskey_ttl,
            default_ttl=signing.default_ttl,
            nsec3_iterations=signing.nsec3.iterations,
            nsec3_salt=signing.nsec3.salt,
        )
    )


def build_scheduler(settings: Settings) -> RenewalScheduler:
    """Brief: Wire the file-backed components into a RenewalScheduler.

    Inputs:
      - settings: Loaded Settings.

    Outputs:
      - RenewalScheduler using FileKeyStore, DirectoryZoneSource and
        FilePublicationBridge.
    """

    try:
        return RenewalScheduler(
            build_key_generator(settings),
            build_signer(settings),
            DirectoryZoneSource(settings.zones.source_dir),
            FilePublicationBridge(settings.zones.output_dir),
            algorithms=settings.dnssec.algorithms,
            validity=settings.signing.validity,
            margin=settings.signing.margin,
            tld_algorithms=settings.dnssec.tld_algorithms,
            max_workers=settings.scheduler.max_workers,
        )
    except ConfigError:
        raise
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc
