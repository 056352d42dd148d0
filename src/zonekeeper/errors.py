"""Error taxonomy shared by the key store, signer and scheduler.

Brief:
  Every failure the DNSSEC core reports derives from ZonekeeperError so the
  scheduler can tell its own failures apart from programming errors.
"""

from __future__ import annotations


class ZonekeeperError(Exception):
    """Base class for all zonekeeper failures."""


class KeyGenerationFailure(ZonekeeperError):
    """Key material could not be produced (entropy or crypto backend failure)."""


class PermissionDenied(ZonekeeperError):
    """Private key material could not be restricted to owner-only access."""


class AlreadyExists(ZonekeeperError):
    """An active key pair is already recorded for the algorithm."""


class KeyStoreCorrupt(ZonekeeperError):
    """A key store marker references missing or mismatched key files."""


class SigningFailure(ZonekeeperError):
    """A zone could not be signed; isolated to that zone."""


class MissingKeyPair(SigningFailure):
    """Signing was attempted without an active key pair for an algorithm."""


class InvalidZoneData(SigningFailure):
    """The unsigned record set was rejected at the signer boundary."""


class ConfigError(ValueError):
    """Configuration could not be loaded or validated."""
