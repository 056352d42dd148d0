"""Unsigned zone input model and zone sources.

Brief:
  The zone-content builder is an external collaborator. It hands the core an
  unsigned record set per zone, either as structured records or as master
  file text. Parsing is deferred to the signer so malformed input fails that
  zone alone with InvalidZoneData.
"""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, NamedTuple, Optional, Tuple

logger = logging.getLogger(__name__)


class ZoneRecord(NamedTuple):
    """One unsigned record.

    owner is relative to the zone ("www"), absolute ("www.example.test."),
    or empty/"@" for the apex. ttl None means the configured default.
    """

    owner: Optional[str]
    rtype: str
    value: str
    ttl: Optional[int] = None


@dataclass(frozen=True)
class Zone:
    """Brief: A named zone and its unsigned content.

    Inputs (fields):
      - name: Zone apex, with or without trailing dot.
      - records: Structured records (used when text is None).
      - text: Optional master-file text, parsed relative to the apex.
      - load_error: Why the content could not be read; the signer rejects
        such a zone with InvalidZoneData.
    """

    name: str
    records: Tuple[ZoneRecord, ...] = field(default_factory=tuple)
    text: Optional[str] = None
    load_error: Optional[str] = None

    @property
    def fqdn(self) -> str:
        return self.name if self.name.endswith(".") else self.name + "."

    @property
    def label(self) -> str:
        """Zone name without the trailing dot, used for file names."""
        return self.name.rstrip(".").lower()


class ZoneSource(abc.ABC):
    """Supplies the hosted zones for one renewal cycle."""

    @abc.abstractmethod
    def zones(self) -> Dict[str, Zone]:
        """Return unsigned zones keyed by zone name (no trailing dot)."""


class StaticZoneSource(ZoneSource):
    def __init__(self, zones: Mapping[str, Zone]) -> None:
        self._zones = dict(zones)

    def zones(self) -> Dict[str, Zone]:
        return dict(self._zones)


class DirectoryZoneSource(ZoneSource):
    """Brief: Read ``*.zone`` master files from a directory.

    Inputs:
      - directory: Directory holding one ``<zone name>.zone`` file per zone.

    Outputs:
      - zones(): Zone objects whose text is parsed later by the signer.
    """

    suffix = ".zone"

    def __init__(self, directory) -> None:
        self.directory = Path(directory)

    def zones(self) -> Dict[str, Zone]:
        if not self.directory.is_dir():
            logger.warning("Zone directory %s does not exist; no zones to sign", self.directory)
            return {}

        out: Dict[str, Zone] = {}
        for path in sorted(self.directory.glob("*" + self.suffix)):
            name = path.name[: -len(self.suffix)].lower()
            try:
                out[name] = Zone(name=name, text=path.read_text(encoding="utf-8"))
            except (OSError, UnicodeDecodeError) as exc:
                logger.error("Could not read zone file %s: %s", path, exc)
                out[name] = Zone(name=name, load_error=f"{type(exc).__name__}: {exc}")
        return out
