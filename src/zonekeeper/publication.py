"""Hand signed zones, DS material and cycle status to the outside world.

Brief:
  The PublicationBridge is the seam between the signing core and the
  nameserver / operator. FilePublicationBridge writes everything into one
  output directory, always via a temporary file and os.replace() so the
  nameserver never reads a half-written zone:

    <zone>.signed        signed master file served by the nameserver
    <zone>.ds            DS records for manual registrar submission
    <zone>.state.json    recorded validity window (written last)
    dnskeys/<ALG>.dnskey current DNSKEY material per algorithm
    status.json          success/failure per zone for the last cycle
"""

from __future__ import annotations

import abc
import contextlib
import datetime
import json
import logging
import os
import tempfile
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import dns.dnssec

from .dnssec.algorithms import algorithm_name
from .dnssec.key_store import SigningKeyPair
from .dnssec.zone_signer import SignedZone

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SigningRecord:
    """Brief: Durable validity window of the last published signing.

    Inputs (fields):
      - zone: Zone name without trailing dot.
      - not_before / not_after / signed_at: ISO-8601 UTC timestamps.
      - algorithms: Algorithm mnemonics that signed the zone.
      - content_digest: Digest of the unsigned content that was signed.
    """

    zone: str
    not_before: str
    not_after: str
    signed_at: str
    algorithms: Tuple[str, ...]
    content_digest: str

    @property
    def expires(self) -> datetime.datetime:
        return datetime.datetime.fromisoformat(self.not_after)

    @classmethod
    def from_signed_zone(cls, signed: SignedZone) -> "SigningRecord":
        return cls(
            zone=signed.name.rstrip(".").lower(),
            not_before=signed.not_before.isoformat(),
            not_after=signed.not_after.isoformat(),
            signed_at=signed.signed_at.isoformat(),
            algorithms=tuple(algorithm_name(a) for a in signed.algorithms),
            content_digest=signed.content_digest,
        )


class PublicationBridge(abc.ABC):
    """Contract for publishing signed zones and reporting cycle status."""

    @abc.abstractmethod
    def publish(self, signed: SignedZone, ds: List[str]) -> None:
        """Atomically publish a signed zone and its DS lines."""

    @abc.abstractmethod
    def last_signed(self, zone_name: str) -> Optional[SigningRecord]:
        """Return the recorded validity window, or None when never published."""

    def publish_dnskeys(self, key_pairs: Mapping[dns.dnssec.Algorithm, SigningKeyPair]) -> None:
        """Expose current DNSKEY material (optional)."""

    def report(self, report: Dict[str, Any]) -> None:
        """Record the per-zone status of a cycle (optional)."""


def atomic_write(path: Path, data: str, mode: int = 0o644) -> None:
    """Brief: Replace ``path`` with ``data`` atomically.

    Inputs:
      - path: Destination file.
      - data: Text contents.
      - mode: Permission bits for the published file.

    Outputs:
      - None; readers observe either the old or the new file, never a mix.
    """

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp, mode)
        os.replace(tmp, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp)
        raise


class FilePublicationBridge(PublicationBridge):
    """Brief: Publish into a directory read by the nameserver.

    Inputs:
      - output_dir: Destination for signed zones, DS files and state.
    """

    def __init__(self, output_dir) -> None:
        self.output_dir = Path(output_dir)

    def _path(self, zone_name: str, suffix: str) -> Path:
        return self.output_dir / f"{zone_name.rstrip('.').lower()}{suffix}"

    def signed_zone_path(self, zone_name: str) -> Path:
        return self._path(zone_name, ".signed")

    def ds_path(self, zone_name: str) -> Path:
        return self._path(zone_name, ".ds")

    def state_path(self, zone_name: str) -> Path:
        return self._path(zone_name, ".state.json")

    @property
    def status_path(self) -> Path:
        return self.output_dir / "status.json"

    def publish(self, signed: SignedZone, ds: List[str]) -> None:
        atomic_write(self.signed_zone_path(signed.name), signed.to_text())
        atomic_write(self.ds_path(signed.name), "".join(line + "\n" for line in ds))
        # The state file is the Due -> Fresh transition; it goes last.
        record = SigningRecord.from_signed_zone(signed)
        atomic_write(
            self.state_path(signed.name),
            json.dumps(asdict(record), indent=2, sort_keys=True) + "\n",
        )
        logger.info("Published %s (valid until %s)", signed.name, record.not_after)

    def last_signed(self, zone_name: str) -> Optional[SigningRecord]:
        if not self.signed_zone_path(zone_name).exists():
            return None
        try:
            data = json.loads(self.state_path(zone_name).read_text(encoding="utf-8"))
            data["algorithms"] = tuple(data.get("algorithms") or ())
            record = SigningRecord(**data)
            if record.expires.tzinfo is None:
                raise ValueError(f"not_after {record.not_after!r} carries no timezone")
        except FileNotFoundError:
            return None
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("Ignoring unreadable signing state for %s: %s", zone_name, exc)
            return None
        return record

    def publish_dnskeys(self, key_pairs: Mapping[dns.dnssec.Algorithm, SigningKeyPair]) -> None:
        for alg, pair in sorted(key_pairs.items()):
            lines = [
                f"; {role} key tag {key.key_tag}\n{key.dnskey.to_text()}\n"
                for role, key in (("KSK", pair.ksk), ("ZSK", pair.zsk))
            ]
            atomic_write(
                self.output_dir / "dnskeys" / f"{algorithm_name(alg)}.dnskey",
                "".join(lines),
            )

    def report(self, report: Dict[str, Any]) -> None:
        atomic_write(self.status_path, json.dumps(report, indent=2, sort_keys=True) + "\n")

    def load_report(self) -> Optional[Dict[str, Any]]:
        try:
            return json.loads(self.status_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
