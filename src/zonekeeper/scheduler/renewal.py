"""Renewal scheduler: keep every hosted zone signed ahead of expiry.

Brief:
  Each tick (1) ensures an active key pair for every configured algorithm,
  (2) classifies every zone Fresh or Due against the safety margin, and
  (3) signs and publishes Due zones in parallel. A failing zone is recorded
  and retried on the next tick without affecting the others. The scheduler
  keeps no state between ticks; the key store and the published signing
  records are the only durable state.
"""

from __future__ import annotations

import datetime
import enum
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence

import dns.dnssec

from ..dnssec.algorithms import AlgorithmLike, algorithm_name, parse_algorithm
from ..dnssec.key_generator import KeyGenerator
from ..dnssec.key_store import SigningKeyPair
from ..dnssec.zone_signer import ZoneSigner, ds_lines
from ..errors import (
    AlreadyExists,
    KeyStoreCorrupt,
    MissingKeyPair,
    PermissionDenied,
    ZonekeeperError,
)
from ..publication import PublicationBridge, SigningRecord
from ..zones import Zone, ZoneSource
from .triggers import Trigger

logger = logging.getLogger(__name__)


class ZoneState(str, enum.Enum):
    FRESH = "fresh"
    DUE = "due"


def classify(
    not_after: Optional[datetime.datetime],
    now: datetime.datetime,
    margin: datetime.timedelta,
) -> ZoneState:
    """Brief: Fresh iff more than ``margin`` of validity remains.

    Inputs:
      - not_after: Expiration of the current signatures (None = never signed).
      - now: Evaluation instant.
      - margin: Safety margin.

    Outputs:
      - ZoneState.FRESH or ZoneState.DUE.

    Example:
      >>> t0 = datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc)
      >>> classify(t0 + datetime.timedelta(days=30), t0, datetime.timedelta(days=3)).value
      'fresh'
    """

    if not_after is None or not_after - now <= margin:
        return ZoneState.DUE
    return ZoneState.FRESH


@dataclass
class KeyStatus:
    algorithm: str
    ok: bool
    ksk_tag: Optional[int] = None
    zsk_tag: Optional[int] = None
    error: Optional[str] = None


@dataclass
class ZoneStatus:
    zone: str
    status: str  # "fresh", "signed" or "failed"
    not_after: Optional[str] = None
    error: Optional[str] = None


@dataclass
class CycleReport:
    """Outcome of one tick, published for operational alerting."""

    started: str
    finished: Optional[str] = None
    keys: List[KeyStatus] = field(default_factory=list)
    zones: List[ZoneStatus] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return (
            self.error is None
            and all(k.ok for k in self.keys)
            and all(z.status != "failed" for z in self.zones)
        )

    def zone(self, name: str) -> Optional[ZoneStatus]:
        name = name.rstrip(".").lower()
        return next((z for z in self.zones if z.zone == name), None)

    def to_dict(self) -> dict:
        out = asdict(self)
        out["ok"] = self.ok
        return out


def _utc(value: datetime.datetime) -> datetime.datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc).replace(microsecond=0)


class RenewalScheduler:
    """Brief: Orchestrate key provisioning and zone re-signing.

    Inputs:
      - key_generator: KeyGenerator (idempotent ensure_key_pair).
      - signer: ZoneSigner.
      - zone_source: ZoneSource supplying unsigned zones.
      - publisher: PublicationBridge for signed zones and status.
      - algorithms: Configured algorithms, provisioned every tick.
      - validity: Signature validity window (default 30 days).
      - margin: Re-sign when this much validity or less remains (default 3 days).
      - tld_algorithms: Optional TLD -> algorithms override; zones under other
        TLDs are signed with every configured algorithm.
      - max_workers: Zone-level parallelism (1 disables the thread pool).
      - clock: Callable returning the current UTC datetime.
    """

    def __init__(
        self,
        key_generator: KeyGenerator,
        signer: ZoneSigner,
        zone_source: ZoneSource,
        publisher: PublicationBridge,
        *,
        algorithms: Iterable[AlgorithmLike],
        validity: datetime.timedelta = datetime.timedelta(days=30),
        margin: datetime.timedelta = datetime.timedelta(days=3),
        tld_algorithms: Optional[Mapping[str, Sequence[AlgorithmLike]]] = None,
        max_workers: int = 4,
        clock: Optional[Callable[[], datetime.datetime]] = None,
    ) -> None:
        self.key_generator = key_generator
        self.signer = signer
        self.zone_source = zone_source
        self.publisher = publisher
        self.algorithms = [parse_algorithm(a) for a in algorithms]
        if not self.algorithms:
            raise ValueError("at least one signing algorithm must be configured")
        if margin >= validity:
            raise ValueError("safety margin must be shorter than the validity window")
        self.validity = validity
        self.margin = margin
        self.tld_algorithms = {
            str(tld).lower().strip("."): [parse_algorithm(a) for a in algs]
            for tld, algs in (tld_algorithms or {}).items()
        }
        self.max_workers = max(1, int(max_workers))
        self.clock = clock or (lambda: datetime.datetime.now(datetime.timezone.utc))

    def algorithms_for_zone(self, zone_name: str) -> List[dns.dnssec.Algorithm]:
        """Algorithms a zone is signed with: its TLD override, else all configured."""

        tld = zone_name.rstrip(".").lower().rsplit(".", 1)[-1]
        return list(self.tld_algorithms.get(tld, self.algorithms))

    def evaluate(
        self,
        record: Optional[SigningRecord],
        now: datetime.datetime,
        *,
        content_digest: Optional[str] = None,
        algorithms: Optional[Sequence[dns.dnssec.Algorithm]] = None,
    ) -> ZoneState:
        """Brief: Classify a zone from its recorded signing.

        Inputs:
          - record: Last published SigningRecord or None.
          - now: Evaluation instant.
          - content_digest: Current unsigned content digest; a mismatch means Due.
          - algorithms: Algorithms the zone should carry; a mismatch means Due.

        Outputs:
          - ZoneState.
        """

        if record is None:
            return ZoneState.DUE
        if content_digest is not None and record.content_digest != content_digest:
            return ZoneState.DUE
        if algorithms is not None and sorted(record.algorithms) != sorted(
            algorithm_name(a) for a in algorithms
        ):
            return ZoneState.DUE
        return classify(record.expires, now, self.margin)

    def ensure_keys(self, report: CycleReport) -> Dict[dns.dnssec.Algorithm, SigningKeyPair]:
        key_pairs: Dict[dns.dnssec.Algorithm, SigningKeyPair] = {}
        for alg in self.algorithms:
            name = algorithm_name(alg)
            try:
                pair = self.key_generator.ensure_key_pair(alg)
            except (PermissionDenied, AlreadyExists, KeyStoreCorrupt) as exc:
                logger.critical("DNSSEC keys for %s need operator attention: %s", name, exc)
                report.keys.append(KeyStatus(name, False, error=f"{type(exc).__name__}: {exc}"))
                continue
            except ZonekeeperError as exc:
                logger.error("Could not provision DNSSEC keys for %s: %s", name, exc)
                report.keys.append(KeyStatus(name, False, error=f"{type(exc).__name__}: {exc}"))
                continue
            key_pairs[alg] = pair
            report.keys.append(KeyStatus(name, True, pair.ksk.key_tag, pair.zsk.key_tag))
        return key_pairs

    def process_zone(
        self,
        zone: Zone,
        key_pairs: Mapping[dns.dnssec.Algorithm, SigningKeyPair],
        now: datetime.datetime,
        force: bool = False,
    ) -> ZoneStatus:
        """Brief: Evaluate one zone and sign/publish it when Due.

        Inputs:
          - zone: Unsigned zone.
          - key_pairs: Pairs provisioned this tick.
          - now: Tick instant.
          - force: Sign even when Fresh.

        Outputs:
          - ZoneStatus; failures are captured, never raised.
        """

        try:
            algorithms = self.algorithms_for_zone(zone.name)
            missing = [algorithm_name(a) for a in algorithms if a not in key_pairs]
            if missing:
                raise MissingKeyPair(
                    f"No active key pair for {', '.join(missing)}; zone left as published"
                )
            pairs = {a: key_pairs[a] for a in algorithms}

            record = self.publisher.last_signed(zone.label)
            state = ZoneState.DUE
            if not force:
                state = self.evaluate(
                    record,
                    now,
                    content_digest=self.signer.content_digest(zone),
                    algorithms=algorithms,
                )
            if state is ZoneState.FRESH:
                logger.debug("%s is fresh until %s", zone.label, record.not_after)
                return ZoneStatus(zone.label, "fresh", not_after=record.not_after)

            signed = self.signer.sign(zone, pairs, self.validity, now=now)
            self.publisher.publish(signed, ds_lines(signed.name, pairs))
            return ZoneStatus(zone.label, "signed", not_after=signed.not_after.isoformat())
        except ZonekeeperError as exc:
            logger.error("Signing %s failed: %s", zone.label, exc)
            return ZoneStatus(zone.label, "failed", error=f"{type(exc).__name__}: {exc}")
        except Exception as exc:
            logger.exception("Unexpected error while signing %s", zone.label)
            return ZoneStatus(zone.label, "failed", error=f"{type(exc).__name__}: {exc}")

    def tick(self, now: Optional[datetime.datetime] = None, force: bool = False) -> CycleReport:
        """Brief: Run one renewal pass.

        Inputs:
          - now: Optional evaluation/signing instant (defaults to the clock).
          - force: Re-sign every zone regardless of freshness.

        Outputs:
          - CycleReport, also handed to the publisher.
        """

        now = _utc(now or self.clock())
        t_start = time.monotonic()
        report = CycleReport(started=now.isoformat())

        key_pairs = self.ensure_keys(report)
        if key_pairs:
            try:
                self.publisher.publish_dnskeys(key_pairs)
            except OSError as exc:
                logger.error("Could not publish DNSKEY material: %s", exc)

        try:
            zones = self.zone_source.zones()
        except Exception as exc:
            logger.error("Could not load zones: %s", exc)
            report.error = f"{type(exc).__name__}: {exc}"
            zones = {}

        ordered = [zones[name] for name in sorted(zones)]
        if self.max_workers == 1 or len(ordered) <= 1:
            report.zones = [self.process_zone(z, key_pairs, now, force) for z in ordered]
        else:
            with ThreadPoolExecutor(max_workers=min(self.max_workers, len(ordered))) as executor:
                report.zones = list(
                    executor.map(lambda z: self.process_zone(z, key_pairs, now, force), ordered)
                )

        # Measured from the tick instant so injected clocks stay consistent.
        elapsed = datetime.timedelta(seconds=time.monotonic() - t_start)
        report.finished = _utc(now + elapsed).isoformat()
        try:
            self.publisher.report(report.to_dict())
        except OSError as exc:
            logger.error("Could not write cycle status: %s", exc)

        signed = sum(1 for z in report.zones if z.status == "signed")
        failed = [z.zone for z in report.zones if z.status == "failed"]
        log = logger.info if report.ok else logger.warning
        log(
            "Renewal cycle: %d zone(s), %d signed, %d failed%s",
            len(report.zones),
            signed,
            len(failed),
            f" ({', '.join(failed)})" if failed else "",
        )
        return report

    def run(self, trigger: Trigger) -> Optional[CycleReport]:
        """Drive ticks from ``trigger``; return the last report."""

        return trigger.run(self.tick)
