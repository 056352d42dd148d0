from __future__ import annotations

"""DNSSEC zone signing with dnspython + cryptography.

Brief: Turn an unsigned record set plus the active key pairs into a fully
signed zone: apex DNSKEY RRset, NSEC3PARAM, an NSEC3 chain, and RRSIGs made
by every algorithm's ZSK (KSK for the DNSKEY RRset) over a fixed validity
window starting at signing time.

Inputs:
  - zonekeeper.zones.Zone (structured records or master-file text).
  - Mapping of algorithm -> SigningKeyPair.
  - Validity window (datetime.timedelta).

Outputs:
  - SignedZone carrying the signed dns.zone.Zone and its validity window.
  - DS record presentation strings for manual registrar submission.
"""

import datetime
import hashlib
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Set, Tuple

import dns.dnssec
import dns.exception
import dns.name
import dns.rdata
import dns.rdataclass
import dns.rdatatype
import dns.rrset
import dns.zone

from ..errors import InvalidZoneData, MissingKeyPair, SigningFailure
from ..zones import Zone
from .algorithms import algorithm_name
from .key_store import SigningKeyPair
from .nsec3 import build_chain, is_occluded, nsec3param_rdata, zone_cuts

logger = logging.getLogger(__name__)

# Records the signer owns; any copies in the unsigned input are dropped.
DNSSEC_TYPES = frozenset(
    {
        dns.rdatatype.DNSKEY,
        dns.rdatatype.RRSIG,
        dns.rdatatype.NSEC,
        dns.rdatatype.NSEC3,
        dns.rdatatype.NSEC3PARAM,
    }
)

DS_DIGESTS = (dns.dnssec.DSDigest.SHA256, dns.dnssec.DSDigest.SHA384)


@dataclass(frozen=True)
class SigningOptions:
    """Brief: Tunables for zone signing.

    Inputs (fields):
      - inception_offset: How far before signing time signatures become valid.
      - dnskey_ttl: TTL of the apex DNSKEY RRset.
      - default_ttl: TTL for input records that do not carry one.
      - nsec3_iterations: Extra NSEC3 hash iterations.
      - nsec3_salt: Hex NSEC3 salt ("" for none).
    """

    inception_offset: datetime.timedelta = datetime.timedelta(hours=1)
    dnskey_ttl: int = 3600
    default_ttl: int = 1800
    nsec3_iterations: int = 0
    nsec3_salt: str = ""


@dataclass(frozen=True)
class SignedZone:
    """Brief: Result of one signing pass; superseded entirely by the next.

    Inputs (fields):
      - name: Zone apex (absolute, trailing dot).
      - zone: Signed dns.zone.Zone.
      - algorithms: Algorithms that signed the zone.
      - not_before / not_after: RRSIG inception and expiration.
      - signed_at: Signing instant; not_after - signed_at is the window.
      - content_digest: SHA-256 of the canonical unsigned content.
    """

    name: str
    zone: dns.zone.Zone = field(compare=False, repr=False)
    algorithms: Tuple[dns.dnssec.Algorithm, ...]
    not_before: datetime.datetime
    not_after: datetime.datetime
    signed_at: datetime.datetime
    content_digest: str

    def remaining(self, now: datetime.datetime) -> datetime.timedelta:
        return self.not_after - now

    def to_text(self) -> str:
        return self.zone.to_text(sorted=True, relativize=False, nl="\n")

    def records(self) -> List[Tuple[dns.name.Name, int, dns.rdata.Rdata]]:
        """Return (owner, ttl, rdata) for every record in canonical name order."""

        out: List[Tuple[dns.name.Name, int, dns.rdata.Rdata]] = []
        for name in sorted(self.zone.keys()):
            for rdataset in self.zone[name]:
                for rdata in rdataset:
                    out.append((name, rdataset.ttl, rdata))
        return out


def _utc_seconds(value: Optional[datetime.datetime]) -> datetime.datetime:
    if value is None:
        value = datetime.datetime.now(datetime.timezone.utc)
    elif value.tzinfo is None:
        value = value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc).replace(microsecond=0)


def generate_ds_records(
    zone_name: dns.name.Name, ksk_dnskey: dns.rdata.Rdata
) -> List[dns.rdata.Rdata]:
    """Brief: Generate DS records for the KSK.

    Inputs:
      - zone_name: Zone apex.
      - ksk_dnskey: KSK DNSKEY rdata.

    Outputs:
      - List of DS rdata objects (SHA-256 and SHA-384 digests).
    """

    return [dns.dnssec.make_ds(zone_name, ksk_dnskey, digest) for digest in DS_DIGESTS]


def ds_lines(zone_name: str, key_pairs: Mapping[dns.dnssec.Algorithm, SigningKeyPair]) -> List[str]:
    """Brief: DS presentation lines for every algorithm's KSK.

    Inputs:
      - zone_name: Zone apex text (with or without trailing dot).
      - key_pairs: Active pairs by algorithm.

    Outputs:
      - Lines like ``example.test. IN DS 12345 8 2 ABCD...``. The first line
        per algorithm (SHA-256) is the one to hand to the registrar.
    """

    origin = dns.name.from_text(zone_name)
    lines: List[str] = []
    for alg in sorted(key_pairs):
        for ds in generate_ds_records(origin, key_pairs[alg].ksk.dnskey):
            lines.append(f"{origin.to_text()} IN DS {ds.to_text()}")
    return lines


class ZoneSigner:
    """Brief: Sign zones with the active key pairs.

    Inputs:
      - options: SigningOptions; defaults suit a 30-day validity window.
    """

    def __init__(self, options: Optional[SigningOptions] = None) -> None:
        self.options = options or SigningOptions()

    def parse(self, zone: Zone) -> dns.zone.Zone:
        """Brief: Build an unsigned dns.zone.Zone from the input record set.

        Inputs:
          - zone: Zone with records or master-file text.

        Outputs:
          - dns.zone.Zone with absolute names and no DNSSEC records.

        Raises:
          - InvalidZoneData: unreadable input, syntax errors, unknown types,
            out-of-zone owners, or CNAME records sharing an owner with other
            data.
        """

        try:
            origin = dns.name.from_text(zone.fqdn)
        except dns.exception.DNSException as exc:
            raise InvalidZoneData(f"Invalid zone name {zone.name!r}: {exc}") from exc

        if zone.load_error is not None:
            raise InvalidZoneData(f"Could not read zone data for {origin}: {zone.load_error}")

        entries: List[Tuple[dns.name.Name, int, int, List[dns.rdata.Rdata]]] = []
        try:
            if zone.text is not None:
                # Read under the root so owners outside the zone are kept, not skipped.
                parsed = dns.zone.from_text(
                    f"$ORIGIN {origin}\n$TTL {self.options.default_ttl}\n{zone.text}",
                    origin=dns.name.root,
                    relativize=False,
                    check_origin=False,
                )
                for name, rdataset in parsed.iterate_rdatasets():
                    if not name.is_subdomain(origin):
                        raise InvalidZoneData(f"{name} is outside zone {origin}")
                    entries.append((name, rdataset.rdtype, rdataset.ttl, list(rdataset)))
            else:
                for record in zone.records:
                    entries.append(self._parse_record(origin, record))
        except InvalidZoneData:
            raise
        except (dns.exception.DNSException, ValueError, TypeError, KeyError) as exc:
            raise InvalidZoneData(f"Malformed zone data for {origin}: {exc}") from exc

        types_by_name: Dict[dns.name.Name, Set[int]] = {}
        for name, rdtype, _, _ in entries:
            if rdtype not in DNSSEC_TYPES:
                types_by_name.setdefault(name, set()).add(rdtype)
        for name, types in types_by_name.items():
            if dns.rdatatype.CNAME in types and len(types) > 1:
                raise InvalidZoneData(f"{name} has a CNAME alongside other data")
            if name == origin and dns.rdatatype.CNAME in types:
                raise InvalidZoneData(f"CNAME is not allowed at the zone apex {origin}")

        unsigned = dns.zone.Zone(origin, relativize=False)
        for name, rdtype, ttl, rdatas in entries:
            if rdtype in DNSSEC_TYPES:
                logger.debug("Dropping %s %s from unsigned input", name, dns.rdatatype.to_text(rdtype))
                continue
            rdataset = unsigned.find_rdataset(name, rdtype, create=True)
            for rdata in rdatas:
                rdataset.add(rdata, ttl)
        return unsigned

    def _parse_record(self, origin: dns.name.Name, record) -> Tuple[dns.name.Name, int, int, List[dns.rdata.Rdata]]:
        owner = (record.owner or "").strip()
        if owner in ("", "@"):
            name = origin
        else:
            name = dns.name.from_text(owner, origin=origin)
        if not name.is_subdomain(origin):
            raise InvalidZoneData(f"{name} is outside zone {origin}")
        rdtype = dns.rdatatype.from_text(record.rtype)
        rdata = dns.rdata.from_text(
            dns.rdataclass.IN, rdtype, record.value, origin=origin, relativize=False
        )
        ttl = self.options.default_ttl if record.ttl is None else int(record.ttl)
        if ttl < 0:
            raise InvalidZoneData(f"Negative TTL for {name}")
        return name, rdtype, ttl, [rdata]

    def content_digest(self, zone: Zone) -> str:
        """SHA-256 over the canonical unsigned content; changes force a re-sign."""

        return self._digest(self.parse(zone))

    @staticmethod
    def _digest(unsigned: dns.zone.Zone) -> str:
        text = unsigned.to_text(sorted=True, relativize=False, nl="\n")
        return "sha256:" + hashlib.sha256(text.encode("utf-8")).hexdigest()

    def _negative_ttl(self, zone: dns.zone.Zone) -> int:
        soa = zone.get_rdataset(zone.origin, dns.rdatatype.SOA)
        if soa is None or len(soa) == 0:
            return self.options.default_ttl
        return min(soa.ttl, soa[0].minimum)

    def sign(
        self,
        zone: Zone,
        key_pairs: Mapping[dns.dnssec.Algorithm, SigningKeyPair],
        validity: datetime.timedelta,
        now: Optional[datetime.datetime] = None,
    ) -> SignedZone:
        """Brief: Sign a zone with every supplied algorithm.

        Inputs:
          - zone: Unsigned zone.
          - key_pairs: Active pairs keyed by algorithm (at least one).
          - validity: Signature lifetime from signing time (e.g. 30 days).
          - now: Optional signing instant override (UTC).

        Outputs:
          - SignedZone with not_after == now + validity.

        Raises:
          - MissingKeyPair: no key pairs were supplied.
          - InvalidZoneData: the input was rejected.
          - SigningFailure: any signature could not be produced.
        """

        if not key_pairs:
            raise MissingKeyPair(f"No active key pair to sign {zone.fqdn}; provision keys first")
        if validity <= datetime.timedelta(0):
            raise ValueError("validity window must be positive")

        signed_at = _utc_seconds(now)
        inception = signed_at - self.options.inception_offset
        expiration = signed_at + validity

        signed = self.parse(zone)
        digest = self._digest(signed)
        origin = signed.origin
        pairs = [key_pairs[alg] for alg in sorted(key_pairs)]

        dnskeys = signed.find_rdataset(origin, dns.rdatatype.DNSKEY, create=True)
        for pair in pairs:
            for rdata in pair.dnskeys():
                dnskeys.add(rdata, self.options.dnskey_ttl)
        signed.find_rdataset(origin, dns.rdatatype.NSEC3PARAM, create=True).add(
            nsec3param_rdata(self.options.nsec3_iterations, self.options.nsec3_salt), 0
        )

        negative_ttl = self._negative_ttl(signed)
        cuts = zone_cuts(signed, origin)
        chain = build_chain(
            signed,
            origin,
            iterations=self.options.nsec3_iterations,
            salt=self.options.nsec3_salt,
        )
        for owner, rdata in chain:
            signed.find_rdataset(owner, dns.rdatatype.NSEC3, create=True).add(rdata, negative_ttl)

        to_sign = []
        for name, rdataset in signed.iterate_rdatasets():
            if rdataset.rdtype == dns.rdatatype.RRSIG or is_occluded(name, cuts):
                continue
            if name in cuts and rdataset.rdtype != dns.rdatatype.DS:
                continue
            to_sign.append((name, rdataset))

        for name, rdataset in to_sign:
            rrset = dns.rrset.from_rdata_list(name, rdataset.ttl, list(rdataset))
            signatures = []
            for pair in pairs:
                key = pair.ksk if rdataset.rdtype == dns.rdatatype.DNSKEY else pair.zsk
                try:
                    signatures.append(
                        dns.dnssec.sign(
                            rrset,
                            key.private_key,
                            signer=origin,
                            dnskey=key.dnskey,
                            inception=inception,
                            expiration=expiration,
                        )
                    )
                except Exception as exc:
                    raise SigningFailure(
                        f"Failed to sign {name} {dns.rdatatype.to_text(rdataset.rdtype)} "
                        f"with {algorithm_name(pair.algorithm)}: {exc}"
                    ) from exc
            rrsigs = signed.find_rdataset(
                name, dns.rdatatype.RRSIG, covers=rdataset.rdtype, create=True
            )
            for rrsig in signatures:
                rrsigs.add(rrsig, rdataset.ttl)

        logger.debug(
            "Signed %s with %s: %d RRsets, %d NSEC3 records, valid until %s",
            origin,
            ", ".join(algorithm_name(p.algorithm) for p in pairs),
            len(to_sign),
            len(chain),
            expiration.isoformat(),
        )

        return SignedZone(
            name=origin.to_text(),
            zone=signed,
            algorithms=tuple(p.algorithm for p in pairs),
            not_before=inception,
            not_after=expiration,
            signed_at=signed_at,
            content_digest=digest,
        )
