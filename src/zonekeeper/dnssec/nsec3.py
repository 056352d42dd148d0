from __future__ import annotations

"""NSEC3 chain construction (RFC 5155) for authenticated denial of existence.

Brief: Hash every authoritative owner name and empty non-terminal of a zone
and link the hashes into a closed, ordered chain, so that non-existence can
be proven without enabling zone enumeration.

Inputs:
  - Unsigned dns.zone.Zone (absolute names) already carrying the apex
    DNSKEY and NSEC3PARAM RRsets.

Outputs:
  - (owner name, NSEC3 rdata) tuples ready to be added to the zone.
"""

from typing import Dict, List, Set, Tuple

import dns.dnssec
import dns.name
import dns.rdata
import dns.rdataclass
import dns.rdatatype
import dns.zone

from ..errors import SigningFailure

NSEC3_HASH_SHA1 = 1


def _salt_text(salt: str) -> str:
    return salt.lower() if salt else "-"


def nsec3param_rdata(iterations: int = 0, salt: str = "") -> dns.rdata.Rdata:
    """Return the apex NSEC3PARAM rdata for the given hash parameters."""

    return dns.rdata.from_text(
        dns.rdataclass.IN,
        dns.rdatatype.NSEC3PARAM,
        f"{NSEC3_HASH_SHA1} 0 {int(iterations)} {_salt_text(salt)}",
    )


def zone_cuts(zone: dns.zone.Zone, origin: dns.name.Name) -> Set[dns.name.Name]:
    """Return delegation points: non-apex names owning an NS RRset."""

    cuts: Set[dns.name.Name] = set()
    for name, node in zone.items():
        if name == origin:
            continue
        if node.get_rdataset(dns.rdataclass.IN, dns.rdatatype.NS) is not None:
            cuts.add(name)
    return cuts


def is_occluded(name: dns.name.Name, cuts: Set[dns.name.Name]) -> bool:
    """True when ``name`` lies strictly below a delegation point (glue)."""

    return any(name != cut and name.is_subdomain(cut) for cut in cuts)


def _bitmap_types(
    name: dns.name.Name, node, cuts: Set[dns.name.Name]
) -> List[int]:
    present = {rds.rdtype for rds in node if rds.rdtype != dns.rdatatype.RRSIG}
    if name in cuts:
        types = present & {dns.rdatatype.NS, dns.rdatatype.DS}
        if dns.rdatatype.DS in types:
            types.add(dns.rdatatype.RRSIG)
    else:
        types = set(present)
        if types:
            types.add(dns.rdatatype.RRSIG)
    return sorted(types)


def build_chain(
    zone: dns.zone.Zone,
    origin: dns.name.Name,
    *,
    iterations: int = 0,
    salt: str = "",
) -> List[Tuple[dns.name.Name, dns.rdata.Rdata]]:
    """Brief: Build the complete NSEC3 chain for a zone.

    Inputs:
      - zone: Unsigned zone (absolute names), apex DNSKEY/NSEC3PARAM present.
      - origin: Zone apex.
      - iterations: Additional hash iterations (0 recommended by RFC 9276).
      - salt: Hex salt, empty for none.

    Outputs:
      - List of (hashed owner name, NSEC3 rdata), ordered by hash.

    Raises:
      - SigningFailure: on a hash collision between two owner names.
    """

    cuts = zone_cuts(zone, origin)

    bitmaps: Dict[dns.name.Name, List[int]] = {}
    for name, node in zone.items():
        if is_occluded(name, cuts):
            continue
        bitmaps[name] = _bitmap_types(name, node, cuts)

    # Empty non-terminals get an NSEC3 with an empty type bitmap.
    for name in list(bitmaps):
        parent = name
        while parent != origin:
            parent = parent.parent()
            if parent != origin and parent not in bitmaps:
                bitmaps[parent] = []

    hashed: Dict[str, dns.name.Name] = {}
    for name in bitmaps:
        digest = dns.dnssec.nsec3_hash(name, salt or None, int(iterations), NSEC3_HASH_SHA1)
        if digest in hashed:
            raise SigningFailure(
                f"NSEC3 hash collision between {hashed[digest]} and {name}; change the salt"
            )
        hashed[digest] = name

    ordered = sorted(hashed)
    chain: List[Tuple[dns.name.Name, dns.rdata.Rdata]] = []
    for index, digest in enumerate(ordered):
        next_digest = ordered[(index + 1) % len(ordered)]
        types = " ".join(dns.rdatatype.to_text(t) for t in bitmaps[hashed[digest]])
        rdata = dns.rdata.from_text(
            dns.rdataclass.IN,
            dns.rdatatype.NSEC3,
            f"{NSEC3_HASH_SHA1} 0 {int(iterations)} {_salt_text(salt)} {next_digest} {types}".rstrip(),
        )
        owner = dns.name.from_text(digest.lower(), origin=origin)
        chain.append((owner, rdata))
    return chain
