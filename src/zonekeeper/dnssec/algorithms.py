from __future__ import annotations

"""Signing algorithm catalogue and key-length policy.

Brief: Map configured algorithm names onto dnspython algorithm numbers and
generate private keys of the right family and size with cryptography.

Inputs:
  - Algorithm names in ldns/BIND style ("RSASHA1-NSEC3-SHA1"), dnspython
    style ("RSASHA1NSEC3SHA1") or as mnemonic numbers ("8").

Outputs:
  - dns.dnssec.Algorithm values and cryptography private key objects.
"""

from dataclasses import dataclass
from typing import Union

import dns.dnssec
import dns.exception
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa

# Algorithm -> (key family, fixed key size or None for RSA).
ALGORITHM_MAP = {
    dns.dnssec.Algorithm.RSASHA1NSEC3SHA1: ("rsa", None),
    dns.dnssec.Algorithm.RSASHA256: ("rsa", None),
    dns.dnssec.Algorithm.RSASHA512: ("rsa", None),
    dns.dnssec.Algorithm.ECDSAP256SHA256: ("ecdsa", 256),
    dns.dnssec.Algorithm.ECDSAP384SHA384: ("ecdsa", 384),
    dns.dnssec.Algorithm.ED25519: ("eddsa", 256),
}

KSK = "ksk"
ZSK = "zsk"

# DNSKEY flags: ZONE (256), plus SEP (1) for the key-signing key.
KSK_FLAGS = 257
ZSK_FLAGS = 256

AlgorithmLike = Union[str, int, dns.dnssec.Algorithm]


@dataclass(frozen=True)
class KeyPolicy:
    """Brief: Key-length policy for RSA algorithms.

    Inputs (fields):
      - ksk_bits: RSA modulus size for key-signing keys (minimum 2048).
      - zsk_bits: RSA modulus size for zone-signing keys (minimum 1024).

    Outputs:
      - Immutable policy consulted by generate_private_key().
    """

    ksk_bits: int = 2048
    zsk_bits: int = 1024

    def __post_init__(self) -> None:
        if self.ksk_bits < 2048:
            raise ValueError(f"KSK size must be at least 2048 bits, got {self.ksk_bits}")
        if self.zsk_bits < 1024:
            raise ValueError(f"ZSK size must be at least 1024 bits, got {self.zsk_bits}")

    def bits_for(self, role: str) -> int:
        return self.ksk_bits if role == KSK else self.zsk_bits


def parse_algorithm(value: AlgorithmLike) -> dns.dnssec.Algorithm:
    """Brief: Normalize an algorithm spelling to a supported Algorithm value.

    Inputs:
      - value: Name, mnemonic number or Algorithm.

    Outputs:
      - dns.dnssec.Algorithm.

    Raises:
      - ValueError: for unknown or unsupported algorithms.

    Example:
      >>> parse_algorithm("RSASHA1-NSEC3-SHA1") == dns.dnssec.Algorithm.RSASHA1NSEC3SHA1
      True
    """

    if isinstance(value, str):
        text = value.strip().upper().replace("-", "").replace("_", "")
        try:
            if text.isdigit():
                alg = dns.dnssec.Algorithm(int(text))
            else:
                alg = dns.dnssec.Algorithm.from_text(text)
        except (ValueError, dns.exception.DNSException) as exc:
            raise ValueError(f"Unknown DNSSEC algorithm: {value!r}") from exc
    else:
        try:
            alg = dns.dnssec.Algorithm(int(value))
        except ValueError as exc:
            raise ValueError(f"Unknown DNSSEC algorithm: {value!r}") from exc

    if alg not in ALGORITHM_MAP:
        raise ValueError(f"Unsupported algorithm: {algorithm_name(alg)}")
    return alg


def algorithm_name(algorithm: AlgorithmLike) -> str:
    """Return the dnspython mnemonic for an algorithm (e.g. "RSASHA256")."""

    return dns.dnssec.Algorithm.to_text(int(algorithm))


def generate_private_key(
    algorithm: dns.dnssec.Algorithm, role: str, policy: KeyPolicy
) -> object:
    """Brief: Generate a private key for one DNSSEC role.

    Inputs:
      - algorithm: Supported dns.dnssec.Algorithm.
      - role: KSK or ZSK.
      - policy: KeyPolicy supplying RSA sizes.

    Outputs:
      - cryptography private key object (randomness from the OS CSPRNG).
    """

    family, key_size = ALGORITHM_MAP[algorithm]

    if family == "rsa":
        return rsa.generate_private_key(
            public_exponent=65537, key_size=policy.bits_for(role)
        )
    if family == "ecdsa":
        curve = ec.SECP256R1() if key_size == 256 else ec.SECP384R1()
        return ec.generate_private_key(curve)
    if family == "eddsa":
        return ed25519.Ed25519PrivateKey.generate()
    raise ValueError(f"Unknown key family: {family}")
