"""
Brief: Tests for zonekeeper.dnssec.key_generator.KeyGenerator and the
algorithm catalogue.

Inputs:
  - None

Outputs:
  - None
"""

import threading

import dns.dnssec
import pytest

from zonekeeper.dnssec import algorithms
from zonekeeper.dnssec.algorithms import KeyPolicy, algorithm_name, parse_algorithm
from zonekeeper.dnssec.key_generator import KeyGenerator
from zonekeeper.dnssec.key_store import FileKeyStore
from zonekeeper.errors import KeyGenerationFailure

ALG = dns.dnssec.Algorithm.ECDSAP256SHA256


@pytest.mark.parametrize(
    "value,expected",
    [
        ("RSASHA1-NSEC3-SHA1", dns.dnssec.Algorithm.RSASHA1NSEC3SHA1),
        ("rsasha256", dns.dnssec.Algorithm.RSASHA256),
        ("13", dns.dnssec.Algorithm.ECDSAP256SHA256),
        (15, dns.dnssec.Algorithm.ED25519),
    ],
)
def test_parse_algorithm_spellings(value, expected):
    """
    Brief: parse_algorithm accepts BIND names, mnemonics and numbers.

    Inputs:
      - value: algorithm spelling

    Outputs:
      - None: Asserts the parsed Algorithm
    """
    assert parse_algorithm(value) == expected


@pytest.mark.parametrize("value", ["NOPE", "RSAMD5", 3, 250])
def test_parse_algorithm_rejects_unknown_and_unsupported(value):
    """
    Brief: Unknown or unsupported algorithms raise ValueError.

    Inputs:
      - value: invalid spelling

    Outputs:
      - None: Asserts ValueError
    """
    with pytest.raises(ValueError):
        parse_algorithm(value)


def test_key_policy_enforces_minimum_sizes():
    """
    Brief: KeyPolicy refuses RSA sizes below 2048 (KSK) and 1024 (ZSK).

    Inputs:
      - None

    Outputs:
      - None: Asserts ValueError
    """
    with pytest.raises(ValueError):
        KeyPolicy(ksk_bits=1024)
    with pytest.raises(ValueError):
        KeyPolicy(zsk_bits=512)


def test_ensure_key_pair_is_idempotent(key_store):
    """
    Brief: A second call returns the stored pair byte-for-byte.

    Inputs:
      - key_store fixture

    Outputs:
      - None: Asserts identical identifiers and PEM bytes
    """
    gen = KeyGenerator(key_store)
    first = gen.ensure_key_pair(ALG)
    second = KeyGenerator(FileKeyStore(key_store.key_dir)).ensure_key_pair(ALG)

    assert second.ksk.identifier == first.ksk.identifier
    assert second.zsk.identifier == first.zsk.identifier
    assert second.ksk.private_pem == first.ksk.private_pem
    assert second.zsk.private_pem == first.zsk.private_pem


def test_pair_flags_and_distinct_tags(key_store):
    """
    Brief: The KSK carries the SEP flag and the tags differ.

    Inputs:
      - key_store fixture

    Outputs:
      - None: Asserts DNSKEY flags 257/256 and distinct key tags
    """
    pair = KeyGenerator(key_store).ensure_key_pair("ED25519")
    assert pair.ksk.dnskey.flags == 257
    assert pair.zsk.dnskey.flags == 256
    assert pair.ksk.key_tag != pair.zsk.key_tag
    assert pair.ksk.dnskey.algorithm == dns.dnssec.Algorithm.ED25519


def test_rsa_key_sizes_follow_policy(key_store):
    """
    Brief: RSA keys default to a 2048-bit KSK and a 1024-bit ZSK.

    Inputs:
      - RSASHA256 generation

    Outputs:
      - None: Asserts modulus sizes
    """
    pair = KeyGenerator(key_store).generate(dns.dnssec.Algorithm.RSASHA256)
    assert pair.ksk.private_key.key_size == 2048
    assert pair.zsk.private_key.key_size == 1024


def test_concurrent_first_calls_generate_once(key_store, monkeypatch):
    """
    Brief: N threads racing on an empty store produce exactly one pair.

    Inputs:
      - 8 threads calling ensure_key_pair simultaneously

    Outputs:
      - None: Asserts one generation and identical results for every caller
    """
    gen = KeyGenerator(key_store)
    calls = []
    real_generate = gen.generate

    def counting_generate(alg):
        calls.append(alg)
        return real_generate(alg)

    monkeypatch.setattr(gen, "generate", counting_generate)

    barrier = threading.Barrier(8)
    results = []
    errors = []

    def worker():
        barrier.wait()
        try:
            results.append(gen.ensure_key_pair(ALG))
        except Exception as exc:  # pragma: no cover - failure path
            errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(calls) == 1
    assert len({r.ksk.identifier for r in results}) == 1
    assert len(list(key_store.key_dir.glob("*.private"))) == 2


def test_crypto_failure_is_wrapped(key_store, monkeypatch):
    """
    Brief: Backend errors surface as KeyGenerationFailure and store nothing.

    Inputs:
      - generate_private_key patched to raise

    Outputs:
      - None: Asserts KeyGenerationFailure and an empty store
    """

    def boom(*_args, **_kwargs):
        raise RuntimeError("entropy unavailable")

    monkeypatch.setattr("zonekeeper.dnssec.key_generator.generate_private_key", boom)
    with pytest.raises(KeyGenerationFailure):
        KeyGenerator(key_store).ensure_key_pair(ALG)
    assert key_store.get_active_key_pair(ALG) is None


def test_ensure_all_isolates_failures(key_store, monkeypatch):
    """
    Brief: One algorithm failing does not prevent the others.

    Inputs:
      - generation patched to fail for ED25519 only

    Outputs:
      - None: Asserts ECDSAP256 provisioned and ED25519 reported as error
    """
    real = algorithms.generate_private_key

    def selective(alg, role, policy):
        if alg == dns.dnssec.Algorithm.ED25519:
            raise RuntimeError("unsupported by backend")
        return real(alg, role, policy)

    monkeypatch.setattr("zonekeeper.dnssec.key_generator.generate_private_key", selective)
    results = KeyGenerator(key_store).ensure_all(["ED25519", "ECDSAP256SHA256"])

    assert isinstance(results[dns.dnssec.Algorithm.ED25519], KeyGenerationFailure)
    assert results[ALG].ksk.dnskey.algorithm == ALG
    assert key_store.active_algorithms() == [ALG]
    assert algorithm_name(ALG) == "ECDSAP256SHA256"
