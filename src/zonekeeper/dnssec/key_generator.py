"""Idempotent KSK/ZSK provisioning per algorithm.

Brief:
  ensure_key_pair() is safe to call on every run: it returns the stored pair
  when one exists and only generates keys the first time an algorithm is
  needed. The check-then-install sequence runs under a per-algorithm thread
  lock and the key store's cross-process lock so two concurrent first-time
  calls can never both install a KSK.
"""

from __future__ import annotations

import datetime
import logging
import threading
from typing import Dict, Iterable, Optional, Union

import dns.dnssec

from ..errors import AlreadyExists, KeyGenerationFailure, ZonekeeperError
from .algorithms import (
    KSK,
    ZSK,
    AlgorithmLike,
    KeyPolicy,
    algorithm_name,
    generate_private_key,
    parse_algorithm,
)
from .key_store import KeyStore, SigningKey, SigningKeyPair

logger = logging.getLogger(__name__)

# A ZSK whose key tag collides with the KSK would share its file stem.
_MAX_TAG_RETRIES = 5


class KeyGenerator:
    """Brief: Produce and install signing key pairs through a KeyStore.

    Inputs:
      - store: KeyStore holding the active pairs.
      - policy: Optional KeyPolicy (RSA sizes); defaults to 2048/1024.
    """

    def __init__(self, store: KeyStore, policy: Optional[KeyPolicy] = None) -> None:
        self.store = store
        self.policy = policy or KeyPolicy()
        self._locks: Dict[int, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, algorithm: dns.dnssec.Algorithm) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(int(algorithm))
            if lock is None:
                lock = threading.Lock()
                self._locks[int(algorithm)] = lock
            return lock

    def ensure_key_pair(self, algorithm: AlgorithmLike) -> SigningKeyPair:
        """Brief: Return the active pair for ``algorithm``, generating it once.

        Inputs:
          - algorithm: Algorithm in any spelling accepted by parse_algorithm().

        Outputs:
          - SigningKeyPair; the stored pair unchanged when one already exists.

        Raises:
          - KeyGenerationFailure: the crypto backend could not produce keys.
          - PermissionDenied: private key material could not be secured.
          - AlreadyExists: another writer installed a pair despite the locks.
        """

        alg = parse_algorithm(algorithm)
        pair = self.store.get_active_key_pair(alg)
        if pair is not None:
            return pair

        with self._lock_for(alg), self.store.locked(alg):
            pair = self.store.get_active_key_pair(alg)
            if pair is not None:
                return pair

            logger.info(
                "Generating DNSSEC signing keys for %s. This may take a few minutes...",
                algorithm_name(alg),
            )
            pair = self.generate(alg)
            try:
                self.store.put_active_key_pair(alg, pair)
            except AlreadyExists:
                logger.critical(
                    "Refusing to replace the active %s key pair; keeping the stored keys",
                    algorithm_name(alg),
                )
                raise
            logger.info(
                "Provisioned %s: KSK tag %d, ZSK tag %d",
                algorithm_name(alg),
                pair.ksk.key_tag,
                pair.zsk.key_tag,
            )
            return pair

    def generate(self, algorithm: dns.dnssec.Algorithm) -> SigningKeyPair:
        """Brief: Generate a fresh KSK/ZSK pair without touching the store.

        Inputs:
          - algorithm: Supported dns.dnssec.Algorithm.

        Outputs:
          - SigningKeyPair with the KSK flagged as secure entry point.

        Raises:
          - KeyGenerationFailure: on any crypto backend error.
        """

        try:
            ksk = SigningKey.from_private_key(
                generate_private_key(algorithm, KSK, self.policy), algorithm, KSK
            )
            for _ in range(_MAX_TAG_RETRIES):
                zsk = SigningKey.from_private_key(
                    generate_private_key(algorithm, ZSK, self.policy), algorithm, ZSK
                )
                if zsk.identifier != ksk.identifier:
                    break
            else:
                raise KeyGenerationFailure(
                    f"Could not generate a ZSK with a key tag distinct from the KSK ({ksk.key_tag})"
                )
        except KeyGenerationFailure:
            raise
        except Exception as exc:
            raise KeyGenerationFailure(
                f"Key generation failed for {algorithm_name(algorithm)}: {exc}"
            ) from exc

        return SigningKeyPair(
            algorithm=algorithm,
            ksk=ksk,
            zsk=zsk,
            created=datetime.datetime.now(datetime.timezone.utc).replace(microsecond=0),
        )

    def ensure_all(
        self, algorithms: Iterable[AlgorithmLike]
    ) -> Dict[dns.dnssec.Algorithm, Union[SigningKeyPair, ZonekeeperError]]:
        """Brief: Provision several algorithms independently.

        Inputs:
          - algorithms: Iterable of algorithm spellings.

        Outputs:
          - dict mapping each algorithm to its pair, or to the error that
            prevented provisioning it. One failure never affects the others.
        """

        results: Dict[dns.dnssec.Algorithm, Union[SigningKeyPair, ZonekeeperError]] = {}
        for value in algorithms:
            alg = parse_algorithm(value)
            try:
                results[alg] = self.ensure_key_pair(alg)
            except ZonekeeperError as exc:
                logger.error("Key provisioning failed for %s: %s", algorithm_name(alg), exc)
                results[alg] = exc
        return results
