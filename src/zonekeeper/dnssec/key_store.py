"""Durable record of DNSSEC key material and the active pair per algorithm.

Brief:
  KeyStore is the typed contract consumed by the key generator and the
  scheduler. FileKeyStore keeps one JSON marker per algorithm naming the
  active KSK and ZSK, plus the key files themselves:

    <key_dir>/RSASHA256.json          marker (atomic compare-and-install)
    <key_dir>/K+008+12345.private     PKCS8 PEM, mode 0600
    <key_dir>/K+008+12345.key         DNSKEY presentation text

  The marker is the commit point: it is hard-linked into place only after
  both key pairs' files are fully written, so a reader either sees a complete
  pair or nothing.
"""

from __future__ import annotations

import abc
import contextlib
import datetime
import fcntl
import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List, Optional

import dns.dnssec
import dns.exception
import dns.rdata
import dns.rdataclass
import dns.rdatatype
from cryptography.hazmat.primitives import serialization

from ..errors import (
    AlreadyExists,
    KeyGenerationFailure,
    KeyStoreCorrupt,
    PermissionDenied,
)
from .algorithms import (
    KSK,
    KSK_FLAGS,
    ZSK,
    ZSK_FLAGS,
    AlgorithmLike,
    algorithm_name,
    parse_algorithm,
)

logger = logging.getLogger(__name__)

_PRIVATE_MODE = 0o600
_PUBLIC_MODE = 0o644


def key_identifier(algorithm: int, key_tag: int) -> str:
    """Return the file stem for a key, e.g. ``K+008+12345``."""

    return f"K+{int(algorithm):03d}+{int(key_tag):05d}"


@dataclass(frozen=True)
class SigningKey:
    """Brief: One DNSSEC key (KSK or ZSK) with its public and private forms.

    Inputs (fields):
      - identifier: File stem used by the key store.
      - role: "ksk" or "zsk".
      - dnskey: DNSKEY rdata (flags 257 for the KSK, 256 for the ZSK).
      - private_pem: PKCS8 PEM encoding of the private key (secret).
      - private_key: cryptography private key object.

    Outputs:
      - Equality compares identifier, role, DNSKEY and PEM bytes.
    """

    identifier: str
    role: str
    dnskey: dns.rdata.Rdata
    private_pem: bytes = field(repr=False)
    private_key: object = field(repr=False, compare=False)

    @property
    def key_tag(self) -> int:
        return dns.dnssec.key_id(self.dnskey)

    @classmethod
    def from_private_key(
        cls,
        private_key: object,
        algorithm: dns.dnssec.Algorithm,
        role: str,
        *,
        private_pem: Optional[bytes] = None,
    ) -> "SigningKey":
        flags = KSK_FLAGS if role == KSK else ZSK_FLAGS
        dnskey = dns.dnssec.make_dnskey(
            private_key.public_key(), algorithm, flags=flags
        )
        if private_pem is None:
            private_pem = private_key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption(),
            )
        return cls(
            identifier=key_identifier(algorithm, dns.dnssec.key_id(dnskey)),
            role=role,
            dnskey=dnskey,
            private_pem=private_pem,
            private_key=private_key,
        )


@dataclass(frozen=True)
class SigningKeyPair:
    """KSK/ZSK pair for one algorithm."""

    algorithm: dns.dnssec.Algorithm
    ksk: SigningKey
    zsk: SigningKey
    created: datetime.datetime

    def dnskeys(self) -> List[dns.rdata.Rdata]:
        return [self.ksk.dnskey, self.zsk.dnskey]


class KeyStore(abc.ABC):
    """Brief: Contract for durable key storage.

    Inputs:
      - Algorithms in any spelling accepted by parse_algorithm().

    Outputs:
      - Active SigningKeyPair per algorithm, or None when not provisioned.
    """

    @abc.abstractmethod
    def get_active_key_pair(self, algorithm: AlgorithmLike) -> Optional[SigningKeyPair]:
        """Return the active pair for ``algorithm`` or None."""

    @abc.abstractmethod
    def put_active_key_pair(self, algorithm: AlgorithmLike, pair: SigningKeyPair) -> None:
        """Install ``pair`` as active; raise AlreadyExists if one is recorded."""

    @abc.abstractmethod
    def active_algorithms(self) -> List[dns.dnssec.Algorithm]:
        """Return every algorithm that has an active pair."""

    @contextlib.contextmanager
    def locked(self, algorithm: AlgorithmLike) -> Iterator[None]:
        """Cross-process exclusion for provisioning ``algorithm`` (no-op by default)."""

        yield


class FileKeyStore(KeyStore):
    """Brief: KeyStore backed by a directory of key files and JSON markers.

    Inputs:
      - key_dir: Directory for key material (created with mode 0700).
    """

    def __init__(self, key_dir) -> None:
        self.key_dir = Path(key_dir)

    def marker_path(self, algorithm: AlgorithmLike) -> Path:
        return self.key_dir / f"{algorithm_name(parse_algorithm(algorithm))}.json"

    def get_active_key_pair(self, algorithm: AlgorithmLike) -> Optional[SigningKeyPair]:
        alg = parse_algorithm(algorithm)
        marker = self.marker_path(alg)
        try:
            raw = marker.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except PermissionError as exc:
            raise PermissionDenied(f"Cannot read key store marker {marker}: {exc}") from exc

        try:
            record = json.loads(raw)
            ksk_id = str(record["ksk"])
            zsk_id = str(record["zsk"])
            created = datetime.datetime.fromisoformat(record["created"])
        except (KeyError, TypeError, ValueError) as exc:
            raise KeyStoreCorrupt(f"Malformed key store marker {marker}: {exc}") from exc

        if int(record.get("algorithm", int(alg))) != int(alg):
            raise KeyStoreCorrupt(f"Marker {marker} records a different algorithm")

        return SigningKeyPair(
            algorithm=alg,
            ksk=self._load_key(ksk_id, KSK, alg),
            zsk=self._load_key(zsk_id, ZSK, alg),
            created=created,
        )

    def put_active_key_pair(self, algorithm: AlgorithmLike, pair: SigningKeyPair) -> None:
        alg = parse_algorithm(algorithm)
        if pair.algorithm != alg:
            raise ValueError(
                f"Key pair for {algorithm_name(pair.algorithm)} cannot be stored as {algorithm_name(alg)}"
            )

        self._ensure_dir()
        marker = self.marker_path(alg)
        if marker.exists():
            raise AlreadyExists(f"An active key pair is already recorded for {algorithm_name(alg)}")

        written: List[Path] = []
        try:
            for key in (pair.ksk, pair.zsk):
                written.append(
                    self._create_file(
                        self.key_dir / f"{key.identifier}.private",
                        key.private_pem,
                        _PRIVATE_MODE,
                    )
                )
                written.append(
                    self._create_file(
                        self.key_dir / f"{key.identifier}.key",
                        (key.dnskey.to_text() + "\n").encode("ascii"),
                        _PUBLIC_MODE,
                    )
                )
            self._publish_marker(
                marker,
                {
                    "algorithm": int(alg),
                    "algorithm_name": algorithm_name(alg),
                    "ksk": pair.ksk.identifier,
                    "zsk": pair.zsk.identifier,
                    "created": pair.created.isoformat(),
                },
            )
        except BaseException:
            for path in written:
                with contextlib.suppress(FileNotFoundError):
                    path.unlink()
            raise

        logger.info(
            "Installed %s key pair (KSK %d, ZSK %d) in %s",
            algorithm_name(alg),
            pair.ksk.key_tag,
            pair.zsk.key_tag,
            self.key_dir,
        )

    def active_algorithms(self) -> List[dns.dnssec.Algorithm]:
        if not self.key_dir.is_dir():
            return []
        out: List[dns.dnssec.Algorithm] = []
        for marker in sorted(self.key_dir.glob("*.json")):
            try:
                out.append(parse_algorithm(marker.stem))
            except ValueError:
                continue
        return out

    @contextlib.contextmanager
    def locked(self, algorithm: AlgorithmLike) -> Iterator[None]:
        self._ensure_dir()
        lock_path = self.key_dir / f".{algorithm_name(parse_algorithm(algorithm))}.lock"
        fd = os.open(lock_path, os.O_RDWR | os.O_CREAT, _PRIVATE_MODE)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)

    def _ensure_dir(self) -> None:
        try:
            self.key_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        except PermissionError as exc:
            raise PermissionDenied(f"Cannot create key directory {self.key_dir}: {exc}") from exc

    def _create_file(self, path: Path, data: bytes, mode: int) -> Path:
        """Brief: Exclusively create ``path`` with ``mode`` and durable contents.

        Inputs:
          - path: Target path; must not exist.
          - data: File contents.
          - mode: Permission bits; owner-only modes are verified after fchmod.

        Outputs:
          - The created path.

        Raises:
          - PermissionDenied: when the file cannot be created or restricted.
          - KeyGenerationFailure: when a key file with this name already exists.
        """

        try:
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, mode)
        except FileExistsError as exc:
            raise KeyGenerationFailure(f"Key file {path} already exists") from exc
        except PermissionError as exc:
            raise PermissionDenied(f"Cannot create {path}: {exc}") from exc

        try:
            with os.fdopen(fd, "wb") as f:
                try:
                    os.fchmod(f.fileno(), mode)
                except OSError as exc:
                    raise PermissionDenied(f"Cannot set mode {mode:o} on {path}: {exc}") from exc
                if mode == _PRIVATE_MODE and os.fstat(f.fileno()).st_mode & 0o077:
                    raise PermissionDenied(f"Filesystem did not honour owner-only mode on {path}")
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
        except BaseException:
            with contextlib.suppress(FileNotFoundError):
                path.unlink()
            raise
        return path

    def _publish_marker(self, marker: Path, record: dict) -> None:
        fd, tmp = tempfile.mkstemp(prefix=".marker-", suffix=".tmp", dir=self.key_dir)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(record, f, indent=2, sort_keys=True)
                f.write("\n")
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp, _PUBLIC_MODE)
            try:
                # link() refuses to replace an existing marker.
                os.link(tmp, marker)
            except FileExistsError as exc:
                raise AlreadyExists(
                    f"An active key pair was recorded concurrently in {marker}"
                ) from exc
        finally:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp)

        dir_fd = os.open(self.key_dir, os.O_RDONLY)
        try:
            os.fsync(dir_fd)
        finally:
            os.close(dir_fd)

    def _load_key(self, identifier: str, role: str, algorithm: dns.dnssec.Algorithm) -> SigningKey:
        private_path = self.key_dir / f"{identifier}.private"
        public_path = self.key_dir / f"{identifier}.key"

        self._restrict(private_path)
        try:
            pem = private_path.read_bytes()
            public_text = public_path.read_text(encoding="ascii").strip()
        except FileNotFoundError as exc:
            raise KeyStoreCorrupt(f"Key file missing for {identifier}: {exc}") from exc
        except PermissionError as exc:
            raise PermissionDenied(f"Cannot read key {identifier}: {exc}") from exc

        try:
            private_key = serialization.load_pem_private_key(pem, password=None)
            stored_dnskey = dns.rdata.from_text(
                dns.rdataclass.IN, dns.rdatatype.DNSKEY, public_text
            )
        except (ValueError, TypeError, dns.exception.DNSException) as exc:
            raise KeyStoreCorrupt(f"Unreadable key material for {identifier}: {exc}") from exc

        key = SigningKey.from_private_key(private_key, algorithm, role, private_pem=pem)
        if key.identifier != identifier or key.dnskey != stored_dnskey:
            raise KeyStoreCorrupt(
                f"Key material for {identifier} does not match its public key"
            )
        return key

    def _restrict(self, path: Path) -> None:
        try:
            mode = os.stat(path).st_mode
        except FileNotFoundError as exc:
            raise KeyStoreCorrupt(f"Private key file {path} is missing") from exc

        if not mode & 0o077:
            return
        logger.warning("Private key %s is group/world accessible; restricting to 0600", path)
        try:
            os.chmod(path, _PRIVATE_MODE)
            mode = os.stat(path).st_mode
        except OSError as exc:
            raise PermissionDenied(f"Cannot restrict permissions on {path}: {exc}") from exc
        if mode & 0o077:
            raise PermissionDenied(f"Cannot restrict permissions on {path}")
