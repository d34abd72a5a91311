"""Trust store assembly, filtering and PKCS#12 persistence."""

import logging
import os
import re
import ssl
from functools import lru_cache
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Union

import certifi
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.serialization import pkcs12

from install_certs.certificate import Certificate, load_pem_bundle
from install_certs.exceptions import PersistenceError, TrustStoreError

logger = logging.getLogger(__name__)

DEFAULT_ALIAS_SUFFIX = " [default]"


def _default_bundle_paths() -> List[Path]:
    """certifi bundle first, then the OpenSSL default CA file if there is one."""
    paths = [Path(certifi.where())]
    cafile = ssl.get_default_verify_paths().cafile
    if cafile and os.path.exists(cafile) and Path(cafile).resolve() != paths[0].resolve():
        paths.append(Path(cafile))
    return paths


@lru_cache(maxsize=1)
def _load_default_certificates() -> Tuple[Certificate, ...]:
    seen = set()
    certs: List[Certificate] = []
    for path in _default_bundle_paths():
        try:
            bundle = load_pem_bundle(path.read_bytes())
        except OSError as e:
            logger.warning(f"Could not read CA bundle {path}: {e}")
            continue
        for cert in bundle:
            if cert.der not in seen:
                seen.add(cert.der)
                certs.append(cert)
        logger.debug(f"Loaded {len(bundle)} certificate(s) from {path}")
    return tuple(certs)


def _alias_base(cert: Certificate) -> str:
    name = cert.common_name or cert.subject or cert.fingerprint_sha256[:23]
    return name.lower().replace(" ", "")


def host_alias_pattern(host: str) -> str:
    """Regex matching the aliases add_entries() assigns for host."""
    return re.escape(host) + r"-\d+"


class TrustStore:
    """Ordered mapping of alias to certificate."""

    def __init__(self, entries: Optional[Dict[str, Certificate]] = None):
        self._entries: Dict[str, Certificate] = dict(entries or {})

    @classmethod
    def from_defaults(cls) -> "TrustStore":
        """
        New store holding the platform default certificate authorities.

        The parsed bundle is cached, the returned store is always a fresh copy.
        """
        store = cls()
        for cert in _load_default_certificates():
            base = _alias_base(cert)
            alias = base + DEFAULT_ALIAS_SUFFIX
            n = 2
            while alias in store:
                alias = f"{base}-{n}{DEFAULT_ALIAS_SUFFIX}"
                n += 1
            store.set_entry(alias, cert)
        logger.debug(f"Default trust store contains {len(store)} certificate(s)")
        return store

    @classmethod
    def load(cls, path: Path, password: str) -> "TrustStore":
        """Load a PKCS#12 trust store written by save()."""
        path = Path(path)
        try:
            data = path.read_bytes()
        except OSError as e:
            raise PersistenceError(f"Cannot read trust store: {e}", path=path) from e
        try:
            bundle = pkcs12.load_pkcs12(data, password.encode() if password else None)
        except ValueError as e:
            raise PersistenceError(f"Invalid PKCS#12 file or wrong password: {e}", path=path) from e

        store = cls()
        bags = ([bundle.cert] if bundle.cert else []) + list(bundle.additional_certs)
        for idx, bag in enumerate(bags, 1):
            cert = Certificate.from_x509(bag.certificate)
            alias = bag.friendly_name.decode("utf-8") if bag.friendly_name else f"{_alias_base(cert)}-{idx}"
            store.set_entry(alias, cert)
        return store

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, alias: object) -> bool:
        return alias in self._entries

    def __iter__(self) -> Iterator[Tuple[str, Certificate]]:
        return iter(list(self._entries.items()))

    def aliases(self) -> List[str]:
        return list(self._entries)

    def certificates(self) -> List[Certificate]:
        return list(self._entries.values())

    def get(self, alias: str) -> Optional[Certificate]:
        return self._entries.get(alias)

    def set_entry(self, alias: str, cert: Certificate) -> None:
        self._entries[alias] = cert

    def copy(self) -> "TrustStore":
        return TrustStore(self._entries)

    def add_entries(self, chain: Sequence[Certificate], host: str) -> List[Tuple[str, Certificate]]:
        """
        Add the issuers of a captured chain under the aliases <host>-1..<host>-N.

        Certificates whose subject CN equals host are skipped. Numbering runs in
        reverse chain order, so the root-most certificate becomes <host>-1.

        Args:
            chain: Certificates as presented by the peer, leaf first
            host: Target hostname

        Returns:
            List of (alias, certificate) that were added
        """
        issuers = [cert for cert in chain if cert.common_name != host]
        added: List[Tuple[str, Certificate]] = []
        for idx, cert in enumerate(reversed(issuers), 1):
            alias = f"{host}-{idx}"
            self.set_entry(alias, cert)
            added.append((alias, cert))
        return added

    def filter(self, pattern: Union[str, "re.Pattern[str]"]) -> "TrustStore":
        """Copy holding only the entries whose alias fully matches pattern."""
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        return TrustStore({alias: cert for alias, cert in self._entries.items() if regex.fullmatch(alias)})

    def to_portable(self, alias_filter: Optional[Union[str, "re.Pattern[str]"]] = None) -> "TrustStore":
        """
        Copy of this store ready to be saved.

        With alias_filter only matching entries are kept. Passing
        host_alias_pattern(host) therefore drops the default CAs and keeps the
        certificates captured for host.
        """
        if alias_filter is None:
            return self.copy()
        return self.filter(alias_filter)

    def to_pkcs12(self, password: str) -> bytes:
        """Serialize as PKCS#12 with one certificate bag per entry, alias as friendly name."""
        if not self._entries:
            raise TrustStoreError("Cannot serialize an empty trust store")

        cas = [
            pkcs12.PKCS12Certificate(cert.x509_cert, alias.encode("utf-8"))
            for alias, cert in self._entries.items()
        ]
        if password:
            encryption = (
                serialization.PrivateFormat.PKCS12.encryption_builder()
                .kdf_rounds(50000)
                .key_cert_algorithm(pkcs12.PBES.PBESv2SHA256AndAES256CBC)
                .hmac_hash(hashes.SHA256())
                .build(password.encode("utf-8"))
            )
        else:
            encryption = serialization.NoEncryption()
        return pkcs12.serialize_key_and_certificates(
            name=None, key=None, cert=None, cas=cas, encryption_algorithm=encryption
        )

    def save(self, path: Path, password: str) -> int:
        """
        Write the store to path.

        Returns:
            Number of bytes written

        Raises:
            PersistenceError: If the file cannot be written
        """
        path = Path(path)
        data = self.to_pkcs12(password)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            raise PersistenceError(f"Cannot write trust store: {e}", path=path) from e
        logger.debug(f"Wrote {len(data)} bytes ({len(self)} entries) to {path}")
        return len(data)
