"""Certificate parsing and formatting."""

import logging
import re
import warnings
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.utils import CryptographyDeprecationWarning
from cryptography.x509.oid import NameOID

from install_certs.exceptions import CertificateParseError

logger = logging.getLogger(__name__)

_PEM_PATTERN = re.compile(rb"-----BEGIN CERTIFICATE-----(.*?)-----END CERTIFICATE-----", re.DOTALL)


def _fingerprint(cert: x509.Certificate, algorithm: hashes.HashAlgorithm) -> str:
    return ":".join(f"{b:02X}" for b in cert.fingerprint(algorithm))


@dataclass(frozen=True)
class Certificate:
    """An X.509 certificate; two certificates are equal when their DER encodings are."""

    der: bytes
    x509_cert: x509.Certificate = field(compare=False, repr=False)

    @classmethod
    def from_der(cls, der: bytes) -> "Certificate":
        try:
            # Some servers still present certificates with non-positive serials
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", CryptographyDeprecationWarning)
                cert = x509.load_der_x509_certificate(der)
        except ValueError as e:
            raise CertificateParseError(f"Invalid DER certificate: {e}") from e
        return cls(bytes(der), cert)

    @classmethod
    def from_pem(cls, pem: bytes) -> "Certificate":
        try:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", CryptographyDeprecationWarning)
                cert = x509.load_pem_x509_certificate(pem)
        except ValueError as e:
            raise CertificateParseError(f"Invalid PEM certificate: {e}") from e
        return cls(cert.public_bytes(serialization.Encoding.DER), cert)

    @classmethod
    def from_x509(cls, cert: x509.Certificate) -> "Certificate":
        return cls(cert.public_bytes(serialization.Encoding.DER), cert)

    @property
    def subject(self) -> str:
        return self.x509_cert.subject.rfc4514_string()

    @property
    def issuer(self) -> str:
        return self.x509_cert.issuer.rfc4514_string()

    @property
    def common_name(self) -> Optional[str]:
        """First CN attribute of the subject, None if the subject has none."""
        attrs = self.x509_cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
        if not attrs:
            return None
        value = attrs[0].value
        return value.decode("utf-8", errors="replace") if isinstance(value, bytes) else value

    @property
    def serial_number(self) -> str:
        return format(self.x509_cert.serial_number, "X")

    @property
    def not_before(self) -> datetime:
        return self.x509_cert.not_valid_before_utc

    @property
    def not_after(self) -> datetime:
        return self.x509_cert.not_valid_after_utc

    @property
    def fingerprint_sha256(self) -> str:
        return _fingerprint(self.x509_cert, hashes.SHA256())

    @property
    def fingerprint_sha1(self) -> str:
        return _fingerprint(self.x509_cert, hashes.SHA1())

    @property
    def san_dns_names(self) -> List[str]:
        try:
            san = self.x509_cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
        except x509.ExtensionNotFound:
            return []
        return san.value.get_values_for_type(x509.DNSName)

    @property
    def is_ca(self) -> bool:
        try:
            bc = self.x509_cert.extensions.get_extension_for_class(x509.BasicConstraints)
        except x509.ExtensionNotFound:
            return False
        return bc.value.ca

    def is_self_signed(self) -> bool:
        """True if subject equals issuer and the signature verifies with its own key."""
        if self.x509_cert.subject != self.x509_cert.issuer:
            return False
        try:
            self.x509_cert.verify_directly_issued_by(self.x509_cert)
        except (ValueError, TypeError, InvalidSignature):
            return False
        return True

    def to_pem(self) -> bytes:
        return self.x509_cert.public_bytes(serialization.Encoding.PEM)

    def info(self) -> str:
        """Short multi-line summary used when listing a chain."""
        lines = [
            f"Subject: {self.subject}",
            f"Issuer: {self.issuer}" + (" (self-signed)" if self.is_self_signed() else ""),
            f"Serial Number: {self.serial_number}",
            f"Valid: {self.not_before:%Y-%m-%d %H:%M:%S} UTC - {self.not_after:%Y-%m-%d %H:%M:%S} UTC",
            f"SHA-256: {self.fingerprint_sha256}",
        ]
        if self.san_dns_names:
            lines.append(f"SAN: {', '.join(self.san_dns_names)}")
        return "\n".join(lines)

    def details(self) -> str:
        """Verbose summary including SHA-1 fingerprint and extensions."""
        lines = [self.info(), f"SHA-1: {self.fingerprint_sha1}", f"CA: {self.is_ca}"]
        for ext in self.x509_cert.extensions:
            critical = " (critical)" if ext.critical else ""
            lines.append(f"Extension {ext.oid._name}{critical}: {ext.value}")
        return "\n".join(lines)


def split_pem_certificates(data: bytes) -> List[bytes]:
    """Split PEM data into individual certificate blocks."""
    return [
        b"-----BEGIN CERTIFICATE-----" + match + b"-----END CERTIFICATE-----\n"
        for match in _PEM_PATTERN.findall(data)
    ]


def load_pem_bundle(data: bytes) -> List[Certificate]:
    """Parse every certificate of a PEM bundle, skipping blocks that fail to parse."""
    certs: List[Certificate] = []
    for block in split_pem_certificates(data):
        try:
            certs.append(Certificate.from_pem(block))
        except CertificateParseError as e:
            logger.debug(f"Skipping unparsable certificate in bundle: {e}")
    return certs
