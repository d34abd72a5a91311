"""Structured exception taxonomy for trust store installation."""

from pathlib import Path
from typing import Optional


class InstallCertsError(Exception):
    """Base exception for all install-certs errors."""

    pass


class NetworkError(InstallCertsError):
    """Network-related errors (connection, timeout, DNS, handshake)."""

    def __init__(self, message: str, hostname: Optional[str] = None, port: Optional[int] = None):
        super().__init__(message)
        self.hostname = hostname
        self.port = port


class ConnectFailure(NetworkError):
    """TCP connection could not be established or timed out."""

    pass


class TrustError(InstallCertsError):
    """Certificate trust errors."""

    pass


class UntrustedChainError(TrustError):
    """The path validator rejected the chain presented by the peer."""

    def __init__(self, message: str, chain_length: int = 0):
        super().__init__(message)
        self.chain_length = chain_length


class TrustStoreError(InstallCertsError):
    """Error loading or writing a trust store."""

    def __init__(self, message: str, path: Optional[Path] = None):
        super().__init__(message)
        self.path = path


class PersistenceError(TrustStoreError):
    """Writing or reading the PKCS#12 file failed."""

    pass


class CertificateError(InstallCertsError):
    """Certificate parsing errors."""

    pass


class CertificateParseError(CertificateError):
    """Error parsing certificate (DER/PEM)."""

    pass
