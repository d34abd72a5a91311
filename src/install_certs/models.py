"""Data models for probe and installation results."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

from install_certs.certificate import Certificate


class FailureKind(str, Enum):
    """Why a probe did not produce a trusted session."""

    CONNECT = "CONNECT"
    HANDSHAKE = "HANDSHAKE"
    UNTRUSTED = "UNTRUSTED"


class InstallStatus(str, Enum):
    """Terminal outcome of an installation run."""

    SAVED = "SAVED"
    ALREADY_TRUSTED = "ALREADY_TRUSTED"
    PRINTED = "PRINTED"
    NO_CHAIN = "NO_CHAIN"
    REVERIFICATION_FAILED = "REVERIFICATION_FAILED"
    PERSISTENCE_FAILED = "PERSISTENCE_FAILED"
    ABORTED = "ABORTED"

    @property
    def succeeded(self) -> bool:
        return self in (InstallStatus.SAVED, InstallStatus.ALREADY_TRUSTED, InstallStatus.PRINTED)

    @property
    def exit_code(self) -> int:
        """Process exit code for this outcome."""
        return _EXIT_CODES[self]


_EXIT_CODES = {
    InstallStatus.SAVED: 0,
    InstallStatus.ALREADY_TRUSTED: 0,
    InstallStatus.PRINTED: 0,
    InstallStatus.REVERIFICATION_FAILED: 1,
    InstallStatus.PERSISTENCE_FAILED: 1,
    InstallStatus.NO_CHAIN: 2,
    InstallStatus.ABORTED: 3,
}


@dataclass
class ProbeResult:
    """Result of a single connect + handshake attempt."""

    valid: bool
    chain: List[Certificate] = field(default_factory=list)  # Leaf first, as presented by the peer
    session_info: Optional[str] = None  # Only set if a TLS session was established
    failure: Optional[FailureKind] = None
    error: Optional[str] = None


@dataclass
class InstallConfig:
    """Options for one installation run."""

    host: str
    port: int = 443
    store_password: str = "changeit"
    timeout: float = 5.0  # Seconds, used for connect and handshake
    print_only: bool = False
    exclude_default_cas: bool = False
    verbose: bool = False
    debug: bool = False
    output_dir: Path = field(default_factory=Path.cwd)

    def __post_init__(self) -> None:
        self.host = self.host.strip()
        if not self.host:
            raise ValueError("Host must not be empty")
        if not 1 <= self.port <= 65535:
            raise ValueError(f"Port out of range: {self.port}")
        if self.timeout <= 0:
            raise ValueError(f"Timeout must be positive: {self.timeout}")
        self.output_dir = Path(self.output_dir)

    @property
    def store_path(self) -> Path:
        """Destination file, e.g. example_internal.p12 for example.internal."""
        return self.output_dir / (self.host.replace(".", "_") + ".p12")


@dataclass
class InstallResult:
    """Overall result of an installation run."""

    status: InstallStatus
    message: str
    chain: List[Certificate] = field(default_factory=list)
    session_info: Optional[str] = None
    added_aliases: List[str] = field(default_factory=list)
    store_path: Optional[Path] = None
    store_size: Optional[int] = None  # Bytes written
    default_cas_included: bool = True
