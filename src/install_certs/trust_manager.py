"""Chain-capturing trust manager and the path validator it delegates to."""

import logging
from datetime import datetime
from typing import List, Optional, Sequence

from cryptography.x509.verification import ExtensionPolicy, PolicyBuilder, Store, VerificationError

from install_certs.certificate import Certificate
from install_certs.exceptions import UntrustedChainError
from install_certs.truststore import TrustStore

logger = logging.getLogger(__name__)


class PathValidator:
    """
    RFC 5280 path validation of a server chain against a trust store.

    Only the path is checked: issuing CAs must satisfy the CA profile, the
    leaf's extensions and names are not constrained and never matched
    against host.
    """

    def __init__(self, trust_store: TrustStore, host: str, validation_time: Optional[datetime] = None):
        self.host = host
        self._validation_time = validation_time
        anchors = [cert.x509_cert for cert in trust_store.certificates()]
        self._store: Optional[Store] = Store(anchors) if anchors else None

    def validate(self, chain: Sequence[Certificate]) -> None:
        """
        Raises:
            UntrustedChainError: If no valid path to an anchor of the store exists
        """
        if not chain:
            raise UntrustedChainError("Server presented no certificates")
        if self._store is None:
            raise UntrustedChainError("Trust store is empty", chain_length=len(chain))

        builder = (
            PolicyBuilder()
            .store(self._store)
            .extension_policies(
                ca_policy=ExtensionPolicy.webpki_defaults_ca(),
                ee_policy=ExtensionPolicy.permit_all(),
            )
        )
        if self._validation_time is not None:
            builder = builder.time(self._validation_time)
        try:
            # The client verifier does no subject name matching
            verifier = builder.build_client_verifier()
            verifier.verify(chain[0].x509_cert, [cert.x509_cert for cert in chain[1:]])
        except (VerificationError, ValueError) as e:
            raise UntrustedChainError(
                f"Certificate chain of {self.host} is not trusted: {e}", chain_length=len(chain)
            ) from e


class ChainCapturingTrustManager:
    """
    Records the chain of every server it is asked about.

    With validate_chain the decision is delegated to the validator, otherwise
    every chain is accepted so the handshake can complete just to observe what
    the peer presents. Use one instance per handshake.
    """

    def __init__(self, validator: PathValidator, validate_chain: bool = True):
        self.validator = validator
        self.validate_chain = validate_chain
        self._chain: List[Certificate] = []

    @classmethod
    def for_store(cls, trust_store: TrustStore, host: str, validate_chain: bool = True) -> "ChainCapturingTrustManager":
        return cls(PathValidator(trust_store, host), validate_chain=validate_chain)

    @property
    def chain(self) -> List[Certificate]:
        """Last captured chain, leaf first. Empty until a chain was checked."""
        return list(self._chain)

    def check_server_trusted(self, chain: Sequence[Certificate], auth_type: str) -> None:
        """
        Capture chain, then accept or reject it.

        Raises:
            UntrustedChainError: If validate_chain is set and the validator rejects
        """
        self._chain = list(chain)
        logger.debug(f"Captured {len(self._chain)} certificate(s) (auth type {auth_type})")
        if not self.validate_chain:
            return
        self.validator.validate(self._chain)
