"""Network operations for TLS connections."""

import logging
import socket
import ssl
import time
from typing import List, Optional

from install_certs.certificate import Certificate
from install_certs.exceptions import CertificateParseError, ConnectFailure, UntrustedChainError
from install_certs.models import FailureKind, ProbeResult
from install_certs.trust_manager import ChainCapturingTrustManager

logger = logging.getLogger(__name__)

_KEY_EXCHANGE_TOKENS = {"ECDHE", "DHE", "ECDH", "DH", "RSA", "ECDSA", "DSS", "PSK"}


def _open_connection(host: str, port: int, timeout: float) -> socket.socket:
    """
    Resolve host and open a TCP connection.

    Raises:
        ConnectFailure: If resolution fails or no address accepts the connection
    """
    try:
        addr_info = socket.getaddrinfo(host, port, socket.AF_UNSPEC, socket.SOCK_STREAM)
    except socket.gaierror as e:
        raise ConnectFailure(f"DNS resolution failed for {host}: {e}", hostname=host, port=port) from e
    if not addr_info:
        raise ConnectFailure(f"Could not resolve {host}:{port}", hostname=host, port=port)

    # One deadline for all resolved addresses
    deadline = time.monotonic() + timeout
    last_error: Optional[OSError] = None
    for family, socktype, proto, _, addr in addr_info:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            last_error = socket.timeout("timed out")
            break
        sock = socket.socket(family, socktype, proto)
        sock.settimeout(remaining)
        try:
            sock.connect(addr)
            sock.settimeout(timeout)
            logger.debug(f"TCP connection established to {addr[0]}:{addr[1]}")
            return sock
        except socket.timeout as e:
            sock.close()
            last_error = e
            logger.debug(f"Connection to {addr[0]} timed out")
        except OSError as e:
            sock.close()
            last_error = e
            logger.debug(f"Connection to {addr[0]} failed: {e}")

    if isinstance(last_error, socket.timeout):
        raise ConnectFailure(f"Connection timeout after {timeout}s", hostname=host, port=port)
    raise ConnectFailure(f"Connection to {host}:{port} failed: {last_error}", hostname=host, port=port)


def _capture_context() -> ssl.SSLContext:
    """TLS client context that lets every certificate through to the trust manager."""
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


def _peer_chain_der(ssl_sock: ssl.SSLSocket) -> List[bytes]:
    """Certificates sent by the peer, leaf first, DER encoded."""
    # Python 3.13+
    if hasattr(ssl_sock, "get_unverified_chain"):
        chain = ssl_sock.get_unverified_chain() or []
    else:
        sslobj = getattr(ssl_sock, "_sslobj", None)
        chain = sslobj.get_unverified_chain() if sslobj is not None and hasattr(sslobj, "get_unverified_chain") else None
        if chain is None:
            # Only the leaf is available on this build
            leaf = ssl_sock.getpeercert(binary_form=True)
            return [leaf] if leaf else []
    return [cert if isinstance(cert, bytes) else cert.public_bytes(ssl._ssl.ENCODING_DER) for cert in chain]


def _auth_type(ssl_sock: ssl.SSLSocket) -> str:
    """Key exchange part of the negotiated cipher, e.g. ECDHE_RSA. TLS 1.3 does not encode it."""
    cipher = ssl_sock.cipher()
    if not cipher or ssl_sock.version() == "TLSv1.3":
        return "UNKNOWN"
    tokens = []
    for token in cipher[0].split("-"):
        if token not in _KEY_EXCHANGE_TOKENS:
            break
        tokens.append(token)
    return "_".join(tokens) or "RSA"


def _session_info(ssl_sock: ssl.SSLSocket, host: str, port: int) -> Optional[str]:
    cipher = ssl_sock.cipher()
    if not cipher:
        return None
    name, _, bits = cipher
    try:
        peer_ip = ssl_sock.getpeername()[0]
    except OSError:
        peer_ip = "?"
    return "\n".join([
        f"Protocol: {ssl_sock.version()}",
        f"Cipher Suite: {name} ({bits} bits)",
        f"Peer: {host}:{port} ({peer_ip})",
    ])


def probe(
    host: str,
    port: int,
    trust_manager: ChainCapturingTrustManager,
    timeout: float = 5.0,
    strict: bool = True,
) -> ProbeResult:
    """
    Connect to host:port and perform one TLS handshake.

    The handshake always runs to completion at the transport level; the peer
    chain is then handed to trust_manager, whose decision makes the result
    valid or not. Errors are reported in the result, never raised.

    Args:
        host: Target hostname (DNS resolution and SNI)
        port: Target port
        trust_manager: Fresh manager for this probe
        timeout: Connect and handshake timeout in seconds
        strict: Verification pass (True) or chain capture pass (False), for logging

    Returns:
        ProbeResult with the captured chain and session info
    """
    pass_name = "verification" if strict else "chain capture"
    logger.info(f"Opening connection to {host}:{port} ({pass_name} pass)...")

    try:
        sock = _open_connection(host, port, timeout)
    except ConnectFailure as e:
        logger.warning(str(e))
        return ProbeResult(valid=False, failure=FailureKind.CONNECT, error=str(e))

    ssl_sock: Optional[ssl.SSLSocket] = None
    session_info: Optional[str] = None
    try:
        logger.debug("Starting TLS handshake...")
        ssl_sock = _capture_context().wrap_socket(sock, server_hostname=host, do_handshake_on_connect=False)
        ssl_sock.do_handshake()
        session_info = _session_info(ssl_sock, host, port)
        logger.debug(f"TLS handshake completed: {ssl_sock.version()} {ssl_sock.cipher()}")

        chain = [Certificate.from_der(der) for der in _peer_chain_der(ssl_sock)]
        trust_manager.check_server_trusted(chain, _auth_type(ssl_sock))
    except UntrustedChainError as e:
        logger.info(str(e))
        return ProbeResult(
            valid=False,
            chain=trust_manager.chain,
            session_info=session_info,
            failure=FailureKind.UNTRUSTED,
            error=str(e),
        )
    except socket.timeout:
        logger.warning(f"TLS handshake timed out after {timeout}s")
        return ProbeResult(
            valid=False,
            chain=trust_manager.chain,
            session_info=session_info,
            failure=FailureKind.HANDSHAKE,
            error=f"TLS handshake timeout after {timeout}s",
        )
    except (ssl.SSLError, OSError, CertificateParseError) as e:
        logger.warning(f"TLS handshake failed: {e}")
        logger.debug("Handshake error details", exc_info=True)
        return ProbeResult(
            valid=False,
            chain=trust_manager.chain,
            session_info=session_info,
            failure=FailureKind.HANDSHAKE,
            error=f"TLS handshake failed: {e}",
        )
    finally:
        # wrap_socket() detaches sock, closing ssl_sock releases the descriptor
        try:
            (ssl_sock if ssl_sock is not None else sock).close()
        except OSError:
            pass

    return ProbeResult(valid=True, chain=trust_manager.chain, session_info=session_info)
