"""Shared fixtures: a throw-away PKI and a loopback TLS server."""

import ipaddress
import socket
import ssl
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from install_certs.certificate import Certificate


def _name(cn: str) -> x509.Name:
    return x509.Name([
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, "install-certs tests"),
        x509.NameAttribute(NameOID.COMMON_NAME, cn),
    ])


def _key_usage(ca: bool) -> x509.KeyUsage:
    return x509.KeyUsage(
        digital_signature=not ca,
        content_commitment=False,
        key_encipherment=False,
        data_encipherment=False,
        key_agreement=False,
        key_cert_sign=ca,
        crl_sign=ca,
        encipher_only=False,
        decipher_only=False,
    )


def _build(subject_cn, issuer_cn, public_key, issuer_key, issuer_public_key, ca, path_length=None, san=None, server_auth=False):
    now = datetime.now(timezone.utc)
    builder = (
        x509.CertificateBuilder()
        .subject_name(_name(subject_cn))
        .issuer_name(_name(issuer_cn))
        .public_key(public_key)
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=365))
        .add_extension(x509.BasicConstraints(ca=ca, path_length=path_length), critical=True)
        .add_extension(_key_usage(ca), critical=True)
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(public_key), critical=False)
        .add_extension(x509.AuthorityKeyIdentifier.from_issuer_public_key(issuer_public_key), critical=False)
    )
    if san is not None:
        builder = builder.add_extension(x509.SubjectAlternativeName(san), critical=False)
    if server_auth:
        builder = builder.add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
    return Certificate.from_x509(builder.sign(issuer_key, hashes.SHA256()))


_MATCH_HOST = object()


@dataclass
class Pki:
    """Root CA -> intermediate CA -> server certificate for host."""

    host: str
    root: Certificate
    intermediate: Certificate
    leaf: Certificate
    leaf_key: ec.EllipticCurvePrivateKey

    @property
    def chain(self) -> List[Certificate]:
        return [self.leaf, self.intermediate, self.root]


def make_pki(host: str, root_cn: str = "Test Root CA", leaf_san=_MATCH_HOST, server_auth: bool = True) -> Pki:
    """
    Build a fresh PKI for host.

    leaf_san defaults to a SAN matching host. Pass None for a CN-only leaf or a
    list of general names for any other shape.
    """
    root_key = ec.generate_private_key(ec.SECP256R1())
    intermediate_key = ec.generate_private_key(ec.SECP256R1())
    leaf_key = ec.generate_private_key(ec.SECP256R1())

    if leaf_san is _MATCH_HOST:
        try:
            leaf_san = [x509.IPAddress(ipaddress.ip_address(host))]
        except ValueError:
            leaf_san = [x509.DNSName(host)]

    root = _build(root_cn, root_cn, root_key.public_key(), root_key, root_key.public_key(), ca=True)
    intermediate = _build(
        "Test Intermediate CA", root_cn, intermediate_key.public_key(), root_key, root_key.public_key(),
        ca=True, path_length=0,
    )
    leaf = _build(
        host, "Test Intermediate CA", leaf_key.public_key(), intermediate_key, intermediate_key.public_key(),
        ca=False, san=leaf_san, server_auth=server_auth,
    )
    return Pki(host=host, root=root, intermediate=intermediate, leaf=leaf, leaf_key=leaf_key)


@pytest.fixture(scope="session")
def pki() -> Pki:
    return make_pki("example.internal")


@pytest.fixture(scope="session")
def other_pki() -> Pki:
    return make_pki("example.internal", root_cn="Other Root CA")


@pytest.fixture(scope="session")
def loopback_pki() -> Pki:
    return make_pki("127.0.0.1")


@pytest.fixture(scope="session")
def cn_only_pki() -> Pki:
    """Internal PKI whose leaf has neither SAN nor extended key usage."""
    return make_pki("example.internal", root_cn="Corp Root CA", leaf_san=None, server_auth=False)


@pytest.fixture(scope="session")
def mismatched_pki() -> Pki:
    return make_pki("example.internal", root_cn="Corp Root CA", leaf_san=[x509.DNSName("other.internal")])


@pytest.fixture(scope="session")
def dns_named_loopback_pki() -> Pki:
    """Loopback leaf that only names localhost, reached by IP address."""
    return make_pki("127.0.0.1", leaf_san=[x509.DNSName("localhost")])


class TLSServer:
    """Minimal TLS server on 127.0.0.1 that completes handshakes and hangs up."""

    def __init__(self, certfile, keyfile):
        self.context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        self.context.load_cert_chain(str(certfile), str(keyfile))
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.listen(5)
        self.sock.settimeout(0.2)
        self.port = self.sock.getsockname()[1]
        self.handshakes = 0
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._serve, daemon=True)

    def _serve(self):
        while not self._stop.is_set():
            try:
                conn, _ = self.sock.accept()
            except socket.timeout:
                continue
            except OSError:
                break
            conn.settimeout(5)
            try:
                with self.context.wrap_socket(conn, server_side=True):
                    self.handshakes += 1
            except (ssl.SSLError, OSError):
                conn.close()

    def __enter__(self):
        self._thread.start()
        return self

    def __exit__(self, *exc):
        self._stop.set()
        self._thread.join(timeout=5)
        self.sock.close()


def _serve(tmp_path, pki: Pki) -> TLSServer:
    certfile = tmp_path / "server-chain.pem"
    keyfile = tmp_path / "server-key.pem"
    certfile.write_bytes(b"".join(cert.to_pem() for cert in pki.chain))
    keyfile.write_bytes(
        pki.leaf_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )
    return TLSServer(certfile, keyfile)


@pytest.fixture
def tls_server(tmp_path, loopback_pki):
    """Loopback server presenting leaf, intermediate and root."""
    with _serve(tmp_path, loopback_pki) as server:
        yield server


@pytest.fixture
def dns_named_tls_server(tmp_path, dns_named_loopback_pki):
    with _serve(tmp_path, dns_named_loopback_pki) as server:
        yield server


@pytest.fixture
def silent_server():
    """Listener whose connections complete at TCP level but never answer."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    sock.listen(5)
    yield sock.getsockname()[1]
    sock.close()


@pytest.fixture
def closed_port():
    """A port nothing listens on."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port
