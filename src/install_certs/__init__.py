"""Build a PKCS12 trust store for TLS servers that are not trusted yet."""

__version__ = "0.1.0"
