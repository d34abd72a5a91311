"""CLI entry point using Typer."""

import logging
import sys
from pathlib import Path
from typing import Optional, Tuple
from urllib.parse import urlparse

import typer

from install_certs.exceptions import TrustStoreError
from install_certs.installer import install_certs
from install_certs.models import InstallConfig
from install_certs.reporter import format_chain, generate_text_report, set_color_output
from install_certs.truststore import TrustStore

app = typer.Typer(help="Create a PKCS12 trust store for a TLS server from the certificates it presents")

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s: %(message)s",
)

logger = logging.getLogger(__name__)


def parse_target(target: str, port: int) -> Tuple[str, int]:
    """
    Split HOST, HOST:PORT, [IPv6]:PORT or an https:// URL into host and port.

    Raises:
        typer.BadParameter: If the port part is not a number
    """
    if "://" in target:
        parsed = urlparse(target)
        try:
            return parsed.hostname or target, parsed.port or port
        except ValueError as e:
            raise typer.BadParameter(f"Invalid URL: {target} ({e})")

    host, port_part = target, None
    if target.startswith("["):
        host, _, rest = target[1:].partition("]")
        port_part = rest[1:] if rest.startswith(":") else None
    elif target.count(":") == 1:
        host, _, port_part = target.partition(":")

    if port_part:
        if not port_part.isdigit():
            raise typer.BadParameter(f"Invalid port in {target}")
        port = int(port_part)
    return host, port


def _configure_logging(verbose: bool, debug: bool) -> None:
    if debug:
        root = logging.getLogger()
        root.setLevel(logging.DEBUG)
        for handler in root.handlers:
            handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        logger.warning("Enabling TLS debug tracing...")
    elif verbose:
        logging.getLogger("install_certs").setLevel(logging.DEBUG)


def _confirm_overwrite(path: Path) -> bool:
    return typer.confirm(f" {path} file exists. Do you want to overwrite it?", default=False)


@app.command()
def install(
    target: str = typer.Argument(..., help="Host, host:port or URL (e.g., example.internal:8443)"),
    port: int = typer.Option(443, "--port", "-p", help="Port (default: 443)"),
    storepass: str = typer.Option("changeit", "--storepass", "-s", help="Trust store password"),
    timeout: float = typer.Option(5.0, "--timeout", "-t", help="Connect and handshake timeout in seconds"),
    print_only: bool = typer.Option(False, "--all", "-a", help="Only print the server certificate chain and TLS session"),
    no_default_cas: bool = typer.Option(False, "--no-default-cas", help="Exclude the default CA certificates from the trust store"),
    output_dir: Path = typer.Option(Path("."), "--output-dir", "-o", help="Directory for the .p12 file"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Overwrite an existing trust store without asking"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging and full certificate details"),
    debug: bool = typer.Option(False, "--debug", help="Trace everything, including TLS handshake details"),
    color: bool = typer.Option(True, "--color/--no-color", help="Enable/disable colored output"),
):
    """
    Retrieve the certificate chain of a TLS server and save it as a PKCS12 trust store.
    """
    set_color_output(color)
    _configure_logging(verbose, debug)

    host, port = parse_target(target, port)
    try:
        config = InstallConfig(
            host=host,
            port=port,
            store_password=storepass,
            timeout=timeout,
            print_only=print_only,
            exclude_default_cas=no_default_cas,
            verbose=verbose or debug,
            debug=debug,
            output_dir=output_dir,
        )
    except ValueError as e:
        raise typer.BadParameter(str(e))

    confirm = (lambda path: True) if yes else _confirm_overwrite
    try:
        result = install_certs(config, confirm_overwrite=confirm)
    except Exception as e:
        logger.error(f"{e}\nSee 'install-certs --help'")
        if config.verbose:
            logger.exception("Unexpected error")
        sys.exit(1)

    print(generate_text_report(result, verbose=config.verbose))
    sys.exit(result.status.exit_code)


@app.command("list")
def list_entries(
    store: Path = typer.Argument(..., exists=True, dir_okay=False, help="PKCS12 trust store"),
    storepass: str = typer.Option("changeit", "--storepass", "-s", help="Trust store password"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show certificate details"),
    color: bool = typer.Option(True, "--color/--no-color", help="Enable/disable colored output"),
    alias_filter: Optional[str] = typer.Option(None, "--alias", help="Only show aliases matching this regex"),
):
    """
    List the entries of a trust store written by install.
    """
    set_color_output(color)
    try:
        trust_store = TrustStore.load(store, storepass)
    except TrustStoreError as e:
        logger.error(str(e))
        sys.exit(1)

    if alias_filter:
        trust_store = trust_store.filter(alias_filter)

    print(f"Trust store {store} contains {len(trust_store)} entr{'y' if len(trust_store) == 1 else 'ies'}")
    for alias, cert in trust_store:
        print(f"\n{alias}")
        if verbose:
            print(format_chain([cert], verbose=True))
        else:
            print(f"  {cert.subject} ({cert.fingerprint_sha256})")


if __name__ == "__main__":
    app()
