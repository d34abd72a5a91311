"""Console report generation."""

import logging
from io import StringIO
from typing import List, Sequence

from rich.console import Console
from rich.markup import escape

from install_certs.certificate import Certificate
from install_certs.models import InstallResult, InstallStatus

logger = logging.getLogger(__name__)

# Global flag for colored output
_use_color = True

_STATUS_STYLES = {
    InstallStatus.SAVED: "bold green",
    InstallStatus.ALREADY_TRUSTED: "bold green",
    InstallStatus.PRINTED: "green",
    InstallStatus.ABORTED: "yellow",
}


def set_color_output(enabled: bool) -> None:
    """Enable or disable colored output."""
    global _use_color
    _use_color = enabled


def _style(text: str, style: str) -> str:
    """Render text with a rich style into a string (plain text if color is off)."""
    if not _use_color:
        return text
    output = StringIO()
    console = Console(file=output, force_terminal=True, width=1000, highlight=False)
    console.print(f"[{style}]{escape(text)}[/{style}]", end="")
    return output.getvalue()


def format_size(size: int) -> str:
    """Human readable size with binary prefixes (1536 -> 1.5 KiB)."""
    value = float(size)
    for unit in ("B", "KiB", "MiB", "GiB"):
        if value < 1024 or unit == "GiB":
            return f"{int(value)} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{size} B"


def format_chain(chain: Sequence[Certificate], verbose: bool = False) -> str:
    """Numbered listing of a chain as presented by the server (leaf first)."""
    lines: List[str] = []
    for idx, cert in enumerate(chain, 1):
        info = cert.details() if verbose else cert.info()
        lines.append("")
        lines.append(f"{idx}) " + _style(info.replace("\n", "\n   "), "cyan"))
    return "\n".join(lines)


def generate_text_report(result: InstallResult, verbose: bool = False) -> str:
    """
    Generate the human-readable report printed at the end of a run.

    Args:
        result: Outcome of the installation
        verbose: Include full certificate details

    Returns:
        Formatted text report
    """
    lines: List[str] = []

    if result.status == InstallStatus.PRINTED:
        lines.append(format_chain(result.chain, verbose=verbose))
        if result.session_info:
            lines.append("")
            lines.append(_style(result.session_info, "magenta"))
        return "\n".join(lines)

    if result.status == InstallStatus.SAVED:
        lines.append(f"Added {len(result.added_aliases)} certificate(s):")
        for alias in result.added_aliases:
            lines.append(f"  {_style(alias, 'bold')}")
        included = "included" if result.default_cas_included else "excluded"
        lines.append(_style(f"Default CA trust store is {included}.", "yellow"))
        lines.append("")
        size = format_size(result.store_size) if result.store_size is not None else "?"
        lines.append(_style(f"{result.message} ({size})", _STATUS_STYLES[result.status]))
        lines.append("")
        lines.append("To list the entries in the trust store, run")
        lines.append(_style(f"install-certs list {result.store_path} --storepass <password> -v", "yellow"))
        return "\n".join(lines)

    if result.status == InstallStatus.REVERIFICATION_FAILED and result.added_aliases:
        lines.append(f"Tried certificate(s): {', '.join(result.added_aliases)}")

    lines.append(_style(result.message, _STATUS_STYLES.get(result.status, "bold red")))
    return "\n".join(lines)
