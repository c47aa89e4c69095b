"""
Utility functions shared by the CA engine
"""

import hashlib
from datetime import datetime, timedelta, timezone
from typing import Union

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import config
from .errors import CryptoError

# Rich console used for every user facing message
console = Console()


# ============================================
# 🔐 CRYPTOGRAPHIC HELPERS
# ============================================

def calculate_fingerprint(cert: x509.Certificate) -> str:
    """
    Computes the SHA-256 fingerprint of a certificate

    Args:
        cert: X.509 certificate

    Returns:
        str: Colon separated hexadecimal fingerprint (ex: "A1:B2:C3:...")
    """
    digest = hashlib.sha256(cert.public_bytes(serialization.Encoding.DER)).hexdigest().upper()
    return ':'.join(digest[i:i + 2] for i in range(0, len(digest), 2))


def public_key_der(key) -> bytes:
    """DER SubjectPublicKeyInfo of a public key, or of a private key's public half"""
    if hasattr(key, "private_bytes"):
        key = key.public_key()
    return key.public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo
    )


def keys_match(private_key, public_key) -> bool:
    """True when ``public_key`` is the public half of ``private_key``"""
    return public_key_der(private_key) == public_key_der(public_key)


def sign_builder(builder, key, digest, what: str):
    """
    Signs a certificate, CRL or CSR builder

    Args:
        builder: cryptography builder ready to be signed
        key: Signing private key
        digest: Hash algorithm instance
        what: Description of the object, used in the error message

    Returns:
        The signed object

    Raises:
        CryptoError: If the signature operation fails
    """
    try:
        return builder.sign(private_key=key, algorithm=digest)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise CryptoError(f"Could not sign {what}: {e}").wrap(e)


# ============================================
# 📅 DATES
# ============================================

def now_utc() -> datetime:
    """
    Returns the current date/time in UTC with timezone

    Returns:
        datetime: Current date/time in UTC
    """
    return datetime.now(timezone.utc)


def to_timedelta(ttl: Union[int, float, timedelta]) -> timedelta:
    """Normalizes a TTL given in seconds or as a timedelta"""
    if isinstance(ttl, timedelta):
        return ttl
    return timedelta(seconds=ttl)


def format_time(dt: datetime) -> str:
    """
    Formats a timestamp the way the inventory ledger stores it

    Args:
        dt: Date/time, naive values are taken as UTC

    Returns:
        str: Timestamp like ``2024-01-31T08:00:00UTC``
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SUTC")


def parse_time(text: str) -> datetime:
    """
    Parses an inventory timestamp

    Accepts ISO 8601 timestamps with a ``Z``, ``UTC``/``GMT`` or numeric
    offset suffix. Values without an offset are taken as UTC.

    Args:
        text: Timestamp to parse

    Returns:
        datetime: Timezone aware timestamp

    Raises:
        ValueError: If the timestamp cannot be parsed
    """
    value = text.strip()
    for suffix in ("UTC", "GMT", "Z"):
        if value.upper().endswith(suffix):
            value = value[:-len(suffix)] + "+00:00"
            break
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def cert_not_before(cert) -> datetime:
    """Start of validity, timezone aware"""
    return cert.not_valid_before_utc


def cert_not_after(cert) -> datetime:
    """End of validity, timezone aware"""
    return cert.not_valid_after_utc


# ============================================
# 🎨 CLI OUTPUT WITH RICH
# ============================================

def _print(kind: str, message: str) -> None:
    color = config.CLI_COLORS[kind]
    console.print(f"[{color}]{config.CLI_SYMBOLS[kind]} {message}[/{color}]")


def print_success(message: str) -> None:
    """Prints a success message in green"""
    _print("success", message)


def print_error(message: str) -> None:
    """Prints an error message in red"""
    _print("error", message)


def print_warning(message: str) -> None:
    """Prints a warning in yellow"""
    _print("warning", message)


def print_info(message: str) -> None:
    """Prints an informational message in cyan"""
    _print("info", message)


def print_header(title: str) -> None:
    """
    Prints a framed header

    Args:
        title: Title to display
    """
    console.print()
    console.print(Panel.fit(
        f"[{config.CLI_COLORS['header']}]{title}[/]",
        border_style=config.CLI_COLORS["header"].split()[0],
        box=box.DOUBLE
    ))
    console.print()


def create_table(title: str, columns: list) -> Table:
    """
    Creates a styled Rich table ready to be filled

    Args:
        title: Table title
        columns: Column names

    Returns:
        Table: Rich table
    """
    table = Table(
        title=title,
        title_style="bold cyan",
        border_style="blue",
        box=box.ROUNDED,
        show_header=True,
        header_style="bold magenta"
    )

    for col in columns:
        table.add_column(col)

    return table


def display_cert_info(cert: x509.Certificate) -> None:
    """
    Prints the main fields of a certificate

    Args:
        cert: X.509 certificate to display
    """
    table = create_table(f"{config.CLI_SYMBOLS['cert']} Certificate", ["Field", "Value"])

    table.add_row("Subject", f"[cyan]{cert.subject.rfc4514_string()}[/cyan]")
    table.add_row("Issuer", f"[yellow]{cert.issuer.rfc4514_string()}[/yellow]")
    table.add_row("Serial", f"[green]{cert.serial_number:x}[/green]")
    table.add_row("Valid from", cert_not_before(cert).strftime("%Y-%m-%d %H:%M:%S UTC"))
    table.add_row("Valid until", cert_not_after(cert).strftime("%Y-%m-%d %H:%M:%S UTC"))
    table.add_row("SHA-256", f"[dim]{calculate_fingerprint(cert)}[/dim]")

    console.print(table)


def print_errors(errors: list) -> None:
    """
    Prints a list of collected errors under a single ``Error:`` heading

    Args:
        errors: Error messages or exceptions
    """
    print_error("Error:")
    for error in errors:
        console.print(f"    {error}", style="red", markup=False)


__all__ = [
    # Crypto
    'calculate_fingerprint', 'public_key_der', 'keys_match', 'sign_builder',

    # Dates
    'now_utc', 'to_timedelta', 'format_time', 'parse_time', 'cert_not_before', 'cert_not_after',

    # CLI output
    'print_success', 'print_error', 'print_warning', 'print_info', 'print_header',
    'create_table', 'display_cert_info', 'print_errors',

    # Rich console
    'console'
]
