"""
Serial and inventory ledger
Allocates serial numbers and records the certificates issued per certname
"""

import logging
import re
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

from cryptography import x509
from cryptography.x509.oid import NameOID

from . import config, utils
from .errors import LedgerCorruptError
from .filesystem import FileSystem
from .models import InventoryRecord

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

_HEX = re.compile(r"^[0-9a-fA-F]+$")


def _decode(data: bytes, source: Path) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise LedgerCorruptError(f"{source} is not valid UTF-8: {e}").wrap(e)


def _parse_hex(text: str) -> int:
    value = text.strip()
    if value[:2] in ("0x", "0X"):
        value = value[2:]
    if not _HEX.match(value):
        raise LedgerCorruptError(f"'{text.strip()}' is not a hexadecimal serial")
    return int(value, 16)


# ============================================
# 🔢 SERIAL FILE
# ============================================

def next_serial(path: PathLike) -> int:
    """
    Reads the next serial number to allocate

    Args:
        path: Serial file

    Returns:
        int: Serial stored in the file, 1 when the file does not exist

    Raises:
        LedgerCorruptError: If the content is not a hexadecimal number
    """
    serial_file = Path(path)
    if not serial_file.exists():
        return 1
    try:
        return _parse_hex(_decode(serial_file.read_bytes(), serial_file))
    except LedgerCorruptError as e:
        raise LedgerCorruptError(f"Corrupt serial file {serial_file}: {e}").wrap(e)


def update_serial_file(path: PathLike, serial: int, fs: Optional[FileSystem] = None) -> None:
    """
    Stores the next serial as lowercase hexadecimal, replacing the file atomically

    Args:
        path: Serial file
        serial: Next serial to allocate
        fs: File system collaborator
    """
    if serial < 0:
        raise ValueError(f"Serial numbers cannot be negative: {serial}")
    (fs or FileSystem()).write_file(path, format(serial, "x"), config.CERT_PERMISSIONS)
    logger.debug("Serial file %s now at %x", path, serial)


# ============================================
# 📒 INVENTORY
# ============================================

def _certname_of(subject: str) -> str:
    if not subject.startswith("/CN=") or len(subject) == 4:
        raise ValueError(f"'{subject}' is not a /CN=<certname> subject")
    return subject[4:]


def parse_inventory_file(path: PathLike) -> Tuple[Dict[str, InventoryRecord], bool]:
    """
    Reads the inventory ledger

    Each line holds four whitespace separated fields: hex serial, not_before,
    not_after and ``/CN=<certname>``. Malformed lines are logged and skipped.
    When a certname appears more than once, the entry with the latest
    not_after is current (the later line wins a tie) and every other serial
    is kept in ``old_serials`` in encounter order.

    Args:
        path: Inventory file

    Returns:
        tuple: (certname -> InventoryRecord, had_errors)
    """
    inventory_file = Path(path)
    if not inventory_file.exists():
        logger.error("inventory not found at '%s'", inventory_file)
        return {}, True

    inventory: Dict[str, InventoryRecord] = {}
    had_errors = False

    for lineno, raw in enumerate(inventory_file.read_bytes().splitlines(), 1):
        if not raw.strip():
            continue
        try:
            line = _decode(raw, inventory_file)
            fields = line.split()
            if len(fields) != 4:
                raise ValueError(f"expected 4 fields, found {len(fields)}")
            serial = _parse_hex(fields[0])
            not_before = utils.parse_time(fields[1])
            not_after = utils.parse_time(fields[2])
            certname = _certname_of(fields[3])
        except (ValueError, LedgerCorruptError) as e:
            logger.error("Skipping line %d of %s (%s): %r", lineno, inventory_file, e, raw)
            had_errors = True
            continue

        current = inventory.get(certname)
        if current is None:
            inventory[certname] = InventoryRecord(serial, not_before, not_after)
        elif not_after >= current.not_after:
            inventory[certname] = InventoryRecord(
                serial, not_before, not_after, current.old_serials + [current.serial]
            )
        else:
            current.old_serials.append(serial)

    return inventory, had_errors


def inventory_entry(cert: x509.Certificate) -> str:
    """
    Inventory line of a certificate

    Returns:
        str: Line like ``0x0003 2024-01-01T00:00:00UTC 2039-01-01T00:00:00UTC /CN=node``
    """
    names = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    certname = names[0].value if names else cert.subject.rfc4514_string()
    return "0x%04x %s %s /CN=%s" % (
        cert.serial_number,
        utils.format_time(utils.cert_not_before(cert)),
        utils.format_time(utils.cert_not_after(cert)),
        certname,
    )


def append_inventory_entry(path: PathLike, cert: x509.Certificate, fs: Optional[FileSystem] = None) -> None:
    """
    Records a newly issued certificate at the end of the inventory

    The file is rewritten atomically with the new line appended.
    """
    inventory_file = Path(path)
    existing = _decode(inventory_file.read_bytes(), inventory_file) if inventory_file.exists() else ""
    if existing and not existing.endswith("\n"):
        existing += "\n"
    (fs or FileSystem()).write_file(
        inventory_file, existing + inventory_entry(cert), config.CERT_PERMISSIONS
    )
    logger.debug("Recorded serial %x in %s", cert.serial_number, inventory_file)


# ============================================
# 🏗️ INFRASTRUCTURE SERIALS
# ============================================

def read_serial_list(path: PathLike) -> List[int]:
    """
    Reads a file holding one hexadecimal serial per line

    Returns:
        list: Serials in file order, empty when the file does not exist

    Raises:
        LedgerCorruptError: If a line is not a hexadecimal number
    """
    serial_file = Path(path)
    if not serial_file.exists():
        return []
    return [
        _parse_hex(line)
        for line in _decode(serial_file.read_bytes(), serial_file).splitlines()
        if line.strip()
    ]


def append_serials(path: PathLike, serials: Iterable[int], fs: Optional[FileSystem] = None) -> None:
    """Adds serials to a serial list file in a single atomic rewrite"""
    serials = read_serial_list(path) + list(serials)
    (fs or FileSystem()).write_file(
        path, "".join("0x%04x\n" % s for s in serials), config.CERT_PERMISSIONS
    )


__all__ = [
    'next_serial',
    'update_serial_file',
    'parse_inventory_file',
    'inventory_entry',
    'append_inventory_entry',
    'read_serial_list',
    'append_serials',
]
