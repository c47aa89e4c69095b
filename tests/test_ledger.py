import logging
import re
from datetime import datetime, timezone

import pytest
from cryptography.hazmat.primitives import hashes

from fleetca.certificate_issuer import sign_leaf_cert
from fleetca.errors import LedgerCorruptError
from fleetca.keygen import create_csr
from fleetca.ledger import (
    append_inventory_entry, append_serials, inventory_entry, next_serial,
    parse_inventory_file, read_serial_list, update_serial_file
)

from _util import file_mode

EARLY = "2020-01-01T00:00:00UTC"
LATER = "2030-01-01T00:00:00UTC"
LATEST = "2035-06-01T12:30:00UTC"


def node_cert(ca_key, ca_cert, node_key, serial, name="node1"):
    return sign_leaf_cert(ca_key, ca_cert, create_csr(name, node_key),
                          serial=serial, ttl=3600, digest_algorithm=hashes.SHA256())


# ============================================
# Serial file
# ============================================

def test_missing_serial_file_starts_at_one(tmp_path):
    assert next_serial(tmp_path / "serial") == 1


@pytest.mark.parametrize("content", ["1c", "0x1c", "0X1C", " 1C\n", "001c"])
def test_serial_hex_forms(tmp_path, content):
    path = tmp_path / "serial"
    path.write_text(content)
    assert next_serial(path) == 28


@pytest.mark.parametrize("content", ["", "0x", "zz", "12 34", "-1"])
def test_corrupt_serial(tmp_path, content):
    path = tmp_path / "serial"
    path.write_text(content)
    with pytest.raises(LedgerCorruptError):
        next_serial(path)


def test_undecodable_serial_file_is_corrupt(tmp_path):
    path = tmp_path / "serial"
    path.write_bytes(b"\xff\xfe1c")
    with pytest.raises(LedgerCorruptError):
        next_serial(path)


@pytest.mark.parametrize("serial", [0, 1, 28, 255, 2 ** 70])
def test_serial_write_then_read(tmp_path, serial):
    path = tmp_path / "serial"
    update_serial_file(path, serial)
    assert next_serial(path) == serial


def test_serial_written_lowercase_without_prefix(tmp_path):
    path = tmp_path / "serial"
    path.write_text("0X1B")
    update_serial_file(path, 0xABC)
    assert path.read_text().strip() == "abc"
    assert file_mode(path) == 0o644
    assert [p.name for p in tmp_path.iterdir()] == ["serial"]


# ============================================
# Inventory
# ============================================

def write_inventory(path, lines):
    path.write_text("\n".join(lines) + "\n")
    return path


@pytest.mark.parametrize("order", [(0, 1), (1, 0)])
def test_later_not_after_wins_in_any_order(tmp_path, order):
    lines = [
        f"0x0002 {EARLY} {LATEST} /CN=node1",
        f"0x0005 {EARLY} {LATER} /CN=node1",
    ]
    path = write_inventory(tmp_path / "inventory.txt", [lines[i] for i in order])

    inventory, had_errors = parse_inventory_file(path)

    assert not had_errors
    record = inventory["node1"]
    assert record.serial == 2
    assert record.not_after == datetime(2035, 6, 1, 12, 30, tzinfo=timezone.utc)
    assert record.old_serials == [5]


def test_old_serials_keep_encounter_order(tmp_path):
    path = write_inventory(tmp_path / "inventory.txt", [
        f"0x0001 {EARLY} {EARLY} /CN=node1",
        f"0x0002 {EARLY} {LATER} /CN=node1",
        "",
        f"0x0003 {EARLY} {LATEST} /CN=node1",
        f"0x0004 {EARLY} {LATER} /CN=other",
    ])
    inventory, had_errors = parse_inventory_file(path)
    assert not had_errors
    assert inventory["node1"].serial == 3
    assert inventory["node1"].old_serials == [1, 2]
    assert inventory["other"].serial == 4
    assert inventory["other"].old_serials == []


def test_tie_goes_to_later_line(tmp_path):
    path = write_inventory(tmp_path / "inventory.txt", [
        f"0x0001 {EARLY} {LATER} /CN=node1",
        f"0x0002 {EARLY} {LATER} /CN=node1",
    ])
    inventory, _ = parse_inventory_file(path)
    assert inventory["node1"].serial == 2
    assert inventory["node1"].old_serials == [1]


def test_malformed_lines_are_skipped(tmp_path, caplog):
    path = write_inventory(tmp_path / "inventory.txt", [
        f"0x0001 {EARLY} {LATER} /CN=good",
        f"0x0002 {EARLY} /CN=missing-field",
        f"0xZZ {EARLY} {LATER} /CN=bad-serial",
        f"0x0004 yesterday {LATER} /CN=bad-time",
        f"0x0005 {EARLY} {LATER} CN=no-slash",
        f"0x0006 {EARLY} {LATER} /CN=also-good",
    ])
    with caplog.at_level(logging.ERROR, logger="fleetca"):
        inventory, had_errors = parse_inventory_file(path)

    assert had_errors
    assert sorted(inventory) == ["also-good", "good"]
    skipped = [r for r in caplog.records if "Skipping line" in r.getMessage()]
    assert len(skipped) == 4


def test_undecodable_inventory_line_is_skipped(tmp_path, caplog):
    path = tmp_path / "inventory.txt"
    path.write_bytes(
        f"0x0001 {EARLY} {LATER} /CN=good\n".encode() +
        b"0x0002 \xff\xfe /CN=broken\n" +
        f"0x0003 {EARLY} {LATEST} /CN=later\n".encode()
    )
    with caplog.at_level(logging.ERROR, logger="fleetca"):
        inventory, had_errors = parse_inventory_file(path)

    assert had_errors
    assert sorted(inventory) == ["good", "later"]
    assert inventory["good"].serial == 1
    assert "Skipping line 2" in caplog.text


def test_missing_inventory(tmp_path, caplog):
    with caplog.at_level(logging.ERROR, logger="fleetca"):
        inventory, had_errors = parse_inventory_file(tmp_path / "nope.txt")
    assert inventory == {}
    assert had_errors
    assert "inventory not found" in caplog.text


def test_inventory_entry_format(ca_key, ca_cert, node_key):
    entry = inventory_entry(node_cert(ca_key, ca_cert, node_key, 3))
    assert re.match(
        r"^0x0003 \d{4}-\d\d-\d\dT\d\d:\d\d:\d\dUTC \d{4}-\d\d-\d\dT\d\d:\d\d:\d\dUTC /CN=node1$",
        entry
    )


def test_appended_entries_parse_back(tmp_path, ca_key, ca_cert, node_key):
    path = tmp_path / "inventory.txt"
    first = node_cert(ca_key, ca_cert, node_key, 0x10)
    second = node_cert(ca_key, ca_cert, node_key, 0x11)
    append_inventory_entry(path, first)
    append_inventory_entry(path, second)

    assert len(path.read_text().splitlines()) == 2
    assert file_mode(path) == 0o644
    inventory, had_errors = parse_inventory_file(path)
    assert not had_errors
    assert inventory["node1"].serial == 0x11
    assert inventory["node1"].old_serials == [0x10]
    assert inventory["node1"].not_before == first.not_valid_before_utc.replace(microsecond=0)


# ============================================
# Infrastructure serials
# ============================================

def test_serial_list(tmp_path):
    path = tmp_path / "infra_serials"
    assert read_serial_list(path) == []
    append_serials(path, [3])
    append_serials(path, [0x1F, 0x20])
    assert read_serial_list(path) == [3, 0x1F, 0x20]
    assert path.read_text() == "0x0003\n0x001f\n0x0020\n"


def test_corrupt_serial_list(tmp_path):
    path = tmp_path / "infra_serials"
    path.write_text("0x0001\nnope\n")
    with pytest.raises(LedgerCorruptError):
        read_serial_list(path)
