import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes

from fleetca.errors import ChainError
from fleetca.revocation_manager import (
    RevocationManager, create_crl_for, crl_number, is_revoked, prune_crl, reason_flag, revoke_cert, revoke_certs
)


def test_new_crl_is_empty_with_number_zero(ca_crl, ca_cert, ca_key):
    assert crl_number(ca_crl) == 0
    assert len(ca_crl) == 0
    assert ca_crl.issuer == ca_cert.subject
    assert ca_crl.is_signature_valid(ca_key.public_key())
    aki = ca_crl.extensions.get_extension_for_class(x509.AuthorityKeyIdentifier).value
    ski = ca_cert.extensions.get_extension_for_class(x509.SubjectKeyIdentifier).value
    assert aki.key_identifier == ski.digest


def test_crl_for_mismatched_key(ca_cert, other_key):
    with pytest.raises(ChainError):
        create_crl_for(ca_cert, other_key, 3600)


def test_crl_number_increments_by_one_per_revocation(ca_crl, ca_key):
    crl = ca_crl
    for expected, serial in enumerate([10, 11, 12, 13, 14], start=1):
        crl = revoke_cert(serial, crl, ca_key)
        assert crl_number(crl) == expected
        assert is_revoked(crl, serial)
        assert crl.is_signature_valid(ca_key.public_key())
    assert len(crl) == 5
    assert not is_revoked(crl, 99)


def test_revoke_keeps_issuer_and_extensions(ca_crl, ca_key):
    crl = revoke_cert(7, ca_crl, ca_key, digest_algorithm=hashes.SHA512())
    assert crl.issuer == ca_crl.issuer
    assert isinstance(crl.signature_hash_algorithm, hashes.SHA512)
    assert crl.extensions.get_extension_for_class(x509.AuthorityKeyIdentifier) is not None
    assert crl.next_update_utc == ca_crl.next_update_utc


def test_revoke_certs_bumps_once_per_serial(ca_crl, ca_key):
    crl = revoke_certs([1, 2, 3], ca_crl, ca_key)
    assert crl_number(crl) == 3
    crl = revoke_certs([4], crl, ca_key)
    assert crl_number(crl) == 4


def test_revoke_with_wrong_key(ca_crl, other_key):
    with pytest.raises(ChainError):
        revoke_cert(5, ca_crl, other_key)


@pytest.mark.parametrize("reason", [1, "1", "key_compromise", "keyCompromise", x509.ReasonFlags.key_compromise])
def test_reason_forms(ca_crl, ca_key, reason):
    crl = revoke_cert(5, ca_crl, ca_key, reason)
    entry = crl.get_revoked_certificate_by_serial_number(5)
    assert entry.extensions.get_extension_for_class(x509.CRLReason).value.reason == x509.ReasonFlags.key_compromise


def test_existing_reasons_survive_later_revocations(ca_crl, ca_key):
    crl = revoke_cert(5, ca_crl, ca_key, "superseded")
    crl = revoke_cert(6, crl, ca_key)
    entry = crl.get_revoked_certificate_by_serial_number(5)
    assert entry.extensions.get_extension_for_class(x509.CRLReason).value.reason == x509.ReasonFlags.superseded


@pytest.mark.parametrize("reason", [7, 42, "bogus", True])
def test_unknown_reason(reason):
    with pytest.raises(ValueError):
        reason_flag(reason)


def test_prune_removes_duplicates(ca_crl, ca_key):
    crl = revoke_certs([5, 6, 5, 5], ca_crl, ca_key)
    assert len(crl) == 4

    pruned, removed = prune_crl(crl, ca_key)

    assert removed == 2
    assert sorted(entry.serial_number for entry in pruned) == [5, 6]
    assert crl_number(pruned) == crl_number(crl) + 1
    assert pruned.is_signature_valid(ca_key.public_key())


def test_prune_without_duplicates_is_a_no_op(ca_crl, ca_key):
    crl = revoke_cert(5, ca_crl, ca_key)
    pruned, removed = prune_crl(crl, ca_key)
    assert removed == 0
    assert pruned is crl


def test_prune_with_wrong_key(ca_crl, other_key):
    with pytest.raises(ChainError):
        prune_crl(ca_crl, other_key)


def test_revocation_manager(ca_cert, ca_key):
    manager = RevocationManager(ca_key, 3600, hashes.SHA256())
    crl = manager.create_crl(ca_cert)
    assert crl_number(crl) == 0 and len(crl) == 0

    assert manager.revoke(crl, []) is crl
    crl = manager.revoke(crl, [5, 6, 5], x509.ReasonFlags.superseded)
    assert crl_number(crl) == 3
    assert is_revoked(crl, 6)

    crl, removed = manager.prune(crl)
    assert removed == 1
    assert sorted(entry.serial_number for entry in crl) == [5, 6]
