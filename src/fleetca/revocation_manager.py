"""
Revocation Manager
Builds and extends the CRLs published by the CA
"""

import logging
from datetime import timedelta
from typing import Iterable, List, Optional, Tuple, Union

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.x509.oid import ExtensionOID

from . import config, utils
from .certificate_issuer import signing_digest
from .errors import ChainError
from .keygen import PrivateKeyTypes
from .root_ca import authority_key_identifier, validity_window

logger = logging.getLogger(__name__)

ReasonLike = Union[int, str, x509.ReasonFlags]


# ============================================
# 🏷️ REVOCATION REASONS
# ============================================

def reason_flag(reason_code: ReasonLike) -> x509.ReasonFlags:
    """
    Maps a revocation reason to its ReasonFlags member

    Args:
        reason_code: RFC 5280 code (ex: 1), ReasonFlags member, or its name
            (``key_compromise`` or ``keyCompromise``)

    Returns:
        ReasonFlags: Matching member

    Raises:
        ValueError: If the reason is unknown
    """
    if isinstance(reason_code, x509.ReasonFlags):
        return reason_code
    if isinstance(reason_code, int) and not isinstance(reason_code, bool):
        if reason_code not in config.REVOCATION_REASONS:
            raise ValueError(f"Unknown revocation reason code {reason_code}")
        return x509.ReasonFlags[config.REVOCATION_REASONS[reason_code]]
    if isinstance(reason_code, str):
        text = reason_code.strip()
        if text.isdigit():
            return reason_flag(int(text))
        if text in x509.ReasonFlags.__members__:
            return x509.ReasonFlags[text]
        try:
            return x509.ReasonFlags(text)
        except ValueError:
            pass
    raise ValueError(f"Unknown revocation reason {reason_code!r}")


# ============================================
# 🔍 CRL INSPECTION
# ============================================

def crl_number(crl: x509.CertificateRevocationList) -> int:
    """Sequence number of a CRL, 0 when the extension is absent"""
    try:
        return crl.extensions.get_extension_for_oid(ExtensionOID.CRL_NUMBER).value.crl_number
    except x509.ExtensionNotFound:
        return 0


def is_revoked(crl: x509.CertificateRevocationList, serial: int) -> bool:
    return crl.get_revoked_certificate_by_serial_number(serial) is not None


def _check_issuer(crl: x509.CertificateRevocationList, issuer_key: PrivateKeyTypes) -> None:
    if not crl.is_signature_valid(issuer_key.public_key()):
        raise ChainError(f"Key did not sign the CRL of {crl.issuer.rfc4514_string()}")


# ============================================
# 📋 CRL BUILDING
# ============================================

def create_crl_for(
        issuer_cert: x509.Certificate,
        issuer_key: PrivateKeyTypes,
        ttl: Union[int, float, timedelta] = config.DEFAULT_CA_TTL,
        digest_algorithm: Optional[hashes.HashAlgorithm] = None
) -> x509.CertificateRevocationList:
    """
    Builds an empty CRL for a CA

    Args:
        issuer_cert: CA certificate
        issuer_key: CA private key
        ttl: Time until next_update, in seconds or as a timedelta
        digest_algorithm: Signature digest (see signing_digest)

    Returns:
        CertificateRevocationList: Empty CRL with sequence number 0

    Raises:
        ChainError: If ``issuer_key`` does not belong to ``issuer_cert``
        CryptoError: If the signature fails
    """
    if not utils.keys_match(issuer_key, issuer_cert.public_key()):
        raise ChainError(
            f"CA key does not match the certificate {issuer_cert.subject.rfc4514_string()}"
        )

    last_update, next_update = validity_window(ttl)
    crl_builder = (
        x509.CertificateRevocationListBuilder()
        .issuer_name(issuer_cert.subject)
        .last_update(last_update)
        .next_update(next_update)
        .add_extension(authority_key_identifier(issuer_cert, issuer_cert.public_key()), critical=False)
        .add_extension(x509.CRLNumber(0), critical=False)
    )

    crl = utils.sign_builder(
        crl_builder, issuer_key, digest_algorithm or signing_digest(),
        f"CRL of {issuer_cert.subject.rfc4514_string()}"
    )
    logger.info("Built empty CRL for %s", issuer_cert.subject.rfc4514_string())
    return crl


def _rebuild_crl(
        crl: x509.CertificateRevocationList,
        issuer_key: PrivateKeyTypes,
        entries: Iterable[x509.RevokedCertificate],
        digest_algorithm: Optional[hashes.HashAlgorithm]
) -> x509.CertificateRevocationList:
    """Re-signs ``crl`` with new entries and the next sequence number"""
    now = utils.now_utc()
    next_update = crl.next_update_utc
    if next_update is None or next_update <= now:
        next_update = now + utils.to_timedelta(config.DEFAULT_CA_TTL)

    crl_builder = (
        x509.CertificateRevocationListBuilder()
        .issuer_name(crl.issuer)
        .last_update(now)
        .next_update(next_update)
    )

    for entry in entries:
        entry_builder = (
            x509.RevokedCertificateBuilder()
            .serial_number(entry.serial_number)
            .revocation_date(entry.revocation_date_utc)
        )
        for ext in entry.extensions:
            entry_builder = entry_builder.add_extension(ext.value, critical=ext.critical)
        crl_builder = crl_builder.add_revoked_certificate(entry_builder.build())

    for ext in crl.extensions:
        if ext.oid != ExtensionOID.CRL_NUMBER:
            crl_builder = crl_builder.add_extension(ext.value, critical=ext.critical)
    crl_builder = crl_builder.add_extension(x509.CRLNumber(crl_number(crl) + 1), critical=False)

    digest = digest_algorithm or crl.signature_hash_algorithm or signing_digest()
    return utils.sign_builder(crl_builder, issuer_key, digest, f"CRL of {crl.issuer.rfc4514_string()}")


# ============================================
# 🚫 REVOCATION
# ============================================

def revoke_cert(
        serial: int,
        crl: x509.CertificateRevocationList,
        issuer_key: PrivateKeyTypes,
        reason_code: ReasonLike = 0,
        digest_algorithm: Optional[hashes.HashAlgorithm] = None
) -> x509.CertificateRevocationList:
    """
    Adds a serial to a CRL

    The entry is dated now and the CRL sequence number goes up by one.

    Args:
        serial: Serial of the revoked certificate
        crl: Current CRL of the CA
        issuer_key: CA private key, must be the key that signed ``crl``
        reason_code: Revocation reason (see reason_flag)
        digest_algorithm: Signature digest, defaults to the one of ``crl``

    Returns:
        CertificateRevocationList: New signed CRL

    Raises:
        ChainError: If ``issuer_key`` did not sign ``crl``
    """
    _check_issuer(crl, issuer_key)
    reason = reason_flag(reason_code)

    revoked = (
        x509.RevokedCertificateBuilder()
        .serial_number(serial)
        .revocation_date(utils.now_utc())
        .add_extension(x509.CRLReason(reason), critical=False)
        .build()
    )

    new_crl = _rebuild_crl(crl, issuer_key, list(crl) + [revoked], digest_algorithm)
    logger.info("Revoked serial %x (%s) on the CRL of %s",
                serial, reason.name, crl.issuer.rfc4514_string())
    return new_crl


def revoke_certs(
        serials: Iterable[int],
        crl: x509.CertificateRevocationList,
        issuer_key: PrivateKeyTypes,
        reason_code: ReasonLike = 0,
        digest_algorithm: Optional[hashes.HashAlgorithm] = None
) -> x509.CertificateRevocationList:
    """Revokes serials one after the other, one sequence number per serial"""
    for serial in serials:
        crl = revoke_cert(serial, crl, issuer_key, reason_code, digest_algorithm)
    return crl


def prune_crl(
        crl: x509.CertificateRevocationList,
        issuer_key: PrivateKeyTypes,
        digest_algorithm: Optional[hashes.HashAlgorithm] = None
) -> Tuple[x509.CertificateRevocationList, int]:
    """
    Drops duplicate serials from a CRL

    The first entry of each serial is kept. When nothing is removed the CRL
    is returned unchanged; otherwise it is re-signed with the next sequence
    number.

    Args:
        crl: CRL to prune
        issuer_key: Key that signed ``crl``

    Returns:
        tuple: (CRL, number of removed entries)

    Raises:
        ChainError: If ``issuer_key`` did not sign ``crl``
    """
    _check_issuer(crl, issuer_key)

    seen = set()
    kept: List[x509.RevokedCertificate] = []
    for entry in crl:
        if entry.serial_number in seen:
            continue
        seen.add(entry.serial_number)
        kept.append(entry)

    removed = len(crl) - len(kept)
    if removed == 0:
        return crl, 0

    logger.info("Removed %d duplicate entries from the CRL of %s",
                removed, crl.issuer.rfc4514_string())
    return _rebuild_crl(crl, issuer_key, kept, digest_algorithm), removed


class RevocationManager:
    """
    Maintains the CRL of one CA
    """

    def __init__(self, issuer_key: PrivateKeyTypes,
                 ttl: Union[int, float, timedelta] = config.DEFAULT_CA_TTL,
                 digest_algorithm: Optional[hashes.HashAlgorithm] = None):
        self.issuer_key = issuer_key
        self.ttl = ttl
        self.digest_algorithm = digest_algorithm

    def create_crl(self, issuer_cert: x509.Certificate) -> x509.CertificateRevocationList:
        return create_crl_for(issuer_cert, self.issuer_key, self.ttl, self.digest_algorithm)

    def revoke(self, crl: x509.CertificateRevocationList, serials: Iterable[int],
               reason_code: ReasonLike = 0) -> x509.CertificateRevocationList:
        """Revokes every serial, returns ``crl`` itself when there are none"""
        return revoke_certs(serials, crl, self.issuer_key, reason_code, self.digest_algorithm)

    def prune(self, crl: x509.CertificateRevocationList) -> Tuple[x509.CertificateRevocationList, int]:
        return prune_crl(crl, self.issuer_key, self.digest_algorithm)


__all__ = [
    'reason_flag',
    'crl_number',
    'is_revoked',
    'create_crl_for',
    'revoke_cert',
    'revoke_certs',
    'prune_crl',
    'RevocationManager',
]
