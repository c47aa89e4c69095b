"""
Trust-chain validator
Checks an externally produced CA bundle, its key and its CRL chain before
they are imported. Nothing is written here.
"""

import logging
import re
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.x509.oid import ExtensionOID

from . import utils
from .errors import CryptoError, ValidationError
from .keygen import PrivateKeyTypes, load_private_key
from .models import ImportResult, ImportState
from .revocation_manager import crl_number

logger = logging.getLogger(__name__)

_CERT_BLOCK = re.compile(r"-----BEGIN CERTIFICATE-----.*?-----END CERTIFICATE-----", re.DOTALL)
_CRL_BLOCK = re.compile(r"-----BEGIN X509 CRL-----.*?-----END X509 CRL-----", re.DOTALL)

NO_CERTS = "no certificates detected"
BAD_CERT = "could not parse certificate"
NO_CRLS = "no CRLs detected"
BAD_CRL = "could not parse CRL"
BAD_KEY = "could not parse private key"
CRL_NOT_FROM_ISSUER = "leaf CRL was not issued by leaf certificate's issuer"
KEY_MISMATCH = "private key and certificate do not match"
CHAIN_INVALID = "leaf certificate could not be validated"
NO_CHAIN_WARNING = "no CRL chain supplied; full CRL chain checking is not possible"


# ============================================
# 📥 PARSING
# ============================================

def load_certs(text: str, source: str = "bundle") -> Tuple[List[x509.Certificate], List[ValidationError]]:
    """
    Extracts every certificate of a concatenated PEM input

    Args:
        text: PEM text
        source: Name of the input, used as the detail of "no certificates detected"

    Returns:
        tuple: (parsed certificates in order, errors). Each unparsable block
        yields one error carrying the raw block.
    """
    blocks = _CERT_BLOCK.findall(text or "")
    if not blocks:
        return [], [ValidationError(NO_CERTS, source)]

    certs, errors = [], []
    for block in blocks:
        try:
            certs.append(x509.load_pem_x509_certificate(block.encode("ascii")))
        except (ValueError, UnicodeEncodeError):
            errors.append(ValidationError(BAD_CERT, block))
    return certs, errors


def load_crls(text: str, source: str = "chain") -> Tuple[List[x509.CertificateRevocationList], List[ValidationError]]:
    """Same as load_certs, for CRL blocks"""
    blocks = _CRL_BLOCK.findall(text or "")
    if not blocks:
        return [], [ValidationError(NO_CRLS, source)]

    crls, errors = [], []
    for block in blocks:
        try:
            crls.append(x509.load_pem_x509_crl(block.encode("ascii")))
        except (ValueError, UnicodeEncodeError):
            errors.append(ValidationError(BAD_CRL, block))
    return crls, errors


def load_key(text: str, source: str = "private key") -> Tuple[Optional[PrivateKeyTypes], List[ValidationError]]:
    """
    Parses the private key of the bundle

    The key material is never copied into the error, only ``source``.
    """
    try:
        return load_private_key(text or ""), []
    except CryptoError:
        return None, [ValidationError(BAD_KEY, source)]


# ============================================
# 🔗 CHAIN OF TRUST
# ============================================

def _issued_by(cert: x509.Certificate, issuer: x509.Certificate) -> bool:
    try:
        cert.verify_directly_issued_by(issuer)
    except (ValueError, TypeError, InvalidSignature):
        return False
    return True


def _within(cert: x509.Certificate, now: datetime) -> bool:
    return utils.cert_not_before(cert) <= now <= utils.cert_not_after(cert)


def _is_ca(cert: x509.Certificate) -> bool:
    try:
        if not cert.extensions.get_extension_for_oid(ExtensionOID.BASIC_CONSTRAINTS).value.ca:
            return False
    except x509.ExtensionNotFound:
        return False
    try:
        return cert.extensions.get_extension_for_oid(ExtensionOID.KEY_USAGE).value.key_cert_sign
    except x509.ExtensionNotFound:
        return True


def _build_path(leaf: x509.Certificate,
                pool: Sequence[x509.Certificate],
                now: datetime) -> Optional[List[x509.Certificate]]:
    """Walks from ``leaf`` up to a self-signed certificate of ``pool``"""
    path = [leaf]
    current = leaf
    while True:
        if not _within(current, now):
            logger.debug("%s is outside its validity window", current.subject.rfc4514_string())
            return None

        if current.issuer == current.subject and _issued_by(current, current):
            if current is leaf and leaf not in pool:
                logger.debug("Self-signed leaf is not part of the trust store")
                return None
            return path

        issuer = next(
            (c for c in pool if c.subject == current.issuer and c not in path and _issued_by(current, c)),
            None
        )
        if issuer is None:
            logger.debug("No issuer found for %s", current.subject.rfc4514_string())
            return None
        if not _is_ca(issuer):
            logger.debug("%s is not a CA", issuer.subject.rfc4514_string())
            return None

        path.append(issuer)
        current = issuer


def _crl_signed_by(crl: x509.CertificateRevocationList, issuer: x509.Certificate) -> bool:
    try:
        return crl.is_signature_valid(issuer.public_key())
    except TypeError:
        return False


def _crl_of(issuer: x509.Certificate,
            crls: Sequence[x509.CertificateRevocationList]) -> Optional[x509.CertificateRevocationList]:
    """Most recent CRL issued and signed by ``issuer``"""
    candidates = [crl for crl in crls if crl.issuer == issuer.subject and _crl_signed_by(crl, issuer)]
    if not candidates:
        return None
    return max(candidates, key=crl_number)


def _not_revoked(path: List[x509.Certificate],
                 crls: Sequence[x509.CertificateRevocationList],
                 now: datetime) -> bool:
    for index, cert in enumerate(path):
        issuer = path[index + 1] if index + 1 < len(path) else cert
        crl = _crl_of(issuer, crls)
        if crl is None:
            logger.debug("No CRL from %s", issuer.subject.rfc4514_string())
            return False
        if crl.last_update_utc > now or (crl.next_update_utc is not None and crl.next_update_utc < now):
            logger.debug("CRL of %s is not current", issuer.subject.rfc4514_string())
            return False
        if crl.get_revoked_certificate_by_serial_number(cert.serial_number) is not None:
            logger.debug("%s (serial %x) is revoked",
                         cert.subject.rfc4514_string(), cert.serial_number)
            return False
    return True


def verify_chain(
        leaf: x509.Certificate,
        intermediates_and_roots: Sequence[x509.Certificate],
        crls: Optional[Sequence[x509.CertificateRevocationList]] = None,
        now: Optional[datetime] = None
) -> bool:
    """
    Verifies a certificate against a trust store

    The path goes from ``leaf`` through certificates of the store, matched by
    issuer name and signature, up to a self-signed anchor. Every certificate
    on the path must be within its validity window and every issuer must be
    a CA. When CRLs are given, every certificate on the path (anchor
    included) needs a current CRL signed by its issuer that does not list it.

    Args:
        leaf: Certificate to verify
        intermediates_and_roots: Trust store
        crls: CRLs for revocation checking, None to skip it
        now: Verification time (defaults to now)

    Returns:
        bool: True when the certificate is trusted
    """
    now = now or utils.now_utc()
    path = _build_path(leaf, list(intermediates_and_roots), now)
    if path is None:
        return False
    if crls is not None and not _not_revoked(path, crls, now):
        return False
    return True


# ============================================
# 📦 IMPORT VALIDATION
# ============================================

def validate_import(bundle_text: str, key_text: str, chain_text: Optional[str] = None) -> ImportResult:
    """
    Validates a CA bundle before it is imported

    Every independent problem is collected so the operator can fix them in
    one pass. Checks that depend on an input only run when that input parsed.

    Args:
        bundle_text: PEM certificates, the CA certificate first then its issuers
        key_text: PEM private key of the first certificate
        chain_text: PEM CRLs, the first one issued by the CA's issuer

    Returns:
        ImportResult: ACCEPTED with the parsed artifacts, or REJECTED with
        the collected errors
    """
    errors: List[ValidationError] = []
    warnings: List[str] = []

    certs, cert_errors = load_certs(bundle_text)
    errors.extend(cert_errors)
    certs_ok = bool(certs) and not cert_errors

    key, key_errors = load_key(key_text)
    errors.extend(key_errors)

    crls: List[x509.CertificateRevocationList] = []
    crls_ok = True
    if chain_text is None or not chain_text.strip():
        warnings.append(NO_CHAIN_WARNING)
        logger.warning(NO_CHAIN_WARNING)
    else:
        crls, crl_errors = load_crls(chain_text)
        errors.extend(crl_errors)
        crls_ok = bool(crls) and not crl_errors

    if certs_ok and crls and crls_ok and crls[0].issuer != certs[0].issuer:
        errors.append(ValidationError(
            CRL_NOT_FROM_ISSUER,
            f"{crls[0].issuer.rfc4514_string()} != {certs[0].issuer.rfc4514_string()}"
        ))

    if certs_ok and key is not None and not utils.keys_match(key, certs[0].public_key()):
        errors.append(ValidationError(KEY_MISMATCH))

    if certs_ok and crls_ok and not verify_chain(certs[0], certs[1:], crls or None):
        errors.append(ValidationError(CHAIN_INVALID, certs[0].subject.rfc4514_string()))

    if errors:
        for error in errors:
            logger.warning("Import rejected: %s", error.reason)
        return ImportResult(ImportState.REJECTED, errors=errors, warnings=warnings)

    logger.info("Import accepted for %s", certs[0].subject.rfc4514_string())
    return ImportResult(ImportState.ACCEPTED, certs=certs, crls=crls, key=key, warnings=warnings)


__all__ = [
    'load_certs',
    'load_crls',
    'load_key',
    'verify_chain',
    'validate_import',
    'NO_CHAIN_WARNING',
]
