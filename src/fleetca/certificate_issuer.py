"""
Certificate Issuer
Signs node certificates with the CA key
"""

import ipaddress
import logging
from datetime import timedelta
from typing import Iterable, List, Optional, Union

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.x509.oid import ExtensionOID

from . import config, utils
from .errors import ChainError, CryptoError, ValidationError
from .filesystem import FileSystem
from .keygen import PrivateKeyTypes, extension_requests_of
from .ledger import PathLike, next_serial, update_serial_file
from .models import der_utf8_string
from .root_ca import authority_key_identifier, validity_window

logger = logging.getLogger(__name__)

_DIGESTS = {
    "SHA224": hashes.SHA224,
    "SHA256": hashes.SHA256,
    "SHA384": hashes.SHA384,
    "SHA512": hashes.SHA512,
}


# ============================================
# #️⃣ DIGESTS
# ============================================

def signing_digest(name: Optional[str] = None) -> hashes.HashAlgorithm:
    """
    Resolves the digest used to sign certificates and CRLs

    Args:
        name: Digest name such as ``sha256`` or ``SHA-512``. When omitted the
            first available digest of config.DIGEST_PREFERENCE is used.

    Returns:
        HashAlgorithm: Digest instance

    Raises:
        CryptoError: If the name is not a supported digest
    """
    if name:
        key = name.strip().upper().replace("-", "").replace("_", "")
        if key not in _DIGESTS:
            raise CryptoError(f"Unsupported signing digest '{name}'")
        return _DIGESTS[key]()

    for candidate in config.DIGEST_PREFERENCE:
        if candidate in _DIGESTS:
            return _DIGESTS[candidate]()
    raise CryptoError("No supported signing digest available")


# ============================================
# 🌐 SUBJECT ALTERNATIVE NAMES
# ============================================

def munge_alt_names(names: Union[str, Iterable[str], None]) -> str:
    """
    Normalizes a list of subject alternative names

    Entries without an ``IP:`` or ``DNS:`` prefix are taken as DNS names.
    The result is de-duplicated and sorted, so the rendered string is stable.

    Args:
        names: Comma separated string or list of names

    Returns:
        str: Names joined with ``", "`` (ex: "DNS:a, DNS:b, IP:10.0.0.1")
    """
    if not names:
        return ""
    if isinstance(names, str):
        names = names.split(",")

    entries = set()
    for raw in names:
        entry = raw.strip()
        if not entry:
            continue
        if not (entry.startswith("IP:") or entry.startswith("DNS:")):
            entry = f"DNS:{entry}"
        entries.add(entry)

    return ", ".join(sorted(entries))


def _general_names(alt_names: str) -> List[x509.GeneralName]:
    general_names = []
    for entry in alt_names.split(", "):
        kind, _, value = entry.partition(":")
        if kind == "IP":
            try:
                general_names.append(x509.IPAddress(ipaddress.ip_address(value)))
            except ValueError as e:
                raise ValidationError(f"invalid subject alternative name '{entry}'").wrap(e)
        else:
            general_names.append(x509.DNSName(value))
    return general_names


# ============================================
# 📜 NODE CERTIFICATES
# ============================================

def sign_leaf_cert(
        issuer_key: PrivateKeyTypes,
        issuer_cert: x509.Certificate,
        csr: x509.CertificateSigningRequest,
        subject_alt_names: Union[str, Iterable[str], None] = "",
        authorized: bool = True,
        *,
        serial: Optional[int] = None,
        serial_file: Optional[PathLike] = None,
        fs: Optional[FileSystem] = None,
        ttl: Union[int, float, timedelta] = config.DEFAULT_CA_TTL,
        digest_algorithm: Optional[hashes.HashAlgorithm] = None
) -> x509.Certificate:
    """
    Signs a node certificate from its CSR

    Extensions, in order: keyUsage, subjectKeyIdentifier,
    authorityKeyIdentifier, basicConstraints, the authorization marker (when
    ``authorized``), subjectAltName (when names are given), then every
    extension requested by the CSR in the order it was requested.

    Without an explicit ``serial`` the serial is allocated from
    ``serial_file`` (see ledger.next_serial), and the file is advanced once
    the certificate is signed. With neither, a random serial is used.

    Args:
        issuer_key: CA private key
        issuer_cert: CA certificate
        csr: Certificate signing request of the node
        subject_alt_names: Alternative names, normalized with munge_alt_names
        authorized: Add the marker granting access to the CA API
        serial: Serial number, overrides the ledger
        serial_file: Serial ledger to allocate from
        fs: File system collaborator used to advance the ledger
        ttl: Lifetime in seconds or as a timedelta
        digest_algorithm: Signature digest (see signing_digest)

    Returns:
        x509.Certificate: Signed certificate

    Raises:
        ChainError: If ``issuer_key`` does not belong to ``issuer_cert``
        CryptoError: If the CSR signature is invalid or the signature fails
        ValidationError: If a requested extension is already set by the CA
        LedgerCorruptError: If the serial file cannot be read
    """
    if not utils.keys_match(issuer_key, issuer_cert.public_key()):
        raise ChainError(
            f"CA key does not match the certificate {issuer_cert.subject.rfc4514_string()}"
        )
    if not csr.is_signature_valid:
        raise CryptoError(f"CSR for {csr.subject.rfc4514_string()} has an invalid signature")

    from_ledger = serial is None and serial_file is not None
    if serial is None:
        serial = next_serial(serial_file) if from_ledger else x509.random_serial_number()

    public_key = csr.public_key()
    not_before, not_after = validity_window(ttl)

    cert_builder = (
        x509.CertificateBuilder()
        .subject_name(csr.subject)
        .issuer_name(issuer_cert.subject)
        .public_key(public_key)
        .serial_number(serial)
        .not_valid_before(not_before)
        .not_valid_after(not_after)
    )

    # KeyUsage (critical)
    cert_builder = cert_builder.add_extension(
        x509.KeyUsage(
            digital_signature=True,
            content_commitment=False,
            key_encipherment=False,
            data_encipherment=False,
            key_agreement=False,
            key_cert_sign=False,
            crl_sign=False,
            encipher_only=False,
            decipher_only=False
        ),
        critical=True
    )

    # SubjectKeyIdentifier / AuthorityKeyIdentifier
    cert_builder = cert_builder.add_extension(
        x509.SubjectKeyIdentifier.from_public_key(public_key),
        critical=False
    )
    cert_builder = cert_builder.add_extension(
        authority_key_identifier(issuer_cert, issuer_cert.public_key()),
        critical=False
    )

    # BasicConstraints (critical), never a CA
    cert_builder = cert_builder.add_extension(
        x509.BasicConstraints(ca=False, path_length=None),
        critical=True
    )

    used = {
        ExtensionOID.KEY_USAGE.dotted_string,
        ExtensionOID.SUBJECT_KEY_IDENTIFIER.dotted_string,
        ExtensionOID.AUTHORITY_KEY_IDENTIFIER.dotted_string,
        ExtensionOID.BASIC_CONSTRAINTS.dotted_string,
    }

    if authorized:
        cert_builder = cert_builder.add_extension(
            x509.UnrecognizedExtension(
                x509.ObjectIdentifier(config.CLI_AUTH_EXT_OID),
                der_utf8_string("true")
            ),
            critical=False
        )
        used.add(config.CLI_AUTH_EXT_OID)

    alt_names = munge_alt_names(subject_alt_names)
    if alt_names:
        cert_builder = cert_builder.add_extension(
            x509.SubjectAlternativeName(_general_names(alt_names)),
            critical=False
        )
        used.add(ExtensionOID.SUBJECT_ALTERNATIVE_NAME.dotted_string)

    for request in extension_requests_of(csr):
        if request.oid in used:
            raise ValidationError(
                f"CSR for {csr.subject.rfc4514_string()} requests extension {request.oid} "
                "which is already set"
            )
        cert_builder = cert_builder.add_extension(request.to_extension_type(), critical=request.critical)
        used.add(request.oid)

    certificate = utils.sign_builder(
        cert_builder, issuer_key, digest_algorithm or signing_digest(),
        f"certificate for {csr.subject.rfc4514_string()}"
    )
    if from_ledger:
        update_serial_file(serial_file, serial + 1, fs)
    logger.info("Signed certificate for %s (serial %x)", csr.subject.rfc4514_string(), serial)
    return certificate


class CertificateIssuer:
    """
    Signs node certificates with one CA, allocating serials from its ledger
    """

    def __init__(self, issuer_key: PrivateKeyTypes, issuer_cert: x509.Certificate,
                 serial_file: Optional[PathLike] = None, fs: Optional[FileSystem] = None,
                 ttl: Union[int, float, timedelta] = config.DEFAULT_CA_TTL,
                 digest_algorithm: Optional[hashes.HashAlgorithm] = None):
        self.issuer_key = issuer_key
        self.issuer_cert = issuer_cert
        self.serial_file = serial_file
        self.fs = fs
        self.ttl = ttl
        self.digest_algorithm = digest_algorithm

    def issue_certificate(self, csr: x509.CertificateSigningRequest,
                          subject_alt_names: Union[str, Iterable[str], None] = "",
                          authorized: bool = False,
                          serial: Optional[int] = None) -> x509.Certificate:
        return sign_leaf_cert(
            self.issuer_key, self.issuer_cert, csr, subject_alt_names, authorized,
            serial=serial,
            serial_file=self.serial_file,
            fs=self.fs,
            ttl=self.ttl,
            digest_algorithm=self.digest_algorithm
        )


__all__ = [
    'signing_digest',
    'munge_alt_names',
    'sign_leaf_cert',
    'CertificateIssuer',
]
