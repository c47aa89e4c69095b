"""
Root CA (Certificate Authority)
Builds the self-signed certificate at the top of the hierarchy
"""

import logging
from datetime import datetime, timedelta
from typing import Optional, Tuple, Union

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.x509.oid import ExtensionOID, NameOID

from . import config, utils
from .keygen import KeyGenerator, PrivateKeyTypes, PublicKeyTypes

logger = logging.getLogger(__name__)


# ============================================
# 🧱 SHARED CA BUILDING BLOCKS
# ============================================

def ca_name(name: str) -> x509.Name:
    """Distinguished name ``/CN=<name>`` used for CA and node certificates"""
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, name)])


def validity_window(ttl: Union[int, float, timedelta]) -> Tuple[datetime, datetime]:
    """
    Computes the validity window of a new certificate or CRL

    The start is backdated by one day to tolerate clock skew between nodes.

    Args:
        ttl: Lifetime in seconds or as a timedelta

    Returns:
        tuple: (not_before, not_after)
    """
    now = utils.now_utc()
    return now - config.CERT_VALID_FROM_OFFSET, now + utils.to_timedelta(ttl)


def authority_key_identifier(issuer_cert: Optional[x509.Certificate],
                             issuer_public_key: PublicKeyTypes) -> x509.AuthorityKeyIdentifier:
    """
    keyid form of the authorityKeyIdentifier

    Reuses the issuer's subjectKeyIdentifier when the issuer certificate
    carries one, otherwise hashes the issuer public key.
    """
    if issuer_cert is not None:
        try:
            ski = issuer_cert.extensions.get_extension_for_oid(
                ExtensionOID.SUBJECT_KEY_IDENTIFIER
            ).value
            return x509.AuthorityKeyIdentifier.from_issuer_subject_key_identifier(ski)
        except x509.ExtensionNotFound:
            pass
    return x509.AuthorityKeyIdentifier.from_issuer_public_key(issuer_public_key)


def add_ca_extensions(
        cert_builder: x509.CertificateBuilder,
        public_key: PublicKeyTypes,
        aki: x509.AuthorityKeyIdentifier
) -> x509.CertificateBuilder:
    """
    Adds the four CA extensions, always in the same order

    Args:
        cert_builder: Certificate builder
        public_key: Public key being certified (for the subjectKeyIdentifier)
        aki: authorityKeyIdentifier of the signer

    Returns:
        CertificateBuilder: Builder with the extensions added
    """
    # 1. BasicConstraints (critical), no path length limit
    cert_builder = cert_builder.add_extension(
        x509.BasicConstraints(ca=True, path_length=None),
        critical=True
    )

    # 2. KeyUsage (critical): sign certificates and CRLs
    cert_builder = cert_builder.add_extension(
        x509.KeyUsage(
            digital_signature=False,
            content_commitment=False,
            key_encipherment=False,
            data_encipherment=False,
            key_agreement=False,
            key_cert_sign=True,
            crl_sign=True,
            encipher_only=False,
            decipher_only=False
        ),
        critical=True
    )

    # 3. SubjectKeyIdentifier
    cert_builder = cert_builder.add_extension(
        x509.SubjectKeyIdentifier.from_public_key(public_key),
        critical=False
    )

    # 4. AuthorityKeyIdentifier
    return cert_builder.add_extension(aki, critical=False)


# ============================================
# 👑 ROOT CERTIFICATE
# ============================================

def create_root_cert(
        key: PrivateKeyTypes,
        name: str,
        ttl: Union[int, float, timedelta] = config.DEFAULT_CA_TTL,
        digest_algorithm: Optional[hashes.HashAlgorithm] = None,
        serial: int = config.ROOT_SERIAL
) -> x509.Certificate:
    """
    Builds the self-signed root certificate

    Args:
        key: Root private key
        name: Common name of the root (subject and issuer)
        ttl: Lifetime in seconds or as a timedelta
        digest_algorithm: Signature digest (SHA-256 by default)
        serial: Serial number of the certificate

    Returns:
        x509.Certificate: Self-signed certificate carrying exactly
        basicConstraints, keyUsage, subjectKeyIdentifier and
        authorityKeyIdentifier

    Raises:
        CryptoError: If the signature fails
    """
    subject = issuer = ca_name(name)
    not_before, not_after = validity_window(ttl)
    public_key = key.public_key()

    cert_builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(public_key)
        .serial_number(serial)
        .not_valid_before(not_before)
        .not_valid_after(not_after)
    )
    cert_builder = add_ca_extensions(
        cert_builder,
        public_key,
        x509.AuthorityKeyIdentifier.from_issuer_public_key(public_key)
    )

    certificate = utils.sign_builder(
        cert_builder, key, digest_algorithm or hashes.SHA256(), f"root certificate '{name}'"
    )
    logger.info("Built root certificate %s (serial %x)", subject.rfc4514_string(), serial)
    return certificate


class RootCAManager:
    """
    Creates the self-signed root of the hierarchy
    """

    def __init__(self, key_gen: Optional[KeyGenerator] = None,
                 ttl: Union[int, float, timedelta] = config.DEFAULT_CA_TTL,
                 digest_algorithm: Optional[hashes.HashAlgorithm] = None):
        self.key_gen = key_gen or KeyGenerator()
        self.ttl = ttl
        self.digest_algorithm = digest_algorithm

    def create_root_ca(self, name: str = config.DEFAULT_ROOT_CA_NAME
                       ) -> Tuple[PrivateKeyTypes, x509.Certificate]:
        """
        Generates the root key and its self-signed certificate

        Returns:
            tuple: (private key, certificate)
        """
        key = self.key_gen.generate_key()
        return key, create_root_cert(key, name, self.ttl, self.digest_algorithm, config.ROOT_SERIAL)


__all__ = [
    'ca_name',
    'validity_window',
    'authority_key_identifier',
    'add_ca_extensions',
    'create_root_cert',
    'RootCAManager',
]
