"""
Intermediate CA
Certificate signed by the root that signs node certificates and CRLs
"""

import logging
from datetime import timedelta
from typing import Optional, Tuple, Union

from cryptography import x509
from cryptography.hazmat.primitives import hashes

from . import config, utils
from .errors import ChainError
from .keygen import KeyGenerator, PrivateKeyTypes, PublicKeyTypes, create_private_key
from .root_ca import add_ca_extensions, authority_key_identifier, ca_name, validity_window

logger = logging.getLogger(__name__)


def create_intermediate_cert(
        root_key: PrivateKeyTypes,
        root_cert: x509.Certificate,
        name: str,
        ttl: Union[int, float, timedelta] = config.DEFAULT_CA_TTL,
        digest_algorithm: Optional[hashes.HashAlgorithm] = None,
        *,
        public_key: Optional[PublicKeyTypes] = None,
        serial: int = config.INTERMEDIATE_SERIAL,
        key_length: int = config.DEFAULT_KEY_LENGTH
) -> Union[x509.Certificate, Tuple[PrivateKeyTypes, x509.Certificate]]:
    """
    Builds the intermediate certificate, signed by the root

    When ``public_key`` is omitted a fresh keypair of ``key_length`` bits is
    generated for the intermediate and returned along with the certificate.

    Args:
        root_key: Root private key
        root_cert: Root certificate, provides the issuer name
        name: Common name of the intermediate
        ttl: Lifetime in seconds or as a timedelta
        digest_algorithm: Signature digest (SHA-256 by default)
        public_key: Public key of the intermediate
        serial: Serial number of the certificate
        key_length: Size of the generated key when ``public_key`` is omitted

    Returns:
        x509.Certificate: Certificate with the four CA extensions, or
        tuple (private key, certificate) when the key was generated here

    Raises:
        ChainError: If ``root_key`` does not belong to ``root_cert``
        CryptoError: If the key generation or the signature fails
    """
    if not utils.keys_match(root_key, root_cert.public_key()):
        raise ChainError(
            f"Root key does not match the certificate {root_cert.subject.rfc4514_string()}"
        )

    generated_key = None
    if public_key is None:
        generated_key = create_private_key(key_length)
        public_key = generated_key.public_key()

    not_before, not_after = validity_window(ttl)
    subject = ca_name(name)

    cert_builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(root_cert.subject)
        .public_key(public_key)
        .serial_number(serial)
        .not_valid_before(not_before)
        .not_valid_after(not_after)
    )
    cert_builder = add_ca_extensions(
        cert_builder,
        public_key,
        authority_key_identifier(root_cert, root_key.public_key())
    )

    certificate = utils.sign_builder(
        cert_builder, root_key, digest_algorithm or hashes.SHA256(),
        f"intermediate certificate '{name}'"
    )
    logger.info("Built intermediate certificate %s issued by %s",
                subject.rfc4514_string(), root_cert.subject.rfc4514_string())

    if generated_key is not None:
        return generated_key, certificate
    return certificate


def create_intermediate_csr(
        key: PrivateKeyTypes,
        name: str,
        digest_algorithm: Optional[hashes.HashAlgorithm] = None
) -> x509.CertificateSigningRequest:
    """
    CSR of an intermediate CA to be signed by an external root

    CA names are display names (ex: "Fleet Intermediate CA"), so the node
    certname rule does not apply here.
    """
    builder = x509.CertificateSigningRequestBuilder().subject_name(ca_name(name))
    return utils.sign_builder(builder, key, digest_algorithm or hashes.SHA256(), f"CSR for CA '{name}'")


class IntermediateCAManager:
    """
    Creates the signing CA of the hierarchy
    """

    def __init__(self, key_gen: Optional[KeyGenerator] = None,
                 ttl: Union[int, float, timedelta] = config.DEFAULT_CA_TTL,
                 digest_algorithm: Optional[hashes.HashAlgorithm] = None):
        self.key_gen = key_gen or KeyGenerator()
        self.ttl = ttl
        self.digest_algorithm = digest_algorithm

    def create_intermediate_ca(
            self,
            root_key: PrivateKeyTypes,
            root_cert: x509.Certificate,
            name: str = config.DEFAULT_CA_NAME
    ) -> Tuple[PrivateKeyTypes, x509.Certificate]:
        """
        Generates the intermediate key and has the root sign its certificate

        Returns:
            tuple: (private key, certificate)
        """
        key = self.key_gen.generate_key()
        cert = create_intermediate_cert(
            root_key, root_cert, name, self.ttl, self.digest_algorithm,
            public_key=key.public_key(),
            serial=config.INTERMEDIATE_SERIAL
        )
        return key, cert

    def create_intermediate_csr(self, name: str = config.DEFAULT_CA_NAME
                                ) -> Tuple[PrivateKeyTypes, x509.CertificateSigningRequest]:
        """
        Generates the intermediate key and its CSR for an external root

        Returns:
            tuple: (private key, CSR)
        """
        key = self.key_gen.generate_key()
        return key, create_intermediate_csr(key, name, self.digest_algorithm)


__all__ = ['create_intermediate_cert', 'create_intermediate_csr', 'IntermediateCAManager']
