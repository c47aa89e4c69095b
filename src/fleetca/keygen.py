"""
Key and CSR factory
Generates RSA keypairs and certificate signing requests for nodes
"""

import logging
import re
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

import yaml
from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509.oid import NameOID
from tqdm import tqdm

from . import config
from .errors import CryptoError, InvalidNameError
from .models import CsrAttributes, ExtensionRequest
from .utils import sign_builder

logger = logging.getLogger(__name__)

# Supported key types
PrivateKeyTypes = Union[rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey]
PublicKeyTypes = Union[rsa.RSAPublicKey, ec.EllipticCurvePublicKey]

_VALID_CERTNAME = re.compile(r"^[a-z0-9._-]+$")
_DOTTED_OID = re.compile(r"^[0-2](\.\d+)+$")

# Standard X.509 extensions (subjectAltName, keyUsage...) are set by the CA only
_RESERVED_OID_ARC = "2.5.29."


# ============================================
# 🔐 KEYS
# ============================================

def create_private_key(bit_length: int = config.DEFAULT_KEY_LENGTH,
                       show_progress: bool = False) -> rsa.RSAPrivateKey:
    """
    Generates a fresh RSA keypair

    Args:
        bit_length: Modulus size in bits
        show_progress: Display a progress bar while the key is generated

    Returns:
        RSAPrivateKey: Private key (its public half via ``public_key()``)

    Raises:
        CryptoError: If the key length is rejected by the crypto library
    """
    logger.debug("Generating a %s bit RSA key", bit_length)
    try:
        with tqdm(total=1, desc=f"RSA {bit_length}", disable=not show_progress,
                  bar_format="{l_bar}{bar}| {n_fmt}/{total_fmt}") as pbar:
            key = rsa.generate_private_key(
                public_exponent=config.RSA_PUBLIC_EXPONENT,
                key_size=bit_length
            )
            pbar.update(1)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise CryptoError(f"Could not generate a {bit_length} bit RSA key: {e}").wrap(e)
    return key


def serialize_private_key(key: PrivateKeyTypes) -> bytes:
    """PEM, PKCS#8, unencrypted"""
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    )


def load_private_key(data: Union[str, bytes], password: Optional[str] = None) -> PrivateKeyTypes:
    """
    Loads a PEM private key

    Raises:
        CryptoError: If the data is not a usable private key
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    try:
        return serialization.load_pem_private_key(
            data,
            password=password.encode() if password else None
        )
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise CryptoError(f"Could not load private key: {e}").wrap(e)


# ============================================
# 📝 CERTNAMES
# ============================================

def validate_certname(name: str) -> str:
    """
    Checks that a certname is usable as a node identity

    The name is never rewritten: uppercase names are rejected, not lowercased.

    Args:
        name: Certname to check

    Returns:
        str: The same name

    Raises:
        InvalidNameError: If the name is empty, not lowercase or uses a
            character outside a-z, 0-9, '.', '_' and '-'
    """
    if not name:
        raise InvalidNameError("Certificate names must not be empty")
    if name != name.lower():
        raise InvalidNameError(f"Certificate names must be lower case: '{name}'")
    if not _VALID_CERTNAME.match(name):
        raise InvalidNameError(
            f"Invalid certificate name '{name}', only a-z, 0-9, '.', '_' and '-' are allowed"
        )
    return name


# ============================================
# 📨 CSR
# ============================================

def create_csr(name: str,
               key: PrivateKeyTypes,
               extension_requests: Iterable[ExtensionRequest] = (),
               digest: Optional[hashes.HashAlgorithm] = None,
               attributes: Iterable[Tuple[str, str]] = ()) -> x509.CertificateSigningRequest:
    """
    Builds a CSR for a node

    Args:
        name: Lowercase certname, becomes the subject ``CN=<name>``
        key: Private key of the node
        extension_requests: Extensions requested for the certificate, in order
        digest: Signature digest (SHA-256 by default)
        attributes: Extra (oid, text) CSR attributes, ex: a challenge password

    Returns:
        CertificateSigningRequest: Signed CSR

    Raises:
        InvalidNameError: If ``name`` violates the certname precondition
        CryptoError: If the CSR cannot be signed
    """
    validate_certname(name)

    builder = x509.CertificateSigningRequestBuilder().subject_name(
        x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, name)])
    )
    for request in extension_requests:
        builder = builder.add_extension(request.to_extension_type(), critical=request.critical)
    for oid, value in attributes:
        builder = builder.add_attribute(x509.ObjectIdentifier(oid), value.encode("utf-8"))

    return sign_builder(builder, key, digest or hashes.SHA256(), f"CSR for {name}")


def extension_requests_of(csr: x509.CertificateSigningRequest) -> List[ExtensionRequest]:
    """
    Parses the extension-request attribute of a CSR

    Args:
        csr: Certificate signing request

    Returns:
        list: One ExtensionRequest per requested extension, in encounter order
    """
    return [ExtensionRequest.from_extension(ext) for ext in csr.extensions]


# ============================================
# 🏷️ CSR ATTRIBUTES FILE
# ============================================

def _oid_entries(section, section_name: str, errors: List[str]) -> List[Tuple[str, str]]:
    if section is None:
        return []
    if not isinstance(section, dict):
        errors.append(f"'{section_name}' must be a mapping of OID to value")
        return []

    entries = []
    for oid, value in section.items():
        oid = str(oid)
        if not _DOTTED_OID.match(oid):
            errors.append(f"Invalid {section_name} name '{oid}', expected a dotted OID")
        elif oid.startswith(_RESERVED_OID_ARC):
            errors.append(f"Cannot request standard X.509 extension {oid} in {section_name}")
        else:
            entries.append((oid, str(value)))
    return entries


def load_csr_attributes(path: Union[str, Path]) -> Tuple[CsrAttributes, List[str]]:
    """
    Reads the extension requests and custom attributes to embed in CSRs

    The YAML file holds two optional mappings, ``extension_requests`` and
    ``custom_attributes``, each keyed by dotted OID:

        extension_requests:
          1.3.6.1.4.1.34380.1.1.1: ED803750-E3C7-44F5-BB08-41A04433FE2E
        custom_attributes:
          1.2.840.113549.1.9.7: 342thbjkt82094y0uthhor289jnqthpc2290

    Args:
        path: csr_attributes file

    Returns:
        tuple: (CsrAttributes, errors). A missing file yields empty attributes
        and no errors.
    """
    attributes_file = Path(path)
    if not attributes_file.exists():
        return CsrAttributes(), []

    try:
        content = yaml.safe_load(attributes_file.read_text(encoding="utf-8"))
    except (yaml.YAMLError, UnicodeDecodeError) as e:
        return CsrAttributes(), [f"Could not parse {attributes_file}: {e}"]

    if content is None:
        return CsrAttributes(), []
    if not isinstance(content, dict):
        return CsrAttributes(), [f"{attributes_file} must contain a mapping"]

    errors: List[str] = []
    requests = _oid_entries(content.get("extension_requests"), "extension_requests", errors)
    custom = _oid_entries(content.get("custom_attributes"), "custom_attributes", errors)
    if errors:
        return CsrAttributes(), errors

    logger.debug("Loaded %d extension requests and %d attributes from %s",
                 len(requests), len(custom), attributes_file)
    return CsrAttributes(
        extension_requests=[ExtensionRequest.utf8(oid, value) for oid, value in requests],
        custom_attributes=custom
    ), []


# ============================================
# 🏭 KEY GENERATOR
# ============================================

class KeyGenerator:
    """
    Produces node keys and CSRs with the settings of one CA
    """

    def __init__(self, key_length: int = config.DEFAULT_KEY_LENGTH, show_progress: bool = False,
                 digest_algorithm: Optional[hashes.HashAlgorithm] = None):
        self.key_length = key_length
        self.show_progress = show_progress
        self.digest_algorithm = digest_algorithm

    def generate_key(self) -> rsa.RSAPrivateKey:
        return create_private_key(self.key_length, self.show_progress)

    def generate_key_csr(
            self,
            certname: str,
            csr_attributes: Optional[CsrAttributes] = None
    ) -> Tuple[rsa.RSAPrivateKey, x509.CertificateSigningRequest]:
        """
        Generates a keypair and the matching CSR

        Args:
            certname: Lowercase node name
            csr_attributes: Extension requests and attributes to embed

        Returns:
            tuple: (private key, CSR)
        """
        csr_attributes = csr_attributes or CsrAttributes()
        key = self.generate_key()
        csr = create_csr(
            certname, key,
            csr_attributes.extension_requests,
            self.digest_algorithm,
            csr_attributes.custom_attributes
        )
        return key, csr


__all__ = [
    'PrivateKeyTypes',
    'PublicKeyTypes',
    'create_private_key',
    'serialize_private_key',
    'load_private_key',
    'validate_certname',
    'create_csr',
    'extension_requests_of',
    'load_csr_attributes',
    'KeyGenerator',
]
