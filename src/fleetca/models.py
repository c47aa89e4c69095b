"""
Data models of the CA engine
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from cryptography import x509
from pyasn1.codec.der import encoder as der_encoder
from pyasn1.type import char

from .errors import ValidationError


def der_utf8_string(text: str) -> bytes:
    """DER encoding of an ASN.1 UTF8String (tag 0x0C)"""
    return der_encoder.encode(char.UTF8String(text))


@dataclass(frozen=True)
class ExtensionRequest:
    """
    One (identifier, value, critical) triple of a CSR extension request

    ``value`` holds the DER encoded extension value.
    """
    oid: str
    value: bytes
    critical: bool = False

    @classmethod
    def utf8(cls, oid: str, text: str, critical: bool = False) -> "ExtensionRequest":
        """Builds a request whose value is a UTF8String, the usual form for custom attributes"""
        return cls(oid=oid, value=der_utf8_string(text), critical=critical)

    @classmethod
    def from_extension(cls, extension: x509.Extension) -> "ExtensionRequest":
        """Typed view of an extension parsed by ``cryptography``"""
        value = extension.value
        if isinstance(value, x509.UnrecognizedExtension):
            der = value.value
        else:
            der = value.public_bytes()
        return cls(oid=extension.oid.dotted_string, value=der, critical=extension.critical)

    def to_extension_type(self) -> x509.UnrecognizedExtension:
        return x509.UnrecognizedExtension(x509.ObjectIdentifier(self.oid), self.value)


@dataclass
class CsrAttributes:
    """
    Content of a csr_attributes file

    ``extension_requests`` end up as certificate extensions,
    ``custom_attributes`` as (oid, text) attributes of the CSR.
    """
    extension_requests: List[ExtensionRequest] = field(default_factory=list)
    custom_attributes: List[Tuple[str, str]] = field(default_factory=list)


@dataclass
class InventoryRecord:
    """
    Latest certificate issued for a certname, with every superseded serial
    """
    serial: int
    not_before: datetime
    not_after: datetime
    old_serials: List[int] = field(default_factory=list)


class ImportState(str, Enum):
    """Terminal states of an import validation run"""
    ACCEPTED = "accepted"
    REJECTED = "rejected"


@dataclass
class ImportResult:
    """
    Outcome of validating an externally produced CA bundle

    On acceptance ``certs``, ``crls`` and ``key`` hold the parsed artifacts
    ready to be handed to the persistence collaborator.
    """
    state: ImportState
    certs: List[x509.Certificate] = field(default_factory=list)
    crls: List[x509.CertificateRevocationList] = field(default_factory=list)
    key: Optional[object] = None
    errors: List[ValidationError] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def accepted(self) -> bool:
        return self.state is ImportState.ACCEPTED

    @property
    def reasons(self) -> List[str]:
        return [error.reason for error in self.errors]


__all__ = [
    'der_utf8_string',
    'ExtensionRequest',
    'CsrAttributes',
    'InventoryRecord',
    'ImportState',
    'ImportResult',
]
