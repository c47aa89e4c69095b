"""
fleetca - Private certificate authority for a fleet of nodes
============================================================

Lifecycle of a private CA hierarchy:
- Key and CSR factory
- Root, intermediate and node certificates
- Serial and inventory ledger
- CRLs and revocation
- Trust-chain validation of imported CA bundles

Main modules:
- config: Constants and resolved settings
- keygen: Keys, certnames and CSRs
- root_ca / intermediate_ca / certificate_issuer: Issuance
- ledger: Serial file and inventory
- revocation_manager: CRLs
- trust_chain: Import validation
- local_ca: Actions on a CA directory
"""

__version__ = "1.0.0"

from . import config
from . import utils
from .certificate_issuer import CertificateIssuer, munge_alt_names, sign_leaf_cert, signing_digest
from .config import CASettings
from .errors import (
    ChainError, CryptoError, FleetCAError, InvalidNameError, LedgerCorruptError, ValidationError
)
from .filesystem import FileSystem
from .intermediate_ca import IntermediateCAManager, create_intermediate_cert
from .keygen import KeyGenerator, create_csr, create_private_key, load_csr_attributes, validate_certname
from .local_ca import LocalCertificateAuthority
from .models import CsrAttributes, ExtensionRequest, ImportResult, ImportState, InventoryRecord
from .revocation_manager import RevocationManager
from .root_ca import RootCAManager, create_root_cert
from .trust_chain import validate_import, verify_chain

__all__ = [
    'config',
    'utils',
    'CASettings',
    'FileSystem',
    'LocalCertificateAuthority',
    'create_private_key',
    'create_csr',
    'load_csr_attributes',
    'KeyGenerator',
    'RootCAManager',
    'IntermediateCAManager',
    'CertificateIssuer',
    'RevocationManager',
    'validate_certname',
    'create_root_cert',
    'create_intermediate_cert',
    'sign_leaf_cert',
    'munge_alt_names',
    'signing_digest',
    'validate_import',
    'verify_chain',
    'CsrAttributes',
    'ExtensionRequest',
    'ImportResult',
    'ImportState',
    'InventoryRecord',
    'FleetCAError',
    'InvalidNameError',
    'CryptoError',
    'ChainError',
    'LedgerCorruptError',
    'ValidationError',
]
