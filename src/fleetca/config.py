"""
Global configuration of the CA engine
Constants, file modes and the resolved settings consumed by the core
"""

import logging
import os
from dataclasses import dataclass, fields
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

# ============================================
# 🔐 CRYPTOGRAPHIC PARAMETERS
# ============================================

# Default RSA key length for CA and node keys
DEFAULT_KEY_LENGTH = 4096

# RSA public exponent (standard)
RSA_PUBLIC_EXPONENT = 65537

# FIPS 140-2 compliant digests, most preferred first
DIGEST_PREFERENCE = ["SHA256", "SHA512", "SHA384", "SHA224"]
# ============================================
# 📜 X.509 CERTIFICATE PARAMETERS
# ============================================

# Default lifetime of CA and node certificates (15 years)
DEFAULT_CA_TTL = int(timedelta(days=5 * 365 * 3).total_seconds())

# Certificates are valid as of yesterday to tolerate clock skew between nodes
CERT_VALID_FROM_OFFSET = timedelta(days=1)

# Fixed serials of the CA hierarchy created by setup
ROOT_SERIAL = 1
INTERMEDIATE_SERIAL = 2

# Authorization marker granting a node access to the CA API
CLI_AUTH_EXT_OID = "1.3.6.1.4.1.34380.1.3.39"

DEFAULT_ROOT_CA_NAME = "Fleet Root CA"
DEFAULT_CA_NAME = "Fleet Intermediate CA"

# ============================================
# 📋 CRL PARAMETERS
# ============================================

# RFC 5280 reason codes (7 is unused)
REVOCATION_REASONS = {
    0: "unspecified",
    1: "key_compromise",
    2: "ca_compromise",
    3: "affiliation_changed",
    4: "superseded",
    5: "cessation_of_operation",
    6: "certificate_hold",
    8: "remove_from_crl",
    9: "privilege_withdrawn",
    10: "aa_compromise",
}

# ============================================
# 🔒 FILE MODES
# ============================================

PRIVATE_KEY_PERMISSIONS = 0o640  # rw-r----- (owner + group read)
CERT_PERMISSIONS = 0o644  # rw-r--r-- (world readable)
DIR_PERMISSIONS = 0o755  # rwxr-xr-x
PRIVATE_DIR_PERMISSIONS = 0o750  # rwxr-x---

# ============================================
# 🎨 CLI DISPLAY
# ============================================

CLI_COLORS = {
    "success": "green",
    "error": "red",
    "warning": "yellow",
    "info": "cyan",
    "header": "magenta bold",
}

CLI_SYMBOLS = {
    "success": "✓",
    "error": "✗",
    "warning": "⚠",
    "info": "ℹ",
    "cert": "📜",
    "key": "🔑",
    "root": "👑",
    "intermediate": "🌐",
    "crl": "📋",
}

# ============================================
# 📊 LOGGING
# ============================================

LOG_LEVEL = os.getenv("FLEETCA_LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


# ============================================
# 🛠️ RESOLVED SETTINGS
# ============================================

_PATH_DEFAULTS = {
    # setting name -> (base directory setting, file name)
    "cacert": ("cadir", "ca_crt.pem"),
    "cakey": ("cadir", "ca_key.pem"),
    "cacrl": ("cadir", "ca_crl.pem"),
    "rootkey": ("cadir", "root_key.pem"),
    "capub": ("cadir", "ca_pub.pem"),
    "serial": ("cadir", "serial"),
    "cert_inventory": ("cadir", "inventory.txt"),
    "signeddir": ("cadir", "signed"),
    "infra_crl": ("cadir", "infra_crl.pem"),
    "infra_inventory": ("cadir", "infra_inventory.txt"),
    "infra_serials": ("cadir", "infra_serials"),
    "certdir": ("ssldir", "certs"),
    "privatekeydir": ("ssldir", "private_keys"),
    "publickeydir": ("ssldir", "public_keys"),
}


@dataclass(frozen=True)
class CASettings:
    """
    Settings of one CA directory, resolved by an external collaborator

    Only ``cadir`` is mandatory; every other path defaults to the standard
    layout inside ``cadir`` (CA files) or ``ssldir`` (host files). The
    csr_attributes file sits next to ``ssldir``.
    """
    cadir: Path
    ssldir: Path
    cacert: Path
    cakey: Path
    cacrl: Path
    rootkey: Path
    capub: Path
    serial: Path
    cert_inventory: Path
    signeddir: Path
    infra_crl: Path
    infra_inventory: Path
    infra_serials: Path
    certdir: Path
    privatekeydir: Path
    publickeydir: Path
    hostcert: Path
    hostprivkey: Path
    hostpubkey: Path
    csr_attributes: Path
    certname: str = "ca"
    ca_name: str = DEFAULT_CA_NAME
    root_ca_name: str = DEFAULT_ROOT_CA_NAME
    keylength: int = DEFAULT_KEY_LENGTH
    ca_ttl: int = DEFAULT_CA_TTL
    digest: Optional[str] = None
    subject_alt_names: str = ""

    @staticmethod
    def from_mapping(mapping: Mapping[str, Any]) -> "CASettings":
        """
        Builds settings from a resolved key -> value mapping

        Args:
            mapping: Resolved settings (strings, ints or bools)

        Returns:
            CASettings: Settings with every path filled in

        Raises:
            KeyError: If ``cadir`` is missing
        """
        values: Dict[str, Any] = dict(mapping)
        cadir = Path(values.pop("cadir"))
        ssldir = Path(values.pop("ssldir", cadir.parent / "ssl"))
        resolved: Dict[str, Any] = {"cadir": cadir, "ssldir": ssldir}

        for name, (base, filename) in _PATH_DEFAULTS.items():
            if values.get(name):
                resolved[name] = Path(values.pop(name))
            else:
                values.pop(name, None)
                resolved[name] = resolved[base] / filename

        certname = str(values.pop("certname", "") or "ca")
        resolved["certname"] = certname
        host_defaults = {
            "hostcert": resolved["certdir"] / f"{certname}.pem",
            "hostprivkey": resolved["privatekeydir"] / f"{certname}.pem",
            "hostpubkey": resolved["publickeydir"] / f"{certname}.pem",
        }
        for name, default in host_defaults.items():
            resolved[name] = Path(values.pop(name)) if values.get(name) else default
            values.pop(name, None)
        resolved["csr_attributes"] = (
            Path(values.pop("csr_attributes")) if values.get("csr_attributes")
            else ssldir.parent / "csr_attributes.yaml"
        )

        if values.get("ca_name"):
            resolved["ca_name"] = str(values.pop("ca_name"))
        if values.get("root_ca_name"):
            resolved["root_ca_name"] = str(values.pop("root_ca_name"))
        if values.get("keylength") not in (None, ""):
            resolved["keylength"] = int(values.pop("keylength"))
        if values.get("ca_ttl") not in (None, ""):
            resolved["ca_ttl"] = _parse_ttl(values.pop("ca_ttl"))
        if values.get("digest"):
            resolved["digest"] = str(values.pop("digest"))
        if values.get("subject_alt_names"):
            resolved["subject_alt_names"] = str(values.pop("subject_alt_names"))

        unknown = sorted(set(values) - {f.name for f in fields(CASettings)})
        if unknown:
            logger.debug("Ignoring unknown settings: %s", ", ".join(unknown))
        return CASettings(**resolved)


def _parse_ttl(value: Any) -> int:
    """
    Converts a TTL setting into seconds

    Accepts plain integers (seconds) or a number followed by one of the
    units ``s``, ``m``, ``h``, ``d``, ``y``.
    """
    if isinstance(value, timedelta):
        return int(value.total_seconds())
    if isinstance(value, int):
        return value
    text = str(value).strip().lower()
    units = {"s": 1, "m": 60, "h": 3600, "d": 86400, "y": 365 * 86400}
    if text and text[-1] in units:
        return int(text[:-1]) * units[text[-1]]
    return int(text)


__all__ = [
    'DEFAULT_KEY_LENGTH', 'RSA_PUBLIC_EXPONENT', 'DIGEST_PREFERENCE',
    'DEFAULT_CA_TTL', 'CERT_VALID_FROM_OFFSET', 'ROOT_SERIAL', 'INTERMEDIATE_SERIAL',
    'CLI_AUTH_EXT_OID', 'DEFAULT_ROOT_CA_NAME', 'DEFAULT_CA_NAME',
    'REVOCATION_REASONS',
    'PRIVATE_KEY_PERMISSIONS', 'CERT_PERMISSIONS', 'DIR_PERMISSIONS', 'PRIVATE_DIR_PERMISSIONS',
    'CLI_COLORS', 'CLI_SYMBOLS',
    'LOG_LEVEL', 'LOG_FORMAT', 'LOG_DATE_FORMAT',
    'CASettings',
]
