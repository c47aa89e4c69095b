"""
Local certificate authority
Runs the CA actions against one CA directory
"""

import logging
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Set, Tuple

from cryptography import x509

from . import config, utils
from .certificate_issuer import CertificateIssuer, munge_alt_names, signing_digest
from .config import CASettings
from .errors import ChainError, FleetCAError
from .filesystem import FileSystem, write_files
from .intermediate_ca import IntermediateCAManager
from .keygen import KeyGenerator, PrivateKeyTypes, load_csr_attributes, validate_certname
from .ledger import (
    append_inventory_entry, append_serials, inventory_entry, parse_inventory_file, update_serial_file
)
from .models import CsrAttributes
from .revocation_manager import RevocationManager, is_revoked
from .root_ca import RootCAManager
from .trust_chain import load_certs, load_crls, load_key, validate_import

logger = logging.getLogger(__name__)

REPLACE_CA_NOTICE = (
    "If you would really like to replace your CA, please delete the existing files first.\n"
    "Note that any certificates that were issued by this CA will become invalid if you\n"
    "replace it!"
)
REPLACE_INFRA_CRL_NOTICE = (
    "If you would really like to reinitialize your infrastructure CRL, please delete\n"
    "the existing files and run this command again."
)
GENERATE_CSR_NOTICE = "Please delete these files if you want to generate a CSR"


class LocalCertificateAuthority:
    """
    Certificate authority whose keys live in the local CA directory

    Pre-flight problems are collected in ``errors`` and returned by each
    action; nothing is written unless that list is empty. Failures of the
    crypto library or of the disk propagate as exceptions.
    """

    def __init__(self, settings: CASettings, fs: Optional[FileSystem] = None, digest: Optional[str] = None):
        """
        Args:
            settings: Resolved settings of the CA directory
            fs: File system collaborator (a default FileSystem when omitted)
            digest: Signing digest name, overrides settings.digest
        """
        self.settings = settings
        self.fs = fs or FileSystem()
        self.digest = signing_digest(digest or settings.digest)
        self.errors: List[str] = []
        self.warnings: List[str] = []

        self.cert: Optional[x509.Certificate] = None
        self.key: Optional[PrivateKeyTypes] = None
        self.cert_bundle: List[x509.Certificate] = []
        self.crl_chain: List[x509.CertificateRevocationList] = []

    # ============================================
    # 🏗️ SETUP
    # ============================================

    def setup(self, show_progress: bool = False) -> List[str]:
        """
        Creates a fresh root, intermediate and server certificate

        The server CSR carries the extension requests and attributes of the
        csr_attributes file.

        Args:
            show_progress: Display key generation progress bars

        Returns:
            list: Collected errors, empty on success
        """
        s = self.settings
        self.errors = []
        validate_certname(s.certname)

        targets = [
            s.cacert, s.cacrl, s.infra_crl, s.hostcert, s.hostpubkey, s.capub,
            s.cert_inventory, s.infra_inventory, s.infra_serials, s.serial,
            self._signed_path(s.certname), s.hostprivkey, s.rootkey, s.cakey,
        ]
        self.errors = self.fs.check_for_existing_files(targets)
        if self.errors:
            self.errors.append(REPLACE_CA_NOTICE)
            return self.errors
        csr_attributes = self._load_csr_attributes()
        if self.errors:
            return self.errors

        key_gen = self._key_generator(show_progress)
        root_key, root_cert = RootCAManager(key_gen, s.ca_ttl, self.digest).create_root_ca(s.root_ca_name)
        root_crl = RevocationManager(root_key, s.ca_ttl, self.digest).create_crl(root_cert)

        self.key, self.cert = IntermediateCAManager(key_gen, s.ca_ttl, self.digest).create_intermediate_ca(
            root_key, root_cert, s.ca_name
        )
        self.cert_bundle = [self.cert, root_cert]
        self.crl_chain = [RevocationManager(self.key, s.ca_ttl, self.digest).create_crl(self.cert), root_crl]

        server_serial = config.INTERMEDIATE_SERIAL + 1
        server_key, server_csr = key_gen.generate_key_csr(s.certname, csr_attributes)
        server_cert = self._issuer().issue_certificate(
            server_csr,
            s.subject_alt_names or f"DNS:{s.certname}",
            authorized=True,
            serial=server_serial
        )

        self.fs.ensure_dirs([s.ssldir, s.cadir, s.certdir, s.publickeydir, s.signeddir])
        self.fs.ensure_dir(s.privatekeydir, config.PRIVATE_DIR_PERMISSIONS)

        write_files(self.fs, [
            (s.cacert, self.cert_bundle),
            (s.cacrl, self.crl_chain),
            (s.infra_crl, self.crl_chain),
            (s.hostcert, server_cert),
            (self._signed_path(s.certname), server_cert),
            (s.hostpubkey, server_key.public_key()),
            (s.capub, self.key.public_key()),
            (s.cert_inventory, inventory_entry(server_cert)),
            (s.infra_inventory, ""),
            (s.infra_serials, ""),
        ], config.CERT_PERMISSIONS)
        write_files(self.fs, [
            (s.hostprivkey, server_key),
            (s.rootkey, root_key),
            (s.cakey, self.key),
        ], config.PRIVATE_KEY_PERMISSIONS)
        update_serial_file(s.serial, server_serial + 1, self.fs)

        logger.info("CA set up in %s", s.cadir)
        return self.errors

    def generate_csr(self, output_dir) -> List[str]:
        """
        Creates the intermediate key and a CSR for an external root to sign

        ``ca.key`` and ``ca.csr`` are written to ``output_dir``, which must
        already exist; the result is later installed with import_ca.

        Args:
            output_dir: Directory receiving ca.key and ca.csr

        Returns:
            list: Collected errors, empty on success
        """
        s = self.settings
        directory = Path(output_dir)
        if not directory.is_dir():
            self.errors = [f"Specified output directory must exist: '{directory}'"]
            return self.errors

        key_path, csr_path = directory / "ca.key", directory / "ca.csr"
        self.errors = self.fs.check_for_existing_files([key_path, csr_path])
        if self.errors:
            self.errors.append(GENERATE_CSR_NOTICE)
            return self.errors

        key, csr = IntermediateCAManager(self._key_generator(), s.ca_ttl, self.digest).create_intermediate_csr(
            s.ca_name
        )
        write_files(self.fs, [(key_path, key), (csr_path, csr)], config.PRIVATE_KEY_PERMISSIONS)

        logger.info("Wrote the key and CSR of %s to %s", s.ca_name, directory)
        return self.errors

    # ============================================
    # 📦 IMPORT
    # ============================================

    def import_ca(self, bundle_path, key_path, chain_path=None) -> List[str]:
        """
        Installs an externally produced CA

        Args:
            bundle_path: PEM file with the CA certificate followed by its issuers
            key_path: PEM private key of the CA certificate
            chain_path: PEM CRLs, the first one issued by the CA's issuer

        Returns:
            list: Collected errors, empty on success
        """
        s = self.settings
        inputs = [bundle_path, key_path] + ([chain_path] if chain_path else [])
        self.errors = self.fs.validate_file_paths(inputs)
        if self.errors:
            return self.errors

        result = validate_import(
            self.fs.read_text(bundle_path),
            self.fs.read_text(key_path),
            self.fs.read_text(chain_path) if chain_path else None
        )
        self.warnings = list(result.warnings)
        self.errors = [str(error) for error in result.errors]

        targets = [s.cacert, s.cakey, s.cacrl, s.serial, s.cert_inventory]
        existing = self.fs.check_for_existing_files(targets)
        if existing:
            self.errors.extend(existing + [REPLACE_CA_NOTICE])
        if self.errors:
            return self.errors

        self.cert_bundle, self.key = result.certs, result.key
        self.cert = self.cert_bundle[0]
        self.crl_chain = result.crls or [self._revocation().create_crl(self.cert)]

        self.fs.ensure_dirs([s.cadir, s.signeddir])
        self.fs.write_file(s.cacert, self.cert_bundle, config.CERT_PERMISSIONS)
        self.fs.write_file(s.cakey, self.key, config.PRIVATE_KEY_PERMISSIONS)
        self.fs.write_file(s.cacrl, self.crl_chain, config.CERT_PERMISSIONS)
        update_serial_file(s.serial, 1, self.fs)
        self.fs.write_file(s.cert_inventory, "", config.CERT_PERMISSIONS)

        logger.info("Imported CA %s into %s", self.cert.subject.rfc4514_string(), s.cadir)
        return self.errors

    # ============================================
    # 📂 LOADING
    # ============================================

    def load_ca(self) -> None:
        """
        Reads the CA certificate, key and CRL chain from the CA directory

        Raises:
            FleetCAError: If a file is missing or cannot be parsed
            ChainError: If the key does not belong to the CA certificate
        """
        s = self.settings
        problems = self.fs.validate_file_paths([s.cacert, s.cakey, s.cacrl])
        if problems:
            raise FleetCAError("\n".join(problems))

        certs, cert_errors = load_certs(self.fs.read_text(s.cacert), str(s.cacert))
        key, key_errors = load_key(self.fs.read_text(s.cakey), str(s.cakey))
        crls, crl_errors = load_crls(self.fs.read_text(s.cacrl), str(s.cacrl))
        problems = [str(error) for error in cert_errors + key_errors + crl_errors]
        if problems:
            raise FleetCAError("\n".join(problems))

        if not utils.keys_match(key, certs[0].public_key()):
            raise ChainError(f"{s.cakey} does not match {s.cacert}")

        self.cert_bundle, self.cert, self.key, self.crl_chain = certs, certs[0], key, crls

    # ============================================
    # 📜 ISSUANCE
    # ============================================

    def generate(self, certname: str, subject_alt_names: str = "",
                 authorized: bool = False) -> Tuple[Optional[PrivateKeyTypes], Optional[x509.Certificate]]:
        """
        Issues a key and certificate for a node without a CSR round trip

        Args:
            certname: Lowercase node name
            subject_alt_names: Comma separated alternative names
            authorized: Grant the node access to the CA API

        Returns:
            tuple: (private key, certificate), (None, None) if pre-flight
            checks failed (see ``errors``)
        """
        s = self.settings
        validate_certname(certname)
        paths = self._host_paths(certname)

        self.errors = self.fs.check_for_existing_files(list(paths.values()))
        if self.errors:
            return None, None
        csr_attributes = self._load_csr_attributes()
        if self.errors:
            return None, None

        self.load_ca()
        key, csr = self._key_generator().generate_key_csr(certname, csr_attributes)
        issuer = self._issuer(serial_file=s.serial)
        cert = issuer.issue_certificate(csr, munge_alt_names(subject_alt_names), authorized)

        self.fs.ensure_dirs([s.signeddir, s.certdir, s.publickeydir])
        self.fs.ensure_dir(s.privatekeydir, config.PRIVATE_DIR_PERMISSIONS)
        self.fs.write_file(paths["signed"], cert, config.CERT_PERMISSIONS)
        self.fs.write_file(paths["cert"], cert, config.CERT_PERMISSIONS)
        self.fs.write_file(paths["public_key"], key.public_key(), config.CERT_PERMISSIONS)
        self.fs.write_file(paths["private_key"], key, config.PRIVATE_KEY_PERMISSIONS)
        append_inventory_entry(s.cert_inventory, cert, self.fs)

        logger.info("Generated certificate for %s (serial %x)", certname, cert.serial_number)
        return key, cert

    # ============================================
    # 🚫 REVOCATION
    # ============================================

    def revoke(self, certnames: Iterable[str], reason_code=0) -> List[str]:
        """
        Revokes every serial ever issued to the given certnames

        Infrastructure nodes listed in the infra inventory are also revoked
        on the infrastructure CRL. Both CRLs are built before either is
        written.

        Args:
            certnames: Node names
            reason_code: Revocation reason (see revocation_manager.reason_flag)

        Returns:
            list: Collected errors (unknown certnames)

        Raises:
            FleetCAError: If the infrastructure CRL cannot be parsed
        """
        s = self.settings
        self.errors = []
        self.load_ca()

        inventory, _ = parse_inventory_file(s.cert_inventory)
        infra_nodes = self._infra_nodes()

        serials, infra_serials = [], []
        for certname in certnames:
            record = inventory.get(certname)
            if record is None:
                self.errors.append(f"Could not find serials for '{certname}' in the inventory")
                continue
            node_serials = record.old_serials + [record.serial]
            serials.extend(node_serials)
            if certname in infra_nodes:
                infra_serials.extend(node_serials)

        if not serials:
            return self.errors

        revocation = self._revocation()
        crl_chain = [revocation.revoke(self.crl_chain[0], serials, reason_code)] + self.crl_chain[1:]

        infra_chain = None
        if infra_serials and Path(s.infra_crl).exists():
            infra_chain, crl_errors = load_crls(self.fs.read_text(s.infra_crl), str(s.infra_crl))
            if crl_errors:
                raise FleetCAError("\n".join(str(error) for error in crl_errors))
            infra_chain = [revocation.revoke(infra_chain[0], infra_serials, reason_code)] + infra_chain[1:]

        self.crl_chain = crl_chain
        self.fs.write_file(s.cacrl, self.crl_chain, config.CERT_PERMISSIONS)
        if infra_chain is not None:
            self.fs.write_file(s.infra_crl, infra_chain, config.CERT_PERMISSIONS)
            append_serials(s.infra_serials, infra_serials, self.fs)

        logger.info("Revoked %d serial(s)", len(serials))
        return self.errors

    def prune(self) -> int:
        """
        Removes duplicate entries from the CRLs signed by the CA key

        Returns:
            int: Number of removed entries
        """
        self.load_ca()
        revocation = self._revocation()
        removed_total = 0
        pruned = []
        for crl in self.crl_chain:
            if crl.is_signature_valid(self.key.public_key()):
                crl, removed = revocation.prune(crl)
                removed_total += removed
            pruned.append(crl)

        if removed_total:
            self.crl_chain = pruned
            self.fs.write_file(self.settings.cacrl, self.crl_chain, config.CERT_PERMISSIONS)
        logger.info("Finished pruning the CRL (%d duplicate entries removed)", removed_total)
        return removed_total

    def enable_infra_crl(self) -> List[str]:
        """
        Creates the infrastructure CRL for an existing CA

        The chain is a fresh empty CRL from the CA followed by the rest of
        the CA's CRL chain.

        Returns:
            list: Collected errors, empty on success
        """
        s = self.settings
        if not Path(s.infra_inventory).exists():
            self.errors = [
                f"Please create an inventory file at '{s.infra_inventory}' with the certnames of "
                "your infrastructure nodes before proceeding with infra CRL setup!"
            ]
            return self.errors

        self.errors = self.fs.check_for_existing_files([s.infra_serials, s.infra_crl])
        if self.errors:
            self.errors.append(REPLACE_INFRA_CRL_NOTICE)
            return self.errors

        self.load_ca()
        infra_crl = self._revocation().create_crl(self.cert)
        self.fs.write_file(s.infra_serials, "", config.CERT_PERMISSIONS)
        self.fs.write_file(s.infra_crl, [infra_crl] + self.crl_chain[1:], config.CERT_PERMISSIONS)

        logger.info("Infra CRL files created")
        return self.errors

    # ============================================
    # 🗑️ DELETION
    # ============================================

    def delete(self, certnames: Iterable[str] = (), expired: bool = False, revoked: bool = False,
               all_certs: bool = False) -> Tuple[int, bool]:
        """
        Removes signed certificates from the signed directory

        Only the copies kept by the CA are removed: the ledger and the CRLs
        are left untouched. Problems that do not stop the action (an
        unreadable inventory line, a missing or unreadable certificate) are
        collected in ``errors``.

        Args:
            certnames: Node names whose signed certificate is removed
            expired: Remove certificates whose validity has ended, found
                through the inventory first then by reading the remaining files
            revoked: Remove certificates whose serial is on the CA CRL
            all_certs: Remove every signed certificate

        Returns:
            tuple: (number of deleted files, whether problems were met)

        Raises:
            InvalidNameError: If a certname is not valid
            FleetCAError: If ``revoked`` is set and the CA CRL cannot be read
        """
        s = self.settings
        certnames = [validate_certname(certname) for certname in certnames]
        self.errors = []
        deleted: Set[Path] = set()
        errored = False

        if expired:
            inventory, had_errors = parse_inventory_file(s.cert_inventory)
            errored = had_errors
            now = utils.now_utc()
            expired_names = [name for name, record in inventory.items() if record.not_after < now]
            errored |= self._delete_signed(expired_names, deleted)
            others = [path for path in self._signed_files() if path.stem not in inventory]
            errored |= self._delete_matching(others, lambda cert: utils.cert_not_after(cert) < now, deleted)

        if revoked:
            crl = self._ca_crl()
            errored |= self._delete_matching(
                self._signed_files(), lambda cert: is_revoked(crl, cert.serial_number), deleted
            )

        if certnames:
            errored |= self._delete_signed(certnames, deleted)

        if all_certs:
            for path in self._signed_files():
                self._remove_signed(path, deleted)

        logger.info("%d certificate%s deleted.", len(deleted), "" if len(deleted) == 1 else "s")
        return len(deleted), errored

    def _delete_signed(self, certnames: Iterable[str], deleted: Set[Path]) -> bool:
        errored = False
        for certname in certnames:
            path = self._signed_path(certname)
            if path in deleted:
                continue
            if not path.exists():
                self._delete_error(f"Could not find certificate file at {path}")
                errored = True
                continue
            self._remove_signed(path, deleted)
        return errored

    def _delete_matching(self, paths: Iterable[Path], predicate: Callable[[x509.Certificate], bool],
                         deleted: Set[Path]) -> bool:
        errored = False
        for path in paths:
            if path in deleted:
                continue
            cert = self._read_signed(path)
            if cert is None:
                errored = True
            elif predicate(cert):
                self._remove_signed(path, deleted)
        return errored

    def _read_signed(self, path: Path) -> Optional[x509.Certificate]:
        try:
            certs, problems = load_certs(self.fs.read_text(path), str(path))
        except UnicodeDecodeError:
            certs, problems = [], [path]
        if problems or not certs:
            self._delete_error(f"Error reading certificate at {path}")
            return None
        return certs[0]

    def _remove_signed(self, path: Path, deleted: Set[Path]) -> None:
        logger.info("Deleting certificate at %s", path)
        self.fs.remove_file(path)
        deleted.add(path)

    def _delete_error(self, message: str) -> None:
        logger.error(message)
        self.errors.append(message)

    def _ca_crl(self) -> x509.CertificateRevocationList:
        s = self.settings
        problems = self.fs.validate_file_paths([s.cacrl])
        if problems:
            raise FleetCAError("\n".join(problems))
        crls, crl_errors = load_crls(self.fs.read_text(s.cacrl), str(s.cacrl))
        if crl_errors:
            raise FleetCAError("\n".join(str(error) for error in crl_errors))
        return crls[0]

    # ============================================
    # 🛠️ HELPERS
    # ============================================

    def _key_generator(self, show_progress: bool = False) -> KeyGenerator:
        return KeyGenerator(self.settings.keylength, show_progress, self.digest)

    def _issuer(self, serial_file=None) -> CertificateIssuer:
        return CertificateIssuer(self.key, self.cert, serial_file, self.fs, self.settings.ca_ttl, self.digest)

    def _revocation(self) -> RevocationManager:
        return RevocationManager(self.key, self.settings.ca_ttl, self.digest)

    def _load_csr_attributes(self) -> CsrAttributes:
        csr_attributes, errors = load_csr_attributes(self.settings.csr_attributes)
        self.errors.extend(errors)
        return csr_attributes

    def _signed_path(self, certname: str) -> Path:
        return Path(self.settings.signeddir) / f"{certname}.pem"

    def _signed_files(self) -> List[Path]:
        signeddir = Path(self.settings.signeddir)
        return sorted(signeddir.glob("*.pem")) if signeddir.is_dir() else []

    def _host_paths(self, certname: str) -> dict:
        s = self.settings
        return {
            "signed": self._signed_path(certname),
            "cert": Path(s.certdir) / f"{certname}.pem",
            "private_key": Path(s.privatekeydir) / f"{certname}.pem",
            "public_key": Path(s.publickeydir) / f"{certname}.pem",
        }

    def _infra_nodes(self) -> set:
        path = Path(self.settings.infra_inventory)
        if not path.exists():
            return set()
        return {line.strip() for line in self.fs.read_text(path).splitlines() if line.strip()}


__all__ = ['LocalCertificateAuthority']
