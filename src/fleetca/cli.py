"""
Command line interface
fleetca [--log-level LEVEL] <action> [options]
"""

import argparse
import logging
import sys
from typing import Callable, Dict, List, Optional

from . import __version__, config, utils
from .config import CASettings
from .errors import FleetCAError, InvalidNameError
from .keygen import validate_certname
from .local_ca import LocalCertificateAuthority
from .logger import setup_logging
from .revocation_manager import reason_flag

logger = logging.getLogger(__name__)

# delete met problems that did not stop it (missing or unreadable certificates)
DELETE_PARTIAL_EXIT_CODE = 24


# ============================================
# 🧰 PARSER
# ============================================

def build_parser() -> argparse.ArgumentParser:
    """Builds the argument parser with one sub-command per action"""
    parser = argparse.ArgumentParser(
        prog="fleetca",
        description="Manage the private certificate authority of a fleet of nodes."
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--log-level", default=None, help=f"Log level (default: {config.LOG_LEVEL})")
    parser.add_argument("--log-file", default=None, help="Also write the log to this file")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--cadir", required=True, help="CA directory")
    common.add_argument("--ssldir", default=None, help="Host SSL directory (default: <cadir>/../ssl)")
    common.add_argument("--digest", default=None, help="Signing digest (default: SHA256)")
    common.add_argument("--ca-ttl", default=None, help="Lifetime of certificates and CRLs (ex: 15y, 90d)")
    common.add_argument("--keylength", type=int, default=None, help="RSA key length in bits")

    actions = parser.add_subparsers(dest="action", metavar="<action>")
    actions.required = True

    setup = actions.add_parser("setup", parents=[common], help="Create a new root and intermediate CA")
    setup.add_argument("--certname", default=None, help="Name of the CA server certificate")
    setup.add_argument("--ca-name", default=None, help="Common name of the intermediate CA")
    setup.add_argument("--root-ca-name", default=None, help="Common name of the root CA")
    setup.add_argument("--subject-alt-names", default="", help="Alternative names of the server certificate")
    setup.add_argument("--csr-attributes", default=None, help="YAML file of extension requests for the server CSR")

    generate_csr = actions.add_parser("generate-csr", parents=[common],
                                      help="Create the intermediate key and a CSR for an external root")
    generate_csr.add_argument("--output-dir", required=True, help="Existing directory receiving ca.key and ca.csr")
    generate_csr.add_argument("--ca-name", default=None, help="Common name of the intermediate CA")

    import_ = actions.add_parser("import", parents=[common], help="Import an external CA bundle")
    import_.add_argument("--cert-bundle", required=True, help="PEM CA certificate followed by its issuers")
    import_.add_argument("--private-key", required=True, help="PEM private key of the CA certificate")
    import_.add_argument("--crl-chain", default=None, help="PEM CRLs, the CA's issuer CRL first")

    generate = actions.add_parser("generate", parents=[common], help="Generate keys and certificates offline")
    generate.add_argument("--certname", required=True, help="Comma separated node names")
    generate.add_argument("--subject-alt-names", default="", help="Alternative names of the certificates")
    generate.add_argument("--ca-client", action="store_true", help="Allow the nodes to use the CA API")
    generate.add_argument("--csr-attributes", default=None, help="YAML file of extension requests for the CSRs")

    revoke = actions.add_parser("revoke", parents=[common], help="Revoke every certificate of nodes")
    revoke.add_argument("--certname", required=True, help="Comma separated node names")
    revoke.add_argument("--reason", default="0", help="Revocation reason, code or name (default: 0)")

    actions.add_parser("prune", parents=[common], help="Remove duplicate entries from the CA CRL")

    delete = actions.add_parser("delete", parents=[common], help="Delete signed certificates from disk")
    delete.add_argument("--expired", action="store_true", help="Delete expired signed certificates")
    delete.add_argument("--revoked", action="store_true", help="Delete signed certificates already revoked")
    delete.add_argument("--certname", default=None, help="Comma separated node names")
    delete.add_argument("--all", dest="all_certs", action="store_true", help="Delete every signed certificate")

    enable = actions.add_parser("enable", parents=[common], help="Enable optional CA features")
    enable.add_argument("--infracrl", action="store_true", help="Create the infrastructure CRL")

    return parser


def settings_from_args(args: argparse.Namespace) -> CASettings:
    """Maps command line options onto CA settings"""
    mapping = {"cadir": args.cadir}
    for option in ("ssldir", "digest", "ca_ttl", "keylength", "ca_name", "root_ca_name",
                   "subject_alt_names", "csr_attributes"):
        value = getattr(args, option, None)
        if value not in (None, ""):
            mapping[option] = value
    if args.action == "setup" and args.certname:
        mapping["certname"] = args.certname
    return CASettings.from_mapping(mapping)


def _certnames(value: str) -> List[str]:
    return [name.strip() for name in value.split(",") if name.strip()]


def _invalid_names(certnames: List[str]) -> List[str]:
    errors = []
    for certname in certnames:
        try:
            validate_certname(certname)
        except InvalidNameError as e:
            errors.append(str(e))
    return errors


def _report(errors: List[str]) -> int:
    if errors:
        utils.print_errors(errors)
        return 1
    return 0


# ============================================
# 🎬 ACTIONS
# ============================================

def run_setup(args, settings: CASettings) -> int:
    errors = _invalid_names([settings.certname])
    if errors:
        return _report(errors)

    utils.print_header(f"{config.CLI_SYMBOLS['root']} CA setup")
    ca = LocalCertificateAuthority(settings)
    if ca.setup(show_progress=True):
        return _report(ca.errors)

    utils.display_cert_info(ca.cert)
    utils.print_success(f"Generation succeeded. Find your files in {settings.cadir}")
    return 0


def run_generate_csr(args, settings: CASettings) -> int:
    ca = LocalCertificateAuthority(settings)
    if ca.generate_csr(args.output_dir):
        return _report(ca.errors)
    utils.print_success(f"Generation succeeded. Find your files in {args.output_dir}")
    utils.print_info("Have ca.csr signed by your root, then install the result with the import action")
    return 0


def run_import(args, settings: CASettings) -> int:
    utils.print_header(f"{config.CLI_SYMBOLS['intermediate']} CA import")
    ca = LocalCertificateAuthority(settings)
    errors = ca.import_ca(args.cert_bundle, args.private_key, args.crl_chain)
    for warning in ca.warnings:
        utils.print_warning(warning)
    if errors:
        return _report(errors)

    utils.display_cert_info(ca.cert)
    utils.print_success(f"Import succeeded. Find your files in {settings.cadir}")
    return 0


def run_generate(args, settings: CASettings) -> int:
    certnames = _certnames(args.certname)
    errors = _invalid_names(certnames) or ([] if certnames else ["No certname given"])
    if errors:
        return _report(errors)

    ca = LocalCertificateAuthority(settings)
    for certname in certnames:
        key, cert = ca.generate(certname, args.subject_alt_names, authorized=args.ca_client)
        if cert is None:
            errors.extend(ca.errors)
            continue
        utils.print_success(f"Successfully saved certificate for {certname}")
    return _report(errors)


def run_revoke(args, settings: CASettings) -> int:
    certnames = _certnames(args.certname)
    errors = _invalid_names(certnames) or ([] if certnames else ["No certname given"])
    try:
        reason = reason_flag(args.reason)
    except ValueError as e:
        errors.append(str(e))
    if errors:
        return _report(errors)

    ca = LocalCertificateAuthority(settings)
    errors = ca.revoke(certnames, reason)
    for certname in certnames:
        if not any(certname in error for error in errors):
            utils.print_success(f"Revoked certificates of {certname}")
    return _report(errors)


def run_prune(args, settings: CASettings) -> int:
    removed = LocalCertificateAuthority(settings).prune()
    utils.print_success(f"Finished pruning the CRL, {removed} duplicate entries removed")
    return 0


def run_delete(args, settings: CASettings) -> int:
    certnames = _certnames(args.certname or "")
    if not (args.expired or args.revoked or certnames or args.all_certs):
        return _report(["Must pass one of the valid flags to determine which certs to delete"])
    errors = _invalid_names(certnames)
    if errors:
        return _report(errors)

    ca = LocalCertificateAuthority(settings)
    count, errored = ca.delete(certnames, expired=args.expired, revoked=args.revoked, all_certs=args.all_certs)
    for error in ca.errors:
        utils.print_warning(error)
    utils.print_info(f"{count} certificate{'' if count == 1 else 's'} deleted.")
    return DELETE_PARTIAL_EXIT_CODE if errored else 0


def run_enable(args, settings: CASettings) -> int:
    if not args.infracrl:
        utils.print_warning("Nothing to enable, pass --infracrl to create the infrastructure CRL")
        return 0
    ca = LocalCertificateAuthority(settings)
    if ca.enable_infra_crl():
        return _report(ca.errors)
    utils.print_success("Infra CRL files created")
    return 0


ACTIONS: Dict[str, Callable[[argparse.Namespace, CASettings], int]] = {
    "setup": run_setup,
    "generate-csr": run_generate_csr,
    "import": run_import,
    "generate": run_generate,
    "revoke": run_revoke,
    "prune": run_prune,
    "delete": run_delete,
    "enable": run_enable,
}


def main(argv: Optional[List[str]] = None) -> int:
    """
    Entry point of the ``fleetca`` command

    Returns:
        int: 0 on success, 1 when errors were reported, 24 when delete
        only partly succeeded
    """
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level, args.log_file)

    try:
        settings = settings_from_args(args)
        return ACTIONS[args.action](args, settings)
    except (FleetCAError, ValueError) as e:
        logger.debug("Action %s failed", args.action, exc_info=True)
        return _report([str(e)])


if __name__ == "__main__":
    sys.exit(main())
