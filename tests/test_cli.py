import pytest

from fleetca.cli import build_parser, main, settings_from_args
from fleetca.ledger import next_serial, parse_inventory_file
from fleetca.revocation_manager import crl_number
from fleetca.trust_chain import load_crls

from _util import pem


@pytest.fixture
def dirs(tmp_path):
    return ["--cadir", str(tmp_path / "ca"), "--ssldir", str(tmp_path / "ssl"), "--keylength", "1024"]


@pytest.fixture
def ready(dirs):
    assert main(["setup", *dirs, "--certname", "ca.example.com", "--ca-ttl", "30d"]) == 0
    return dirs


def test_parser_requires_an_action():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_settings_from_args(tmp_path):
    args = build_parser().parse_args([
        "setup", "--cadir", str(tmp_path), "--certname", "ca-server", "--ca-name", "Ops CA",
        "--digest", "sha384", "--ca-ttl", "2y",
    ])
    settings = settings_from_args(args)
    assert settings.certname == "ca-server"
    assert settings.ca_name == "Ops CA"
    assert settings.digest == "sha384"
    assert settings.ca_ttl == 2 * 365 * 86400
    assert settings.cacert == tmp_path / "ca_crt.pem"


def test_setup_then_generate(ready, tmp_path):
    serial = next_serial(tmp_path / "ca" / "serial")
    assert main(["generate", *ready, "--certname", "node1,node2", "--subject-alt-names", "alias"]) == 0
    assert next_serial(tmp_path / "ca" / "serial") == serial + 2
    inventory, _ = parse_inventory_file(tmp_path / "ca" / "inventory.txt")
    assert {"node1", "node2"} <= set(inventory)


def test_setup_twice_fails(ready):
    assert main(["setup", *ready]) == 1


def test_generate_rejects_uppercase_certname(ready, tmp_path):
    assert main(["generate", *ready, "--certname", "Node1"]) == 1
    assert not (tmp_path / "ca" / "signed" / "Node1.pem").exists()


def test_generate_without_ca(dirs):
    assert main(["generate", *dirs, "--certname", "node1"]) == 1


def test_revoke_and_prune(ready, tmp_path):
    assert main(["generate", *ready, "--certname", "node1"]) == 0
    assert main(["revoke", *ready, "--certname", "node1", "--reason", "key_compromise"]) == 0
    assert main(["revoke", *ready, "--certname", "node1"]) == 0
    assert main(["prune", *ready]) == 0

    crl = load_crls((tmp_path / "ca" / "ca_crl.pem").read_text())[0][0]
    assert len(crl) == 1
    assert crl_number(crl) == 3


def test_revoke_unknown_node(ready):
    assert main(["revoke", *ready, "--certname", "ghost"]) == 1


def test_revoke_bad_reason(ready):
    assert main(["revoke", *ready, "--certname", "node1", "--reason", "bogus"]) == 1


def test_enable_infracrl(ready, tmp_path):
    assert main(["enable", *ready, "--infracrl"]) == 1
    (tmp_path / "ca" / "infra_crl.pem").unlink()
    (tmp_path / "ca" / "infra_serials").unlink()
    assert main(["enable", *ready, "--infracrl"]) == 0
    assert (tmp_path / "ca" / "infra_crl.pem").exists()


def test_import(tmp_path, dirs, ca_cert, root_cert, ca_key, root_crl, other_key):
    bundle, key, chain = tmp_path / "bundle.pem", tmp_path / "key.pem", tmp_path / "chain.pem"
    bundle.write_text(pem(ca_cert, root_cert))
    chain.write_text(pem(root_crl))

    key.write_text(pem(other_key))
    args = ["import", *dirs, "--cert-bundle", str(bundle), "--private-key", str(key), "--crl-chain", str(chain)]
    assert main(args) == 1
    assert not (tmp_path / "ca").exists()

    key.write_text(pem(ca_key))
    assert main(args) == 0
    assert (tmp_path / "ca" / "ca_crt.pem").read_text() == pem(ca_cert, root_cert)


def test_bad_digest_is_reported(dirs):
    assert main(["setup", *dirs, "--digest", "md5"]) == 1


def test_generate_csr(dirs, tmp_path):
    output = tmp_path / "csr"
    output.mkdir()
    assert main(["generate-csr", *dirs, "--output-dir", str(output), "--ca-name", "Ops CA"]) == 0
    assert sorted(p.name for p in output.iterdir()) == ["ca.csr", "ca.key"]
    assert main(["generate-csr", *dirs, "--output-dir", str(output)]) == 1
    assert main(["generate-csr", *dirs, "--output-dir", str(tmp_path / "missing")]) == 1


def test_generate_with_csr_attributes(ready, tmp_path):
    attributes = tmp_path / "attributes.yaml"
    attributes.write_text("extension_requests:\n  1.3.6.1.4.1.34380.1.1.1: uuid\n")
    assert main(["generate", *ready, "--certname", "node1", "--csr-attributes", str(attributes)]) == 0

    attributes.write_text("extension_requests:\n  not-an-oid: uuid\n")
    assert main(["generate", *ready, "--certname", "node2", "--csr-attributes", str(attributes)]) == 1
    assert not (tmp_path / "ca" / "signed" / "node2.pem").exists()


def test_delete(ready, tmp_path):
    signed = tmp_path / "ca" / "signed"
    assert main(["generate", *ready, "--certname", "node1,node2"]) == 0

    assert main(["delete", *ready]) == 1
    assert main(["delete", *ready, "--certname", "node1"]) == 0
    assert not (signed / "node1.pem").exists()

    # a missing certificate does not stop the others
    assert main(["delete", *ready, "--certname", "node1,node2"]) == 24
    assert not (signed / "node2.pem").exists()

    assert main(["delete", *ready, "--all"]) == 0
    assert list(signed.iterdir()) == []
