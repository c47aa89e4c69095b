import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.x509.oid import NameOID

from fleetca.errors import CryptoError, InvalidNameError
from fleetca.keygen import (
    KeyGenerator, create_csr, create_private_key, extension_requests_of, load_csr_attributes,
    load_private_key, serialize_private_key, validate_certname
)
from fleetca.models import CsrAttributes, ExtensionRequest


def test_private_key_length():
    key = create_private_key(1024)
    assert key.key_size == 1024


def test_rejected_key_length_raises_crypto_error():
    with pytest.raises(CryptoError):
        create_private_key(256)


def test_private_key_roundtrip(node_key):
    loaded = load_private_key(serialize_private_key(node_key))
    assert loaded.private_numbers() == node_key.private_numbers()


def test_load_garbage_key():
    with pytest.raises(CryptoError):
        load_private_key("not a key")


@pytest.mark.parametrize("name", ["node1", "web-01.example.com", "a_b"])
def test_csr_subject_is_cn(node_key, name):
    csr = create_csr(name, node_key)
    assert csr.subject.rfc4514_string() == f"CN={name}"
    assert csr.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value == name
    assert csr.is_signature_valid


def test_csr_is_deterministic_apart_from_signature(node_key):
    first = create_csr("node1", node_key)
    second = create_csr("node1", node_key)
    assert first.subject == second.subject
    assert first.public_key() == second.public_key()
    assert list(first.extensions) == list(second.extensions)


@pytest.mark.parametrize("name", ["", "Node1", "has space", "a/b", "node*1", "node:1", "node@x", "a~b"])
def test_invalid_certnames(node_key, name):
    with pytest.raises(InvalidNameError):
        validate_certname(name)
    with pytest.raises(InvalidNameError):
        create_csr(name, node_key)


def test_certname_never_lowercased():
    with pytest.raises(InvalidNameError) as exc:
        validate_certname("UPPER")
    assert "lower case" in str(exc.value)
    assert validate_certname("lower") == "lower"


def test_extension_requests_roundtrip(node_key):
    requests = [
        ExtensionRequest.utf8("1.3.6.1.4.1.34380.1.1.1", "ED803750-E3C7-44F5-BB08-41A04433FE2E"),
        ExtensionRequest.utf8("1.3.6.1.4.1.34380.1.1.2", "production", critical=True),
    ]
    csr = create_csr("node1", node_key, requests, digest=hashes.SHA512())
    assert extension_requests_of(csr) == requests


def test_csr_without_requests_has_no_extensions(node_key):
    assert extension_requests_of(create_csr("node1", node_key)) == []


def test_csr_custom_attributes(node_key):
    csr = create_csr("node1", node_key, attributes=[("1.2.840.113549.1.9.7", "s3cret")])
    challenge = csr.attributes.get_attribute_for_oid(x509.ObjectIdentifier("1.2.840.113549.1.9.7"))
    assert challenge.value == b"s3cret"


# ============================================
# csr_attributes file
# ============================================

def test_load_csr_attributes(tmp_path):
    path = tmp_path / "csr_attributes.yaml"
    path.write_text(
        "extension_requests:\n"
        "  1.3.6.1.4.1.34380.1.1.1: ED803750-E3C7-44F5-BB08-41A04433FE2E\n"
        "  1.3.6.1.4.1.34380.1.1.2: production\n"
        "custom_attributes:\n"
        "  1.2.840.113549.1.9.7: 342thbjkt82094y0uthhor289jnqthpc2290\n"
    )
    attributes, errors = load_csr_attributes(path)
    assert errors == []
    assert attributes.extension_requests == [
        ExtensionRequest.utf8("1.3.6.1.4.1.34380.1.1.1", "ED803750-E3C7-44F5-BB08-41A04433FE2E"),
        ExtensionRequest.utf8("1.3.6.1.4.1.34380.1.1.2", "production"),
    ]
    assert attributes.custom_attributes == [("1.2.840.113549.1.9.7", "342thbjkt82094y0uthhor289jnqthpc2290")]


def test_missing_or_empty_csr_attributes(tmp_path):
    assert load_csr_attributes(tmp_path / "missing.yaml") == (CsrAttributes(), [])
    (tmp_path / "empty.yaml").write_text("")
    assert load_csr_attributes(tmp_path / "empty.yaml") == (CsrAttributes(), [])


@pytest.mark.parametrize("content, message", [
    ("extension_requests:\n  funny_extension: value\n", "Invalid extension_requests name 'funny_extension'"),
    ("extension_requests:\n  2.5.29.17: DNS:evil\n", "Cannot request standard X.509 extension 2.5.29.17"),
    ("custom_attributes: [1, 2]\n", "'custom_attributes' must be a mapping"),
    ("- just\n- a list\n", "must contain a mapping"),
    ("extension_requests: {unclosed\n", "Could not parse"),
])
def test_bad_csr_attributes(tmp_path, content, message):
    path = tmp_path / "csr_attributes.yaml"
    path.write_text(content)
    attributes, errors = load_csr_attributes(path)
    assert attributes == CsrAttributes()
    assert len(errors) == 1 and message in errors[0]


def test_key_generator_embeds_csr_attributes():
    attributes = CsrAttributes(
        extension_requests=[ExtensionRequest.utf8("1.3.6.1.4.1.34380.1.1.1", "uuid")],
        custom_attributes=[("1.2.840.113549.1.9.7", "pw")],
    )
    key, csr = KeyGenerator(1024).generate_key_csr("node1", attributes)
    assert key.key_size == 1024
    assert csr.public_key().public_numbers() == key.public_key().public_numbers()
    assert extension_requests_of(csr) == attributes.extension_requests
    assert csr.attributes.get_attribute_for_oid(x509.ObjectIdentifier("1.2.840.113549.1.9.7")).value == b"pw"

    with pytest.raises(InvalidNameError):
        KeyGenerator(1024).generate_key_csr("Node1")
