import pytest
from cryptography.hazmat.primitives import hashes

from fleetca.config import CASettings
from fleetca.intermediate_ca import create_intermediate_cert
from fleetca.keygen import create_private_key
from fleetca.revocation_manager import create_crl_for
from fleetca.root_ca import create_root_cert

# Small keys keep the suite fast
TEST_KEY_LENGTH = 1024
ONE_YEAR = 365 * 24 * 3600


@pytest.fixture(scope="session")
def root_key():
    return create_private_key(TEST_KEY_LENGTH)


@pytest.fixture(scope="session")
def ca_key():
    return create_private_key(TEST_KEY_LENGTH)


@pytest.fixture(scope="session")
def node_key():
    return create_private_key(TEST_KEY_LENGTH)


@pytest.fixture(scope="session")
def other_key():
    return create_private_key(TEST_KEY_LENGTH)


@pytest.fixture(scope="session")
def root_cert(root_key):
    return create_root_cert(root_key, "Test Root CA", ONE_YEAR, hashes.SHA256())


@pytest.fixture(scope="session")
def ca_cert(root_key, root_cert, ca_key):
    return create_intermediate_cert(
        root_key, root_cert, "Test Intermediate CA", ONE_YEAR, hashes.SHA256(),
        public_key=ca_key.public_key()
    )


@pytest.fixture
def root_crl(root_cert, root_key):
    return create_crl_for(root_cert, root_key, ONE_YEAR)


@pytest.fixture
def ca_crl(ca_cert, ca_key):
    return create_crl_for(ca_cert, ca_key, ONE_YEAR)


@pytest.fixture
def settings(tmp_path):
    return CASettings.from_mapping({
        "cadir": str(tmp_path / "ca"),
        "ssldir": str(tmp_path / "ssl"),
        "certname": "ca.example.com",
        "keylength": TEST_KEY_LENGTH,
        "ca_ttl": "30d",
    })
