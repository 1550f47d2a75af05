import pytest

from stackbind.secrets import ciphers


@pytest.fixture(scope="session")
def rsa_keys():
    """RSA 2048 key pair, generated once per session."""
    return ciphers.generate_rsa_key_pair(2048)


@pytest.fixture(scope="session")
def ed25519_keys():
    return ciphers.generate_ed25519_key_pair()


@pytest.fixture(params=["rsa", "ed25519"])
def key_pair(request, rsa_keys, ed25519_keys):
    """Run a test once per supported key family."""
    return rsa_keys if request.param == "rsa" else ed25519_keys
