from pathlib import Path

import pytest

from stackbind.core.exceptions import SecretNotFoundError
from stackbind.secrets import ciphers
from stackbind.secrets.descriptor import (
    SecretsDescriptor,
    load_secrets_descriptor,
    save_secrets_descriptor,
)
from stackbind.secrets.store import SecretsStore, get_secret_value, lookup_encrypted_value


@pytest.fixture
def descriptor(ed25519_keys):
    _, public_key = ed25519_keys
    return SecretsDescriptor.model_validate(
        {
            "schemaVersion": "2.0",
            "values": {"A": ciphers.encrypt(public_key, "x")},
            "environments": {
                "prod": {"values": {"A": ciphers.encrypt(public_key, "y")}},
                "staging": {"values": {"A": ciphers.encrypt(public_key, "z")}},
            },
        }
    )


class TestLookupOrder:
    def test_environment_value_wins_over_shared(self, descriptor, ed25519_keys):
        private_key, _ = ed25519_keys
        assert get_secret_value(descriptor, "A", "prod", None, private_key) == "y"

    def test_unknown_environment_falls_back_to_shared(self, descriptor, ed25519_keys):
        private_key, _ = ed25519_keys
        assert get_secret_value(descriptor, "A", "dev", None, private_key) == "x"

    def test_distinct_environments_yield_distinct_values(self, descriptor, ed25519_keys):
        private_key, _ = ed25519_keys
        prod = get_secret_value(descriptor, "A", "prod", None, private_key)
        staging = get_secret_value(descriptor, "A", "staging", None, private_key)
        assert prod != staging

    def test_explicit_environment_overrides_ambient(self, descriptor, ed25519_keys):
        private_key, _ = ed25519_keys
        assert get_secret_value(descriptor, "A", "prod", "staging", private_key) == "z"

    def test_explicit_environment_does_not_fall_back(self, descriptor):
        with pytest.raises(SecretNotFoundError) as exc:
            lookup_encrypted_value(descriptor, "A", "prod", "qa")
        assert exc.value.searched == ["qa"]

    def test_not_found_names_every_searched_scope(self, descriptor):
        with pytest.raises(SecretNotFoundError) as exc:
            lookup_encrypted_value(descriptor, "MISSING", "prod")
        assert exc.value.name == "MISSING"
        assert exc.value.searched == ["prod", "shared"]
        assert "MISSING" in str(exc.value)
        assert "prod, shared" in str(exc.value)


def test_v1_document_parses_without_environments(tmp_path: Path, ed25519_keys):
    private_key, public_key = ed25519_keys
    chunks = ciphers.encrypt(public_key, "shared-value")
    v1_path = tmp_path / "v1.yaml"
    v1_path.write_text(
        "schemaVersion: '1.0'\nvalues:\n  KEY:\n" + "".join(f"    - '{c}'\n" for c in chunks),
        encoding="utf-8",
    )

    v1 = load_secrets_descriptor(v1_path)
    v2 = SecretsDescriptor(schemaVersion="2.0", values={"KEY": chunks}, environments={})

    assert v1.environments == {}
    for env in (None, "prod"):
        assert get_secret_value(v1, "KEY", env, None, private_key) == get_secret_value(
            v2, "KEY", env, None, private_key
        )


def test_unquoted_schema_version_and_string_value(tmp_path: Path):
    path = tmp_path / "secrets.yaml"
    path.write_text("schemaVersion: 2.0\nvalues:\n  KEY: abc\n", encoding="utf-8")

    loaded = load_secrets_descriptor(path)

    assert loaded.schemaVersion == "2.0"
    assert loaded.values == {"KEY": ["abc"]}


def test_save_keeps_v1_layout(tmp_path: Path):
    path = tmp_path / "secrets.yaml"
    save_secrets_descriptor(SecretsDescriptor(values={"KEY": ["abc"]}), path)

    content = path.read_text(encoding="utf-8")
    assert "environments" not in content
    assert load_secrets_descriptor(path).values == {"KEY": ["abc"]}


def test_missing_file_is_empty_descriptor(tmp_path: Path):
    loaded = load_secrets_descriptor(tmp_path / "absent.yaml")
    assert loaded.values == {}
    assert loaded.environments == {}


def test_store_caches_and_switches_environment(descriptor, ed25519_keys):
    private_key, _ = ed25519_keys
    store = SecretsStore(descriptor, private_key, environment="prod")

    assert store.get_secret_value("A") == "y"
    assert store.get_secret_value("A", explicit_env="staging") == "z"
    assert store.for_environment("dev").get_secret_value("A") == "x"
