"""
Administrative edits of a secrets descriptor file.

Edits re-encrypt only the value being written; every other value is kept
byte-for-byte so the file diff stays minimal. Each value is encrypted once
for the owner's key and once per known recipient key. Callers serialize
edits against one file (one invocation at a time).
"""

import logging
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple, Union

from ..core.exceptions import CryptoError, SecretNotFoundError, StackbindError
from . import ciphers
from .descriptor import (
    SCHEMA_V2,
    EncryptedValue,
    EnvironmentSecrets,
    RecipientSecrets,
    SecretsDescriptor,
    load_secrets_descriptor,
    save_secrets_descriptor,
)
from .store import SHARED_SCOPE, lookup_encrypted_value, readable_by

logger = logging.getLogger("stackbind.secrets.management")


def _scope_values(holder, environment: Optional[str], create: bool = False):
    """Values map of one scope of a descriptor or recipient; None when absent."""
    if environment is None:
        return holder.values
    if create:
        return holder.environments.setdefault(environment, EnvironmentSecrets()).values
    scoped = holder.environments.get(environment)
    return scoped.values if scoped is not None else None


def _drop_if_empty(holder, environment: Optional[str]) -> bool:
    scoped = holder.environments.get(environment) if environment is not None else None
    if scoped is not None and not scoped.values:
        del holder.environments[environment]
        return True
    return False


class SecretsManager:
    def __init__(
        self,
        path: Union[str, Path],
        public_key=None,
        private_key=None,
        descriptor: Optional[SecretsDescriptor] = None,
    ):
        self.path = Path(path)
        self.public_key = ciphers.load_public_key(public_key) if public_key is not None else None
        self.private_key = (
            ciphers.load_private_key(private_key) if private_key is not None else None
        )
        self.descriptor = descriptor if descriptor is not None else load_secrets_descriptor(path)

    def add_secret(self, name: str, value: str, environment: Optional[str] = None) -> None:
        """
        Encrypt and store one value for the owner and every recipient, replacing an
        existing value of the same name and scope.
        The first environment-scoped value upgrades the document to schema 2.0.
        """
        if self.public_key is None:
            raise CryptoError(f"No public key configured to encrypt secret {name!r}")

        if environment is not None and self.descriptor.schemaVersion != SCHEMA_V2:
            logger.info(f"Upgrading secrets schema to {SCHEMA_V2}")
            self.descriptor.schemaVersion = SCHEMA_V2

        _scope_values(self.descriptor, environment, create=True)[name] = ciphers.encrypt(
            self.public_key, value
        )
        for key, recipient in self.descriptor.recipients.items():
            _scope_values(recipient, environment, create=True)[name] = ciphers.encrypt(key, value)

        scope = f"environment {environment}" if environment else "shared scope"
        logger.info(
            f"Stored secret {name} in {scope} "
            f"for {1 + len(self.descriptor.recipients)} keys"
        )

    def list_secrets(self, environment: Optional[str] = None) -> List[str]:
        """Sorted names in one scope (shared values when environment is None)."""
        if environment is None:
            return sorted(self.descriptor.values)
        scoped = self.descriptor.environment(environment)
        return sorted(scoped.values) if scoped else []

    def list_all(self) -> Dict[str, List[str]]:
        """Every scope with its sorted secret names."""
        result = {SHARED_SCOPE: self.list_secrets()}
        for env in sorted(self.descriptor.environments):
            result[env] = self.list_secrets(env)
        return result

    def delete_secret(self, name: str, environment: Optional[str] = None) -> None:
        """
        Remove one value. Removing the last value of an environment drops the environment.
        """
        values = _scope_values(self.descriptor, environment)
        if values is None or name not in values:
            if environment is None:
                raise SecretNotFoundError(name, [SHARED_SCOPE])
            raise SecretNotFoundError(name, [environment], environment=environment)

        del values[name]
        for recipient in self.descriptor.recipients.values():
            recipient_values = _scope_values(recipient, environment)
            if recipient_values is not None:
                recipient_values.pop(name, None)
                _drop_if_empty(recipient, environment)

        if _drop_if_empty(self.descriptor, environment):
            logger.info(f"Environment {environment} has no secrets left, removed")
        logger.info(f"Deleted secret {name} from {environment or SHARED_SCOPE}")

    def reveal_secret(self, name: str, environment: Optional[str] = None) -> str:
        """Decrypt one value; environment is an explicit scope, without fallback."""
        if self.private_key is None:
            raise CryptoError(f"No private key configured to decrypt secret {name!r}")
        descriptor = readable_by(self.descriptor, self.private_key)
        chunks, _ = lookup_encrypted_value(descriptor, name, None, environment)
        return ciphers.decrypt_string(self.private_key, chunks)

    # ===========================================
    # Recipients
    # ===========================================

    def known_public_keys(self) -> List[str]:
        """Canonical SSH form of the owner's key followed by every recipient key."""
        keys = [ciphers.canonical_public_key(self.public_key)] if self.public_key else []
        return keys + sorted(k for k in self.descriptor.recipients if k not in keys)

    def add_public_key(self, public_key) -> bool:
        """
        Encrypt every value for one more key.

        The same key under another alias (SSH comment) or in PEM form is
        recognized and not added twice. Values already stored for other keys
        are left untouched.

        Returns:
            True when the key was new
        """
        key = ciphers.canonical_public_key(public_key)
        if key in self.known_public_keys():
            logger.info("Public key is already a recipient, nothing to re-encrypt")
            return False
        if self.private_key is None:
            raise CryptoError("A private key is required to share secrets with a new key")

        recipient = RecipientSecrets()
        for environment, name, chunks in self._readable_values():
            plaintext = ciphers.decrypt_string(self.private_key, chunks)
            _scope_values(recipient, environment, create=True)[name] = ciphers.encrypt(
                key, plaintext
            )
        self.descriptor.recipients[key] = recipient
        logger.info(f"Added recipient key, {len(self.descriptor.recipients)} recipients in total")
        return True

    def remove_public_key(self, public_key) -> None:
        """Drop the values encrypted for one recipient key; nothing else is re-encrypted."""
        key = ciphers.canonical_public_key(public_key)
        if key not in self.descriptor.recipients:
            raise StackbindError("Public key is not a recipient of this secrets file")
        del self.descriptor.recipients[key]
        logger.info(f"Removed recipient key, {len(self.descriptor.recipients)} left")

    def _readable_values(self) -> Iterator[Tuple[Optional[str], str, EncryptedValue]]:
        descriptor = readable_by(self.descriptor, self.private_key)
        for name, chunks in descriptor.values.items():
            yield None, name, chunks
        for environment, scoped in descriptor.environments.items():
            for name, chunks in scoped.values.items():
                yield environment, name, chunks

    def save(self) -> None:
        save_secrets_descriptor(self.descriptor, self.path)
        logger.debug(f"Saved secrets to {self.path}")
