"""
Environment-aware secret lookup.

Resolution order for a secret name:
1. an explicit environment, when given, is the only scope searched
2. the ambient environment, when the descriptor has an entry for it
3. the shared values
"""

import logging
import threading
from pathlib import Path
from typing import Dict, Optional, Tuple

from ..core.exceptions import CryptoError, SecretNotFoundError
from ..core.logging_config import secret_masking_filter
from . import ciphers
from .descriptor import EncryptedValue, SecretsDescriptor, load_secrets_descriptor

logger = logging.getLogger("stackbind.secrets")

SHARED_SCOPE = "shared"


def lookup_encrypted_value(
    descriptor: SecretsDescriptor,
    name: str,
    ambient_env: Optional[str] = None,
    explicit_env: Optional[str] = None,
) -> Tuple[EncryptedValue, str]:
    """
    Find the encrypted value of a secret.

    Returns:
        (chunks, scope) where scope is the environment name or "shared"

    Raises:
        SecretNotFoundError: naming every scope that was searched
    """
    if explicit_env is not None:
        scoped = descriptor.environment(explicit_env)
        if scoped is not None and name in scoped.values:
            return scoped.values[name], explicit_env
        raise SecretNotFoundError(name, [explicit_env], environment=explicit_env)

    searched = []
    if ambient_env:
        searched.append(ambient_env)
        scoped = descriptor.environment(ambient_env)
        if scoped is not None and name in scoped.values:
            return scoped.values[name], ambient_env

    searched.append(SHARED_SCOPE)
    if name in descriptor.values:
        return descriptor.values[name], SHARED_SCOPE

    raise SecretNotFoundError(name, searched, environment=ambient_env or None)


def readable_by(descriptor: SecretsDescriptor, private_key) -> SecretsDescriptor:
    """The part of the descriptor encrypted for this private key."""
    if private_key is None or not descriptor.recipients:
        return descriptor
    key = ciphers.load_private_key(private_key)
    return descriptor.for_recipient(ciphers.canonical_public_key(key))


def get_secret_value(
    descriptor: SecretsDescriptor,
    name: str,
    ambient_env: Optional[str],
    explicit_env: Optional[str],
    private_key,
) -> str:
    """Look up and decrypt one secret."""
    descriptor = readable_by(descriptor, private_key)
    chunks, scope = lookup_encrypted_value(descriptor, name, ambient_env, explicit_env)
    value = ciphers.decrypt_string(private_key, chunks)
    secret_masking_filter.register([value])
    logger.debug(f"Resolved secret {name} from scope {scope}")
    return value


class SecretsStore:
    """
    Read-only view of a secrets descriptor bound to one ambient environment.

    Decrypted values are cached per (name, scope) for the lifetime of the store.
    """

    def __init__(
        self,
        descriptor: SecretsDescriptor,
        private_key,
        environment: Optional[str] = None,
    ):
        self.private_key = ciphers.load_private_key(private_key) if private_key else None
        self.descriptor = readable_by(descriptor, self.private_key)
        self.environment = environment
        self._cache: Dict[Tuple[str, str], str] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_files(
        cls,
        secrets_file,
        private_key_path,
        environment: Optional[str] = None,
    ) -> "SecretsStore":
        descriptor = load_secrets_descriptor(secrets_file)
        private_key = Path(private_key_path).read_bytes() if private_key_path else None
        return cls(descriptor, private_key, environment)

    def for_environment(self, environment: Optional[str]) -> "SecretsStore":
        """Same descriptor and key, different ambient environment."""
        store = SecretsStore(self.descriptor, None, environment)
        store.private_key = self.private_key
        return store

    def get_secret_value(self, name: str, explicit_env: Optional[str] = None) -> str:
        chunks, scope = lookup_encrypted_value(
            self.descriptor, name, self.environment, explicit_env
        )
        key = (name, scope)
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            # The deploy that first read it may have released its mask.
            secret_masking_filter.register([cached])
            return cached

        if self.private_key is None:
            raise CryptoError(
                f"No private key configured to decrypt secret {name!r}",
                environment=self.environment,
            )
        value = ciphers.decrypt_string(self.private_key, chunks)
        secret_masking_filter.register([value])
        with self._lock:
            self._cache[key] = value
        return value
