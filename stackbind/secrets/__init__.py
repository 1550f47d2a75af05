"""
Secrets package.

Encrypted, environment-scoped secret values and their lookup.
"""

from .descriptor import (
    EnvironmentSecrets,
    RecipientSecrets,
    SecretsDescriptor,
    load_secrets_descriptor,
    save_secrets_descriptor,
)
from .management import SecretsManager
from .store import SecretsStore, get_secret_value, lookup_encrypted_value

__all__ = [
    "EnvironmentSecrets",
    "RecipientSecrets",
    "SecretsDescriptor",
    "load_secrets_descriptor",
    "save_secrets_descriptor",
    "SecretsManager",
    "SecretsStore",
    "get_secret_value",
    "lookup_encrypted_value",
]
