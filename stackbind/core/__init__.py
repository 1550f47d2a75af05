"""
Core package.

Provides shared configuration, logging, error types and helpers.
"""

from .config import StackbindConfig, load_config
from .deploy_context import DeployContext
from .exceptions import (
    CryptoError,
    EmptyRequiredOutputError,
    MalformedPlaceholderError,
    MissingParentStackError,
    ProvisioningPanic,
    SecretNotFoundError,
    StackbindError,
    UnresolvedPlaceholderError,
)

__all__ = [
    "StackbindConfig",
    "load_config",
    "DeployContext",
    "StackbindError",
    "UnresolvedPlaceholderError",
    "MalformedPlaceholderError",
    "SecretNotFoundError",
    "EmptyRequiredOutputError",
    "MissingParentStackError",
    "CryptoError",
    "ProvisioningPanic",
]
