"""
Secrets descriptor models.

A descriptor holds shared secret values and, from schema 2.0 on,
environment-scoped values. Every value is stored encrypted as a list of
base64 chunks. A 1.0 document is read as a 2.0 document without environments.
"""

import logging
from pathlib import Path
from typing import Dict, List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from ..core.exceptions import StackbindError

logger = logging.getLogger("stackbind.secrets")

SCHEMA_V1 = "1.0"
SCHEMA_V2 = "2.0"

EncryptedValue = List[str]


def _coerce_values(values):
    """Accept a single chunk written as a plain string."""
    if values is None:
        return {}
    return {name: [chunks] if isinstance(chunks, str) else chunks for name, chunks in values.items()}


class EnvironmentSecrets(BaseModel):
    """Encrypted values scoped to one environment."""

    values: Dict[str, EncryptedValue] = Field(default_factory=dict)

    @field_validator("values", mode="before")
    @classmethod
    def _single_chunk(cls, v):
        return _coerce_values(v)


class RecipientSecrets(BaseModel):
    """Copies of every value encrypted for one additional public key."""

    values: Dict[str, EncryptedValue] = Field(default_factory=dict)
    environments: Dict[str, EnvironmentSecrets] = Field(default_factory=dict)

    @field_validator("values", mode="before")
    @classmethod
    def _single_chunk(cls, v):
        return _coerce_values(v)

    @field_validator("environments", mode="before")
    @classmethod
    def _no_environments(cls, v):
        return v or {}


class SecretsDescriptor(BaseModel):
    """
    Versioned secrets document.

    schemaVersion 1.0 has only shared `values`; 2.0 adds `environments`.
    `values` and `environments` are encrypted for the owner's key. Each entry of
    `recipients`, keyed by a canonical SSH public key, holds the same values
    encrypted for another key.
    """

    schemaVersion: Literal["1.0", "2.0"] = SCHEMA_V1
    values: Dict[str, EncryptedValue] = Field(default_factory=dict)
    environments: Dict[str, EnvironmentSecrets] = Field(default_factory=dict)
    recipients: Dict[str, RecipientSecrets] = Field(default_factory=dict)

    @field_validator("schemaVersion", mode="before")
    @classmethod
    def _version_as_string(cls, v):
        # YAML reads an unquoted 2.0 as a float.
        if v is None:
            return SCHEMA_V1
        return str(v)

    @field_validator("values", mode="before")
    @classmethod
    def _single_chunk(cls, v):
        return _coerce_values(v)

    @field_validator("environments", "recipients", mode="before")
    @classmethod
    def _no_entries(cls, v):
        return v or {}

    def environment(self, name: str) -> Optional[EnvironmentSecrets]:
        return self.environments.get(name)

    def for_recipient(self, public_key: Optional[str]) -> "SecretsDescriptor":
        """The values readable with the private half of `public_key`; self for the owner."""
        recipient = self.recipients.get(public_key) if public_key else None
        if recipient is None:
            return self
        return SecretsDescriptor(
            schemaVersion=self.schemaVersion,
            values=recipient.values,
            environments=recipient.environments,
        )

    def to_document(self) -> dict:
        """Plain dict in file layout; 1.0 documents keep omitting `environments`."""
        document = {"schemaVersion": self.schemaVersion}
        document.update(_scope_document(self.schemaVersion, self.values, self.environments))
        if self.recipients:
            document["recipients"] = {
                key: _scope_document(self.schemaVersion, r.values, r.environments)
                for key, r in self.recipients.items()
            }
        return document


def _scope_document(schema_version: str, values, environments) -> dict:
    document = {"values": {name: list(chunks) for name, chunks in values.items()}}
    if schema_version != SCHEMA_V1 or environments:
        document["environments"] = {
            env: {"values": {n: list(c) for n, c in scoped.values.items()}}
            for env, scoped in environments.items()
        }
    return document


def parse_secrets_descriptor(data: Optional[dict]) -> SecretsDescriptor:
    try:
        return SecretsDescriptor.model_validate(data or {})
    except ValidationError as e:
        raise StackbindError(f"Invalid secrets descriptor: {e}") from e


def load_secrets_descriptor(path: Union[str, Path]) -> SecretsDescriptor:
    """
    Load a secrets descriptor from a YAML file.
    A missing file yields an empty 1.0 descriptor.
    """
    path = Path(path)
    if not path.exists():
        logger.debug(f"Secrets file {path} does not exist, starting empty")
        return SecretsDescriptor()

    with open(path, "r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise StackbindError(f"Failed to parse secrets file {path}: {e}") from e

    if data is not None and not isinstance(data, dict):
        raise StackbindError(f"Secrets file {path} must contain a mapping")
    return parse_secrets_descriptor(data)


def save_secrets_descriptor(descriptor: SecretsDescriptor, path: Union[str, Path]) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(descriptor.to_document(), f, sort_keys=False, default_flow_style=False)
