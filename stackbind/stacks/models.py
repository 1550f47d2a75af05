"""
Stack domain models.

Declarative stack input as Pydantic models. Field names follow the YAML
layout (camelCase aliases) and accept snake_case names as well.
"""

import json
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..core.exceptions import ResourceConfigError


class AuthDescriptor(BaseModel):
    """Provider credentials (e.g. a service account or an access key pair)."""

    type: str
    config: Dict[str, Any] = Field(default_factory=dict)

    def credentials_value(self) -> str:
        credentials = self.config.get("credentials", "")
        if isinstance(credentials, (dict, list)):
            return json.dumps(credentials)
        return str(credentials)

    def project_id_value(self) -> str:
        return str(self.config.get("projectId", ""))

    def property_value(self, prop: str) -> Optional[str]:
        if prop == "credentials":
            return self.credentials_value()
        if prop == "projectId":
            return self.project_id_value()
        value = self.config.get(prop)
        return None if value is None else str(value)


class ResourceDescriptor(BaseModel):
    """
    One declared resource. `config` is provider specific and is decoded
    into the model registered for `type` (see ResourceTypeRegistry).
    """

    type: str
    name: str = ""
    config: Dict[str, Any] = Field(default_factory=dict)
    depends_on: List[str] = Field(default_factory=list, alias="dependsOn")

    model_config = ConfigDict(populate_by_name=True)


class ResourceTypeRegistry:
    """Maps a resource type to the Pydantic model validating its config."""

    def __init__(self):
        self._types: Dict[str, Type[BaseModel]] = {}

    def register(self, resource_type: str, config_model: Type[BaseModel]) -> None:
        self._types[resource_type] = config_model

    def types(self) -> List[str]:
        return sorted(self._types)

    def decode(self, descriptor: ResourceDescriptor) -> BaseModel:
        """
        Validate a descriptor's config.

        Raises:
            ResourceConfigError: unknown type or invalid config
        """
        config_model = self._types.get(descriptor.type)
        if config_model is None:
            raise ResourceConfigError(
                f"Unknown resource type {descriptor.type!r} for resource {descriptor.name!r}"
            )
        try:
            return config_model.model_validate(descriptor.config)
        except ValidationError as e:
            raise ResourceConfigError(
                f"Invalid config for resource {descriptor.name!r} ({descriptor.type}): {e}"
            ) from e


class DependencyResource(BaseModel):
    """A resource exported by another stack, consumed under a local alias."""

    name: str
    owner: str
    resource: str


class StackConfig(BaseModel):
    """Configuration of a stack for one environment."""

    parent_stack: Optional[str] = Field(None, alias="parentStack")
    parent_env: Optional[str] = Field(None, alias="parentEnv")
    uses: List[str] = Field(default_factory=list)
    dependencies: List[DependencyResource] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)
    secrets: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True)


class ServerStack(BaseModel):
    """Infrastructure owned by a stack: resources per environment and provider auth."""

    resources: Dict[str, Dict[str, ResourceDescriptor]] = Field(default_factory=dict)
    auth: Dict[str, AuthDescriptor] = Field(default_factory=dict)
    variables: Dict[str, Any] = Field(default_factory=dict)

    def resources_for(self, environment: str) -> Dict[str, ResourceDescriptor]:
        """Resources of one environment, each carrying its map key as name."""
        declared = self.resources.get(environment, {})
        return {
            name: res if res.name else res.model_copy(update={"name": name})
            for name, res in declared.items()
        }


class Stack(BaseModel):
    """A named deployable unit."""

    name: str
    parent_stack: Optional[str] = Field(None, alias="parentStack")
    parent_env: Optional[str] = Field(None, alias="parentEnv")
    server: ServerStack = Field(default_factory=ServerStack)
    client: Dict[str, StackConfig] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class StackParams(BaseModel):
    """Identity of one deploy; the seed of every derived name."""

    stack_name: str
    environment: str
    version: str = "latest"

    model_config = ConfigDict(frozen=True)


class DeployParams(StackParams):
    """Deploy identity plus per-run options."""

    project_root: Optional[str] = None
