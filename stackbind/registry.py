"""
Explicit registry of resource types, compute processors, provisioners and
placeholder extensions.

Built once at process start (Registry.default()) and handed to the
Orchestrator; nothing is registered through import side effects.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Type

from pydantic import BaseModel

from .compute import bucket, postgres
from .compute.processors import ComputeProcessor
from .provisioners import Provisioner, S3BucketProvisioner
from .placeholders.engine import Extension, ExtensionRegistry
from .placeholders.extensions import default_extensions
from .stacks.models import ResourceTypeRegistry


@dataclass
class Registry:
    resource_types: ResourceTypeRegistry = field(default_factory=ResourceTypeRegistry)
    processors: Dict[str, ComputeProcessor] = field(default_factory=dict)
    provisioners: Dict[str, Provisioner] = field(default_factory=dict)
    extensions: ExtensionRegistry = field(default_factory=ExtensionRegistry)

    def register_resource_type(self, resource_type: str, config_model: Type[BaseModel]) -> None:
        self.resource_types.register(resource_type, config_model)

    def register_processor(self, resource_type: str, processor: ComputeProcessor) -> None:
        self.processors[resource_type] = processor

    def register_provisioner(self, resource_type: str, provisioner: Provisioner) -> None:
        self.provisioners[resource_type] = provisioner

    def register_extension(self, namespace: str, extension: Extension) -> None:
        self.extensions.register(namespace, extension)

    def provisioner_for(self, resource_type: str) -> Optional[Provisioner]:
        return self.provisioners.get(resource_type)

    @classmethod
    def default(cls) -> "Registry":
        registry = cls(extensions=default_extensions())
        registry.register_resource_type(bucket.RESOURCE_TYPE, bucket.BucketConfig)
        registry.register_processor(bucket.RESOURCE_TYPE, bucket.bucket_compute_processor)
        registry.register_provisioner(bucket.RESOURCE_TYPE, S3BucketProvisioner())
        registry.register_resource_type(postgres.RESOURCE_TYPE, postgres.PostgresConfig)
        registry.register_processor(postgres.RESOURCE_TYPE, postgres.postgres_compute_processor)
        return registry
