"""
Provisioner contract and the built-in S3 bucket provisioner.

A provisioner receives a fully resolved resource descriptor (no
placeholders, secrets already injected), creates the real resource and
returns the outputs to publish under the owning stack's reference.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel

from .compute.bucket import BucketConfig
from .core import naming
from .core.exceptions import StackbindError
from .stacks.models import ResourceDescriptor, StackParams
from .stacks.reference import StackOutput

logger = logging.getLogger("stackbind.provisioners")


@dataclass(frozen=True)
class ProvisionContext:
    params: StackParams
    config: Optional[BaseModel]

    def physical_name(self, descriptor: ResourceDescriptor) -> str:
        return naming.resource_physical_name(descriptor.name, self.params.environment)


class Provisioner(Protocol):
    def __call__(
        self, descriptor: ResourceDescriptor, ctx: ProvisionContext
    ) -> Dict[str, StackOutput]: ...


def _s3_client(config: BucketConfig):
    return boto3.client(
        "s3",
        region_name=config.region,
        endpoint_url=config.endpoint or None,
        aws_access_key_id=config.access_key or None,
        aws_secret_access_key=config.secret_key or None,
        config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
    )


class S3BucketProvisioner:
    """Create the bucket if needed and publish its name, region and key pair."""

    def __init__(self, client_factory: Callable[[BucketConfig], object] = _s3_client):
        self.client_factory = client_factory

    def __call__(self, descriptor: ResourceDescriptor, ctx: ProvisionContext):
        config = ctx.config if isinstance(ctx.config, BucketConfig) else BucketConfig()
        physical = ctx.physical_name(descriptor)
        name = config.bucket_name or physical
        region = config.region or "us-east-1"

        s3_client = self.client_factory(config)
        logger.info(f"Provisioning S3 bucket: {name}")
        try:
            if region == "us-east-1":
                s3_client.create_bucket(Bucket=name)
            else:
                s3_client.create_bucket(
                    Bucket=name, CreateBucketConfiguration={"LocationConstraint": region}
                )
            logger.info(f"Successfully created bucket: {name}")
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code not in ("BucketAlreadyOwnedByYou", "BucketAlreadyExists"):
                raise StackbindError(f"Failed to create bucket {name}: {e}") from e
            logger.info(f"Bucket already exists: {name}")
        except BotoCoreError as e:
            raise StackbindError(f"Failed to create bucket {name}: {e}") from e

        return {
            naming.bucket_name_export(physical): StackOutput(name),
            naming.bucket_region_export(physical): StackOutput(region),
            naming.bucket_access_key_id_export(physical): StackOutput(
                config.access_key or "", secret=True
            ),
            naming.bucket_access_key_secret_export(physical): StackOutput(
                config.secret_key or "", secret=True
            ),
        }
