"""Compute processor for S3 compatible buckets."""

import logging
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..core import naming
from ..stacks.models import ResourceDescriptor
from ..stacks.reference import StackReference, get_parent_output
from .processors import ProcessorContext

logger = logging.getLogger("stackbind.processors.bucket")

RESOURCE_TYPE = "s3-bucket"


class BucketConfig(BaseModel):
    region: Optional[str] = None
    bucket_name: Optional[str] = Field(None, alias="bucketName")
    access_key: Optional[str] = Field(None, alias="accessKey")
    secret_key: Optional[str] = Field(None, alias="secretKey")
    endpoint: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


def bucket_compute_processor(
    descriptor: ResourceDescriptor,
    collector,
    ref: StackReference,
    ctx: ProcessorContext,
) -> None:
    """
    Publish a bucket's name, region and access key pair.

    Env vars: S3_<RES>_BUCKET, S3_<RES>_REGION, S3_<RES>_ACCESS_KEY (secret),
    S3_<RES>_SECRET_KEY (secret), BUCKET_NAME_<RES>, plus the generic
    S3_BUCKET, S3_REGION, S3_ACCESS_KEY, S3_SECRET_KEY and BUCKET_NAME.
    """
    physical = ctx.physical_name(descriptor)
    owner = ctx.owner_reference

    bucket = get_parent_output(ref, naming.bucket_name_export(physical), owner, False)
    region = get_parent_output(ref, naming.bucket_region_export(physical), owner, False)
    access_key = get_parent_output(
        ref, naming.bucket_access_key_id_export(physical), owner, True
    )
    secret_key = get_parent_output(
        ref, naming.bucket_access_key_secret_export(physical), owner, True
    )

    res = naming.to_env_variable_name(descriptor.name)
    source = (descriptor.type, descriptor.name, owner)

    public = [
        (f"S3_{res}_BUCKET", bucket),
        (f"S3_{res}_REGION", region),
        (f"BUCKET_NAME_{res}", bucket),
        ("S3_BUCKET", bucket),
        ("S3_REGION", region),
        ("BUCKET_NAME", bucket),
    ]
    secret = [
        (f"S3_{res}_ACCESS_KEY", access_key),
        (f"S3_{res}_SECRET_KEY", secret_key),
        ("S3_ACCESS_KEY", access_key),
        ("S3_SECRET_KEY", secret_key),
    ]
    for name, value in public:
        collector.add_env_variable_if_not_exist(name, value, *source)
    for name, value in secret:
        collector.add_secret_env_variable_if_not_exist(name, value, *source)

    endpoint = ctx.config.endpoint if isinstance(ctx.config, BucketConfig) else None
    fields = {
        "bucket": bucket,
        "region": region,
        "accessKey": access_key,
        "secretKey": secret_key,
    }
    if endpoint:
        fields["endpoint"] = endpoint
    collector.add_resource_tpl_extension(descriptor.name, fields)
    logger.debug(f"Bucket {descriptor.name} bound as {bucket}")
