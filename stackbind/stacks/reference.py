"""
Cross-stack references.

A StackReference is a read-only handle to the outputs another stack's
provisioning run published. Outputs are read lazily, once per reference,
from a state backend (local YAML files or S3 objects).
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional, Protocol, Union

import boto3
import yaml
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..core.deploy_context import DeployContext
from ..core.exceptions import EmptyRequiredOutputError, StateBackendError
from ..core.logging_config import secret_masking_filter

logger = logging.getLogger("stackbind.reference")


@dataclass(frozen=True)
class StackOutput:
    value: str
    secret: bool = False


def _parse_outputs(data, source: str) -> Dict[str, StackOutput]:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise StateBackendError(f"State document {source} must contain a mapping")
    outputs = {}
    for key, raw in (data.get("outputs") or {}).items():
        if isinstance(raw, dict):
            value = raw.get("value")
            outputs[key] = StackOutput("" if value is None else str(value), bool(raw.get("secret")))
        else:
            outputs[key] = StackOutput("" if raw is None else str(raw))
    return outputs


def _dump_outputs(reference: str, outputs: Mapping[str, StackOutput]) -> str:
    document = {
        "reference": reference,
        "updated": int(time.time()),
        "outputs": {k: {"value": o.value, "secret": o.secret} for k, o in outputs.items()},
    }
    return yaml.safe_dump(document, sort_keys=True)


class StateBackend(Protocol):
    def read_outputs(
        self, reference: str, timeout: Optional[float] = None
    ) -> Dict[str, StackOutput]: ...

    def publish_outputs(self, reference: str, outputs: Mapping[str, StackOutput]) -> None: ...


class FileStateBackend:
    """Outputs stored as <state_dir>/<organization>/<project>/<stack>.yaml."""

    def __init__(self, state_dir: Union[str, Path]):
        self.state_dir = Path(state_dir)

    def path_for(self, reference: str) -> Path:
        return self.state_dir.joinpath(*reference.split("/")).with_suffix(".yaml")

    def read_outputs(self, reference: str, timeout: Optional[float] = None):
        path = self.path_for(reference)
        if not path.exists():
            logger.debug(f"No state for {reference} at {path}")
            return {}
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise StateBackendError(f"Failed to read state of {reference}: {e}") from e
        return _parse_outputs(data, str(path))

    def publish_outputs(self, reference: str, outputs: Mapping[str, StackOutput]) -> None:
        path = self.path_for(reference)
        path.parent.mkdir(parents=True, exist_ok=True)
        existing = self.read_outputs(reference)
        existing.update(outputs)
        path.write_text(_dump_outputs(reference, existing), encoding="utf-8")
        logger.info(f"Published {len(outputs)} outputs to {reference}")


class S3StateBackend:
    """Outputs stored as s3://<bucket>/<prefix>/<organization>/<project>/<stack>.yaml."""

    def __init__(
        self,
        bucket: str,
        prefix: str = "stackbind",
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        client=None,
    ):
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.region = region
        self.endpoint_url = endpoint_url or None
        self._client = client

    def key_for(self, reference: str) -> str:
        key = f"{reference}.yaml"
        return f"{self.prefix}/{key}" if self.prefix else key

    def _client_for(self, timeout: Optional[float]):
        if self._client is not None:
            return self._client
        config = Config(
            signature_version="s3v4",
            s3={"addressing_style": "path"},
            read_timeout=timeout if timeout else 60,
            connect_timeout=min(timeout, 10) if timeout else 10,
            retries={"max_attempts": 3},
        )
        return boto3.client(
            "s3", region_name=self.region, endpoint_url=self.endpoint_url, config=config
        )

    def read_outputs(self, reference: str, timeout: Optional[float] = None):
        key = self.key_for(reference)
        try:
            response = self._client_for(timeout).get_object(Bucket=self.bucket, Key=key)
            body = response["Body"].read()
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("NoSuchKey", "404"):
                logger.debug(f"No state for {reference} at s3://{self.bucket}/{key}")
                return {}
            raise StateBackendError(f"Failed to read state of {reference}: {e}") from e
        except BotoCoreError as e:
            raise StateBackendError(f"Failed to read state of {reference}: {e}") from e

        try:
            data = yaml.safe_load(body)
        except yaml.YAMLError as e:
            raise StateBackendError(f"Corrupt state document for {reference}: {e}") from e
        return _parse_outputs(data, f"s3://{self.bucket}/{key}")

    def publish_outputs(self, reference: str, outputs: Mapping[str, StackOutput]) -> None:
        existing = self.read_outputs(reference)
        existing.update(outputs)
        try:
            self._client_for(None).put_object(
                Bucket=self.bucket,
                Key=self.key_for(reference),
                Body=_dump_outputs(reference, existing).encode("utf-8"),
                ContentType="application/yaml",
            )
        except (ClientError, BotoCoreError) as e:
            raise StateBackendError(f"Failed to publish state of {reference}: {e}") from e
        logger.info(f"Published {len(outputs)} outputs to {reference}")


@dataclass
class StackReference:
    """
    Read-only handle to another stack's outputs.
    Outputs are fetched on first access and kept for the lifetime of the handle.
    """

    full_reference: str
    backend: StateBackend
    deploy_context: DeployContext = field(default_factory=DeployContext)
    _outputs: Optional[Dict[str, StackOutput]] = field(default=None, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    @property
    def stack_name(self) -> str:
        return self.full_reference.split("/")[-1]

    def outputs(self) -> Dict[str, StackOutput]:
        with self._lock:
            if self._outputs is None:
                timeout = self.deploy_context.check_deadline(f"reading {self.full_reference}")
                logger.debug(f"Reading outputs of {self.full_reference}")
                self._outputs = self.backend.read_outputs(self.full_reference, timeout)
                secret_masking_filter.register(
                    o.value for o in self._outputs.values() if o.secret
                )
            return self._outputs

    def get_output(self, key: str) -> Optional[StackOutput]:
        return self.outputs().get(key)


def get_parent_output(
    ref: StackReference, export_key: str, ref_string: str, is_secret: bool
) -> str:
    """
    Read one required output of another stack.

    Raises:
        EmptyRequiredOutputError: when the output is missing or empty
    """
    output = ref.get_output(export_key)
    if output is None or output.value == "":
        raise EmptyRequiredOutputError(export_key, ref_string)
    if is_secret and not output.secret:
        logger.warning(f"Output {export_key} of {ref_string} is read as secret but not marked so")
        secret_masking_filter.register([output.value])
    return output.value
