from pathlib import Path

import pytest
from pydantic import BaseModel

from stackbind.core.exceptions import ResourceConfigError, StackbindError
from stackbind.stacks.loader import load_stacks
from stackbind.stacks.models import ResourceDescriptor, ResourceTypeRegistry


def test_load_stacks(tmp_path: Path):
    (tmp_path / "infra").mkdir()
    (tmp_path / "infra" / "server.yaml").write_text(
        "resources:\n"
        "  prod:\n"
        "    files:\n"
        "      type: s3-bucket\n"
        "      config:\n"
        "        region: eu-west-1\n"
        "auth:\n"
        "  aws:\n"
        "    type: aws-token\n"
        "    config:\n"
        "      projectId: p1\n",
        encoding="utf-8",
    )
    (tmp_path / "api").mkdir()
    (tmp_path / "api" / "client.yaml").write_text(
        "parentStack: infra\n"
        "stacks:\n"
        "  prod:\n"
        "    uses: [files]\n"
        "    env:\n"
        "      MODE: prod\n",
        encoding="utf-8",
    )
    (tmp_path / "notes").mkdir()

    stacks = load_stacks(tmp_path)

    assert sorted(stacks) == ["api", "infra"]
    assert stacks["api"].parent_stack == "infra"
    assert stacks["api"].client["prod"].uses == ["files"]
    assert stacks["infra"].server.resources_for("prod")["files"].name == "files"
    assert stacks["infra"].server.auth["aws"].property_value("projectId") == "p1"


def test_invalid_yaml_is_reported(tmp_path: Path):
    (tmp_path / "broken").mkdir()
    (tmp_path / "broken" / "client.yaml").write_text("stacks: [unclosed\n", encoding="utf-8")

    with pytest.raises(StackbindError):
        load_stacks(tmp_path)


class _BucketConfig(BaseModel):
    region: str


def test_resource_type_registry_decode():
    registry = ResourceTypeRegistry()
    registry.register("s3-bucket", _BucketConfig)

    decoded = registry.decode(ResourceDescriptor(type="s3-bucket", name="f", config={"region": "r"}))
    assert decoded.region == "r"

    with pytest.raises(ResourceConfigError):
        registry.decode(ResourceDescriptor(type="s3-bucket", name="f", config={}))
    with pytest.raises(ResourceConfigError, match="Unknown resource type"):
        registry.decode(ResourceDescriptor(type="redis", name="c"))
