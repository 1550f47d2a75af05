import pytest

from stackbind.core.exceptions import (
    MissingParentStackError,
    ResourceConfigError,
    StackbindError,
)
from stackbind.stacks.models import Stack, StackParams
from stackbind.stacks.reconciler import reconcile_for_deploy


def _params(environment, stack_name="api"):
    return StackParams(stack_name=stack_name, environment=environment)


def _stacks():
    infra = Stack.model_validate(
        {
            "name": "infra",
            "server": {
                "resources": {
                    "prod": {"db": {"type": "postgres", "config": {"tier": "large"}}},
                    "staging": {"db": {"type": "postgres", "config": {"tier": "small"}}},
                }
            },
        }
    )
    api = Stack.model_validate(
        {
            "name": "api",
            "client": {
                "prod": {"parentStack": "acme/infra", "uses": ["db"]},
                "staging": {"parentStack": "infra", "uses": ["db"]},
                "beta": {"parentStack": "infra", "parentEnv": "prod", "uses": ["db"]},
            },
        }
    )
    return {"infra": infra, "api": api}


def test_child_environment_is_propagated_to_parent():
    reconciled = reconcile_for_deploy(_stacks(), _params("staging", "api"), "org", "proj")

    assert reconciled.parent_name == "infra"
    assert reconciled.parent_reference == "org/proj/infra"
    assert reconciled.secrets_environment == "staging"
    assert reconciled.used_resources[0].config == {"tier": "small"}
    assert reconciled.used_resources[0].name == "db"


def test_parent_env_overrides_inferred_environment():
    reconciled = reconcile_for_deploy(_stacks(), _params("beta", "api"), "org", "proj")

    assert reconciled.secrets_environment == "prod"
    assert reconciled.used_resources[0].config == {"tier": "large"}
    assert reconciled.params.environment == "beta"


def test_two_segment_parent_reference_gets_organization():
    reconciled = reconcile_for_deploy(_stacks(), _params("prod", "api"), "org", "proj")
    assert reconciled.parent_reference == "org/acme/infra"
    assert reconciled.resource_owner_reference == "org/acme/infra"
    assert reconciled.stack_reference == "org/proj/api"


def test_missing_parent_raises():
    stacks = _stacks()
    del stacks["infra"]

    with pytest.raises(MissingParentStackError) as exc:
        reconcile_for_deploy(stacks, _params("prod", "api"), "org", "proj")
    assert exc.value.stack_name == "api"
    assert exc.value.environment == "prod"
    assert "acme/infra" in str(exc.value)


def test_stack_not_configured_for_environment():
    with pytest.raises(StackbindError, match="not configured"):
        reconcile_for_deploy(_stacks(), _params("dev", "api"), "org", "proj")


def test_unknown_used_resource():
    stacks = _stacks()
    stacks["api"].client["prod"].uses.append("cache")

    with pytest.raises(ResourceConfigError):
        reconcile_for_deploy(stacks, _params("prod", "api"), "org", "proj")


def test_stack_without_parent_uses_its_own_resources():
    stack = Stack.model_validate(
        {
            "name": "solo",
            "server": {"resources": {"prod": {"files": {"type": "s3-bucket"}}}},
            "client": {"prod": {"uses": ["files"]}},
        }
    )
    reconciled = reconcile_for_deploy({"solo": stack}, _params("prod", "solo"), "org", "proj")

    assert reconciled.parent_reference is None
    assert reconciled.resource_owner_reference == "org/proj/solo"
    assert list(reconciled.owned_resources) == ["files"]
    assert reconciled.used_resources[0].type == "s3-bucket"
