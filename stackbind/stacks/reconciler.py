"""
Parent/child stack reconciliation.

Runs before a deploy. A child stack that declares a parent consumes the
parent's infrastructure and secrets; the parent's environment-scoped
values are read with the child's environment unless parentEnv overrides it.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from ..core.exceptions import MissingParentStackError, ResourceConfigError, StackbindError
from ..core.naming import collapse_stack_reference, expand_stack_reference
from .models import ResourceDescriptor, ServerStack, Stack, StackConfig, StackParams

logger = logging.getLogger("stackbind.reconciler")


@dataclass(frozen=True)
class ReconciledStack:
    """Everything a deploy needs to know about the target stack and its parent."""

    stack: Stack
    params: StackParams
    config: StackConfig
    server: ServerStack
    secrets_environment: str
    stack_reference: str
    parent_name: Optional[str] = None
    parent_reference: Optional[str] = None
    owned_resources: Dict[str, ResourceDescriptor] = field(default_factory=dict)
    used_resources: List[ResourceDescriptor] = field(default_factory=list)

    @property
    def resource_owner_reference(self) -> str:
        """Reference whose state holds the outputs of used resources."""
        return self.parent_reference or self.stack_reference


def reconcile_for_deploy(
    stacks: Mapping[str, Stack],
    params: StackParams,
    organization: str,
    project: str,
) -> ReconciledStack:
    """
    Resolve the parent of the target stack for params.environment.

    Raises:
        StackbindError: target stack unknown or not configured for the environment
        MissingParentStackError: declared parent is not among the known stacks
        ResourceConfigError: a used resource is not declared by its owner
    """
    stack = stacks.get(params.stack_name)
    if stack is None:
        raise StackbindError(
            f"Stack {params.stack_name!r} is not defined",
            stack_name=params.stack_name,
            environment=params.environment,
        )

    config = stack.client.get(params.environment)
    if config is None:
        raise StackbindError(
            f"Stack {stack.name!r} is not configured for {params.environment!r}",
            stack_name=stack.name,
            environment=params.environment,
        )

    own_reference = expand_stack_reference(stack.name, organization, project)
    owned = stack.server.resources_for(params.environment)

    parent = config.parent_stack or stack.parent_stack
    parent_env = config.parent_env or stack.parent_env

    if not parent:
        used = _used_resources(stack.name, config, owned, params)
        return ReconciledStack(
            stack=stack,
            params=params,
            config=config,
            server=stack.server,
            secrets_environment=params.environment,
            stack_reference=own_reference,
            owned_resources=owned,
            used_resources=used,
        )

    parent_name = collapse_stack_reference(parent)
    parent_stack = stacks.get(parent_name)
    if parent_stack is None:
        raise MissingParentStackError(stack.name, parent, params.environment)

    # The parent's secrets and resources are read in the child's environment
    # unless parentEnv says otherwise.
    secrets_environment = parent_env or params.environment
    if parent_env:
        logger.info(
            f"Stack {stack.name} ({params.environment}) uses parent {parent_name} "
            f"environment {parent_env}"
        )

    used = _used_resources(
        stack.name, config, parent_stack.server.resources_for(secrets_environment), params
    )
    return ReconciledStack(
        stack=stack,
        params=params,
        config=config,
        server=parent_stack.server,
        secrets_environment=secrets_environment,
        stack_reference=own_reference,
        parent_name=parent_name,
        parent_reference=expand_stack_reference(parent, organization, project),
        owned_resources=owned,
        used_resources=used,
    )


def _used_resources(
    stack_name: str,
    config: StackConfig,
    available: Mapping[str, ResourceDescriptor],
    params: StackParams,
) -> List[ResourceDescriptor]:
    used = []
    for name in config.uses:
        descriptor = available.get(name)
        if descriptor is None:
            raise ResourceConfigError(
                f"Resource {name!r} used by {stack_name!r} is not declared",
                stack_name=stack_name,
                environment=params.environment,
            )
        used.append(descriptor)
    return used
