"""
Stacks package.

Stack models, parent/child reconciliation and cross-stack output references.
"""

from .loader import load_stacks
from .models import (
    AuthDescriptor,
    DependencyResource,
    DeployParams,
    ResourceDescriptor,
    ResourceTypeRegistry,
    ServerStack,
    Stack,
    StackConfig,
    StackParams,
)
from .reconciler import ReconciledStack, reconcile_for_deploy
from .reference import (
    FileStateBackend,
    S3StateBackend,
    StackOutput,
    StackReference,
    get_parent_output,
)

__all__ = [
    "load_stacks",
    "AuthDescriptor",
    "DependencyResource",
    "DeployParams",
    "ResourceDescriptor",
    "ResourceTypeRegistry",
    "ServerStack",
    "Stack",
    "StackConfig",
    "StackParams",
    "ReconciledStack",
    "reconcile_for_deploy",
    "FileStateBackend",
    "S3StateBackend",
    "StackOutput",
    "StackReference",
    "get_parent_output",
]
