# Where: stackbind/core/naming.py
# What: Deterministic names for env vars, stack references and exported outputs.
# Why: Provisioning and consumption must agree on these names across separate runs.
import re

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")


def to_env_variable_name(name: str) -> str:
    """Upper-case a name and replace every non-alphanumeric character with '_'."""
    return _NON_ALNUM.sub("_", name).upper()


def stack_name_in_env(stack_name: str, environment: str) -> str:
    return f"{stack_name}--{environment}"


def resource_physical_name(resource_name: str, environment: str) -> str:
    """Name a resource is provisioned and exported under for one environment."""
    return f"{resource_name}--{environment}"


def expand_stack_reference(parent_stack: str, organization: str, project: str) -> str:
    """
    Expand a short stack reference to organization/project/stack.

    3 segments are kept as-is, 2 segments get the organization prefix,
    1 segment gets organization/project.
    """
    parts = parent_stack.split("/", 2)
    if len(parts) == 3:
        return parent_stack
    if len(parts) == 2:
        return f"{organization}/{parent_stack}"
    return f"{organization}/{project}/{parent_stack}"


def collapse_stack_reference(stack_ref: str) -> str:
    return stack_ref.split("/", 2)[-1]


def export_key(stack_name: str, resource_name: str, field: str) -> str:
    return f"{stack_name}-{resource_name}-{field}"


# Bucket exports
def bucket_name_export(physical_name: str) -> str:
    return f"{physical_name}-bucket-name"


def bucket_region_export(physical_name: str) -> str:
    return f"{physical_name}-bucket-region"


def bucket_access_key_id_export(physical_name: str) -> str:
    return f"{physical_name}-access-key-name"


def bucket_access_key_secret_export(physical_name: str) -> str:
    return f"{physical_name}-access-key-secret"


# Postgres exports
def postgres_endpoint_export(physical_name: str) -> str:
    return f"{physical_name}-endpoint"


def postgres_username_export(physical_name: str) -> str:
    return f"{physical_name}-username"


def postgres_password_export(physical_name: str) -> str:
    return f"{physical_name}-password"
