"""
Built-in placeholder namespaces.

Extensions read their collaborators from the request data bag:
    secrets   -> SecretsStore bound to the ambient environment
    auth      -> mapping of provider name to auth descriptor
    environ   -> mapping used by ${env:...} (defaults to os.environ)
    git       -> GitInfo of the project directory
    now       -> datetime used by ${date:...}
    stack     -> name of the stack being resolved
    variables -> stack variables used by ${var:...}

`resource` and `dependency` are bound to a compute context collector
through resource_extension() / dependency_extension().
"""

import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional

from .engine import ExtensionRegistry, path_segments
from .git import GitInfo

logger = logging.getLogger("stackbind.placeholders")

DATA_SECRETS = "secrets"
DATA_AUTH = "auth"
DATA_ENVIRON = "environ"
DATA_GIT = "git"
DATA_NOW = "now"
DATA_STACK = "stack"
DATA_VARIABLES = "variables"

FieldsLookup = Callable[..., Optional[Mapping[str, str]]]


def _token(namespace: str, path: str, default: Optional[str]) -> str:
    if default is None:
        return f"${{{namespace}:{path}}}"
    return f"${{{namespace}:{path}:{default}}}"


def secret_extension(path: str, default: Optional[str], data: Mapping[str, Any]) -> Optional[str]:
    """${secret:NAME} or ${secret:NAME:ENVIRONMENT}; the third segment is never a default."""
    store = data.get(DATA_SECRETS)
    if store is None:
        return None
    path_segments(_token("secret", path, default), path, 1, "secret:NAME[:ENVIRONMENT]")
    return store.get_secret_value(path, explicit_env=default or None)


def auth_extension(path: str, default: Optional[str], data: Mapping[str, Any]) -> Optional[str]:
    """${auth:provider} -> credentials, ${auth:provider.property} -> one property."""
    providers = data.get(DATA_AUTH) or {}
    segments = path.split(".", 1)
    if not segments[0]:
        path_segments(_token("auth", path, default), path, 2, "auth:provider.property")

    auth = providers.get(segments[0])
    if auth is None:
        return None
    if len(segments) == 1:
        return auth.credentials_value()
    return auth.property_value(segments[1])


def env_extension(path: str, default: Optional[str], data: Mapping[str, Any]) -> Optional[str]:
    environ = data.get(DATA_ENVIRON)
    if environ is None:
        environ = os.environ
    return environ.get(path)


def git_extension(path: str, default: Optional[str], data: Mapping[str, Any]) -> Optional[str]:
    git = data.get(DATA_GIT)
    if git is None:
        return None
    return git.get(path)


def project_extension(path: str, default: Optional[str], data: Mapping[str, Any]) -> Optional[str]:
    """${project:root}: repository root, or the working directory outside a repository."""
    if path != "root":
        return None
    git = data.get(DATA_GIT) or GitInfo()
    return git.root_or_cwd()


DATE_FORMATS = {
    "iso8601": lambda now: now.isoformat(timespec="seconds"),
    "date": lambda now: now.strftime("%Y-%m-%d"),
    "time": lambda now: now.strftime("%H:%M:%S"),
    "dateTime": lambda now: now.strftime("%Y-%m-%d_%H-%M-%S"),
    "epoch": lambda now: str(int(now.timestamp())),
}


def date_extension(path: str, default: Optional[str], data: Mapping[str, Any]) -> Optional[str]:
    formatter = DATE_FORMATS.get(path)
    if formatter is None:
        return None
    now = data.get(DATA_NOW) or datetime.now(timezone.utc)
    return formatter(now)


def stack_extension(path: str, default: Optional[str], data: Mapping[str, Any]) -> Optional[str]:
    if path == "name":
        return data.get(DATA_STACK)
    return None


def var_extension(path: str, default: Optional[str], data: Mapping[str, Any]) -> Optional[str]:
    variables = data.get(DATA_VARIABLES) or {}
    value = variables.get(path)
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def resource_extension(lookup: FieldsLookup):
    """${resource:<resource>.<field>} over fields registered for this deploy."""

    def _extension(path: str, default: Optional[str], data: Mapping[str, Any]) -> Optional[str]:
        resource, field = path_segments(
            _token("resource", path, default), path, 2, "resource:<resource>.<field>"
        )
        fields = lookup(resource)
        if fields is None:
            return None
        return fields.get(field)

    return _extension


def dependency_extension(lookup: FieldsLookup):
    """${dependency:<dependency>.<resource>.<field>} over fields exported by another stack."""

    def _extension(path: str, default: Optional[str], data: Mapping[str, Any]) -> Optional[str]:
        dependency, resource, field = path_segments(
            _token("dependency", path, default),
            path,
            3,
            "dependency:<dependency>.<resource>.<field>",
        )
        fields = lookup(dependency, resource)
        if fields is None:
            return None
        return fields.get(field)

    return _extension


def default_extensions() -> ExtensionRegistry:
    """Namespaces resolvable before provisioning starts."""
    return ExtensionRegistry(
        {
            "secret": secret_extension,
            "auth": auth_extension,
            "env": env_extension,
            "git": git_extension,
            "date": date_extension,
            "project": project_extension,
            "stack": stack_extension,
            "var": var_extension,
        }
    )
