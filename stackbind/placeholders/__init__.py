"""
Placeholders package.

${namespace:path[:default]} substitution over a registry of extensions.
"""

from .engine import (
    ExtensionRegistry,
    Placeholder,
    apply_placeholders,
    find_placeholders,
    path_segments,
    resolve,
)
from .extensions import default_extensions, dependency_extension, resource_extension

__all__ = [
    "ExtensionRegistry",
    "Placeholder",
    "apply_placeholders",
    "find_placeholders",
    "path_segments",
    "resolve",
    "default_extensions",
    "dependency_extension",
    "resource_extension",
]
