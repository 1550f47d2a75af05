"""
Placeholder substitution engine.

Tokens have the form ${namespace:path} or ${namespace:path:default}.
Each token is dispatched to the extension registered under its namespace.
An extension returns the resolved string, or None when it does not apply.

Resolution is a single left-to-right pass; substituted text is never
scanned again, so nested tokens are not supported and re-resolving a
resolved string changes nothing.
"""

import logging
import re
from typing import Any, Callable, Dict, Iterable, List, Mapping, NamedTuple, Optional

from pydantic import BaseModel

from ..core.exceptions import MalformedPlaceholderError, UnresolvedPlaceholderError

logger = logging.getLogger("stackbind.placeholders")

PLACEHOLDER_PATTERN = re.compile(
    r"\$\{(?P<namespace>[A-Za-z_][A-Za-z0-9_-]*):(?P<path>[^${}:]*)(?::(?P<default>[^${}]*))?\}"
)

# ext(path, default, data) -> resolved value, or None when not applicable
Extension = Callable[[str, Optional[str], Mapping[str, Any]], Optional[str]]

# The trailing segment of these namespaces selects a scope, it is never a default.
SCOPED_NAMESPACES = frozenset({"secret"})


class Placeholder(NamedTuple):
    token: str
    namespace: str
    path: str
    default: Optional[str]


class ExtensionRegistry:
    """Named extensions available to one resolution."""

    def __init__(self, extensions: Optional[Mapping[str, Extension]] = None):
        self._extensions: Dict[str, Extension] = dict(extensions or {})

    def register(self, namespace: str, extension: Extension) -> None:
        self._extensions[namespace] = extension

    def get(self, namespace: str) -> Optional[Extension]:
        return self._extensions.get(namespace)

    def namespaces(self) -> List[str]:
        return sorted(self._extensions)

    def merged(self, other: "ExtensionRegistry") -> "ExtensionRegistry":
        """New registry; entries of `other` win on conflicts."""
        combined = ExtensionRegistry(self._extensions)
        for namespace in other.namespaces():
            combined.register(namespace, other.get(namespace))
        return combined

    def __contains__(self, namespace: str) -> bool:
        return namespace in self._extensions


def find_placeholders(value: str) -> List[Placeholder]:
    """List well-formed tokens in order of appearance."""
    return [
        Placeholder(m.group(0), m.group("namespace"), m.group("path"), m.group("default"))
        for m in PLACEHOLDER_PATTERN.finditer(value)
    ]


def path_segments(token: str, path: str, count: int, expected: str) -> List[str]:
    """
    Split a dotted path into exactly `count` non-empty segments.

    Raises:
        MalformedPlaceholderError: when the segment count is wrong
    """
    segments = path.split(".") if path else []
    if len(segments) != count or not all(segments):
        raise MalformedPlaceholderError(token, expected)
    return segments


def resolve(
    value: str,
    data: Optional[Mapping[str, Any]],
    extensions: ExtensionRegistry,
    strict: bool = True,
) -> str:
    """
    Resolve every placeholder of a string.

    Args:
        value: Input string
        data: Request-scoped data bag passed to every extension
        extensions: Registry of namespace extensions
        strict: Raise on unresolved tokens; otherwise leave them verbatim
            for a later pass with another extension set. Tokens of an
            unregistered namespace keep their default for that pass too.

    Raises:
        UnresolvedPlaceholderError: strict mode, no extension and no default
    """
    if "${" not in value:
        return value
    bag = data if data is not None else {}

    def _replace(match: "re.Match[str]") -> str:
        token = match.group(0)
        namespace = match.group("namespace")
        default = match.group("default")

        extension = extensions.get(namespace)
        if extension is None and not strict:
            # Another pass may register this namespace; its default waits for it.
            return token
        resolved = None
        if extension is not None:
            resolved = extension(match.group("path"), default, bag)
        if resolved is not None:
            return str(resolved)
        if default is not None and namespace not in SCOPED_NAMESPACES:
            logger.debug(f"Placeholder {token} fell back to its default")
            return default
        if strict:
            raise UnresolvedPlaceholderError(token)
        return token

    return PLACEHOLDER_PATTERN.sub(_replace, value)


def apply_placeholders(
    obj: Any,
    data: Optional[Mapping[str, Any]],
    extensions: ExtensionRegistry,
    strict: bool = True,
) -> Any:
    """
    Return a copy of obj with every string resolved.
    Walks dicts, lists, tuples and pydantic models; other values are returned as-is.
    """
    if isinstance(obj, str):
        return resolve(obj, data, extensions, strict)
    if isinstance(obj, BaseModel):
        dumped = obj.model_dump(by_alias=True)
        return type(obj).model_validate(apply_placeholders(dumped, data, extensions, strict))
    if isinstance(obj, dict):
        return {k: apply_placeholders(v, data, extensions, strict) for k, v in obj.items()}
    if isinstance(obj, list):
        return [apply_placeholders(v, data, extensions, strict) for v in obj]
    if isinstance(obj, tuple):
        return tuple(apply_placeholders(v, data, extensions, strict) for v in obj)
    return obj


def unresolved_tokens(values: Iterable[str]) -> List[str]:
    """Tokens still present in already-resolved values."""
    tokens = []
    for value in values:
        tokens.extend(p.token for p in find_placeholders(value))
    return tokens
