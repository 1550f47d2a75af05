"""
Custom exception classes.

Represent errors raised while resolving configuration and binding stacks.
Every error can carry the stack name and environment it happened in.
"""

from typing import Iterable, Optional


class StackbindError(Exception):
    """Base exception class for the resolution engine."""

    def __init__(
        self,
        message: str,
        *,
        stack_name: Optional[str] = None,
        environment: Optional[str] = None,
    ):
        self.message = message
        self.stack_name = stack_name
        self.environment = environment
        super().__init__(message)

    def with_context(self, stack_name: str, environment: str) -> "StackbindError":
        """Attach deploy identity unless the raiser already did."""
        if self.stack_name is None:
            self.stack_name = stack_name
        if self.environment is None:
            self.environment = environment
        return self

    def __str__(self) -> str:
        parts = []
        if self.stack_name:
            parts.append(f"stack={self.stack_name}")
        if self.environment:
            parts.append(f"env={self.environment}")
        if not parts:
            return self.message
        return f"{self.message} [{', '.join(parts)}]"


class UnresolvedPlaceholderError(StackbindError):
    """Raised when no extension resolves a token and no default is present."""

    def __init__(self, token: str, **kwargs):
        self.token = token
        super().__init__(f"Unresolved placeholder: {token}", **kwargs)


class MalformedPlaceholderError(StackbindError):
    """Raised when a placeholder path has the wrong number of segments."""

    def __init__(self, token: str, expected: str, **kwargs):
        self.token = token
        self.expected = expected
        super().__init__(f"Malformed placeholder {token}: expected {expected}", **kwargs)


class SecretNotFoundError(StackbindError):
    """Raised when a secret is missing from every searched scope."""

    def __init__(self, name: str, searched: Iterable[str], **kwargs):
        self.name = name
        self.searched = list(searched)
        where = ", ".join(self.searched) if self.searched else "nowhere"
        super().__init__(f"Secret {name!r} not found (searched: {where})", **kwargs)


class EmptyRequiredOutputError(StackbindError):
    """Raised when a cross-stack output is missing or empty."""

    def __init__(self, export_key: str, reference: str, **kwargs):
        self.export_key = export_key
        self.reference = reference
        super().__init__(
            f"Required output {export_key!r} is empty or missing in {reference!r}", **kwargs
        )


class MissingParentStackError(StackbindError):
    """Raised when a child declares a parent that cannot be resolved."""

    def __init__(self, stack: str, parent: str, environment: str, **kwargs):
        self.parent = parent
        kwargs.setdefault("stack_name", stack)
        kwargs.setdefault("environment", environment)
        super().__init__(f"Parent stack {parent!r} of {stack!r} is not configured", **kwargs)


class CryptoError(StackbindError):
    """Raised when encryption or decryption fails."""


class ResourceConfigError(StackbindError):
    """Raised when a resource descriptor has an unknown type or invalid config."""


class StateBackendError(StackbindError):
    """Raised when a stack's persisted outputs cannot be read or written."""


class DeadlineExceededError(StateBackendError):
    """Raised when the caller's deadline expired before a remote read."""


class CommandError(StackbindError):
    """Raised when a one-shot command execution fails."""


class DeployCancelledError(StackbindError):
    """Raised at a step boundary when the operator cancelled the deploy."""


class ProvisioningPanic(StackbindError):
    """A recovered unexpected failure, converted into a normal error."""

    def __init__(self, step: str, cause: BaseException, **kwargs):
        self.step = step
        self.cause = cause
        self.original_message = str(cause)
        super().__init__(
            f"Step {step} panicked: {cause.__class__.__name__}: {self.original_message}",
            **kwargs,
        )
