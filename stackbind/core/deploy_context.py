"""
Deploy context management.
Use ContextVar to share the active deploy identity with log formatters,
and DeployContext to carry the caller's deadline and cancellation signal.
"""

import threading
import time
import uuid
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Optional

from .exceptions import DeadlineExceededError, DeployCancelledError

# Context variables for the deploy being executed.
_stack_var: ContextVar[Optional[str]] = ContextVar("stack", default=None)
_environment_var: ContextVar[Optional[str]] = ContextVar("environment", default=None)
_deploy_id_var: ContextVar[Optional[str]] = ContextVar("deploy_id", default=None)


def get_stack() -> Optional[str]:
    """Get the current stack name."""
    return _stack_var.get()


def get_environment() -> Optional[str]:
    """Get the current environment name."""
    return _environment_var.get()


def get_deploy_id() -> Optional[str]:
    """Get the current deploy ID."""
    return _deploy_id_var.get()


def set_deploy(stack: str, environment: str) -> str:
    """
    Set the deploy identity for the current context.

    Returns:
        The generated deploy ID
    """
    deploy_id = str(uuid.uuid4())
    _stack_var.set(stack)
    _environment_var.set(environment)
    _deploy_id_var.set(deploy_id)
    return deploy_id


def clear_deploy() -> None:
    """Clear the deploy context."""
    _stack_var.set(None)
    _environment_var.set(None)
    _deploy_id_var.set(None)


@dataclass
class DeployContext:
    """Deadline and cancellation signal propagated from the caller."""

    deadline: Optional[float] = None  # time.monotonic() based
    cancel_event: threading.Event = field(default_factory=threading.Event)

    @classmethod
    def with_timeout(cls, seconds: float) -> "DeployContext":
        return cls(deadline=time.monotonic() + seconds)

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, None when unbounded."""
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()

    def check_deadline(self, what: str) -> Optional[float]:
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            raise DeadlineExceededError(f"Deadline exceeded before {what}")
        return remaining

    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def check_cancelled(self, step: str) -> None:
        if self.cancel_event.is_set():
            raise DeployCancelledError(f"Deploy cancelled before step {step}")
