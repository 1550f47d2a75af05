"""
Compute context collector.

Aggregates, for one deploy, what compute processors harvest from the
resources the stack uses: environment variables (public or secret),
template extension fields, resource dependency edges and outputs to publish.

Every add is add-if-not-exists under one lock. Registrations made through
scoped(order_index) carry the declaration index of the resource being
processed; when two registrations race on the same name the lower index
is kept, so the result equals a sequential run in declaration order.
"""

import itertools
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from ..core.deploy_context import DeployContext
from ..core.logging_config import secret_masking_filter
from ..placeholders.engine import ExtensionRegistry, apply_placeholders
from ..placeholders.extensions import dependency_extension, resource_extension
from ..stacks.models import StackParams
from ..stacks.reference import StackOutput, StackReference, StateBackend

logger = logging.getLogger("stackbind.collector")

OutputValue = Union[str, Callable[[], str]]


@dataclass(frozen=True)
class ComputeEnvVariable:
    name: str
    value: str
    is_secret: bool
    source_resource_type: str
    source_resource_name: str
    source_stack: str


@dataclass
class _Registration:
    order: Optional[int]
    sequence: int
    item: Any


def _wins(new_order: Optional[int], existing: _Registration) -> bool:
    # Unscoped registrations keep plain first-arrival semantics.
    if new_order is None or existing.order is None:
        return False
    return new_order < existing.order


class ComputeContextCollector:
    """Per-deploy aggregator. Safe to call from concurrent processors."""

    def __init__(
        self,
        params: StackParams,
        backend: StateBackend,
        deploy_context: Optional[DeployContext] = None,
    ):
        self.params = params
        self.backend = backend
        self.deploy_context = deploy_context or DeployContext()
        self._lock = threading.Lock()
        self._sequence = itertools.count()
        self._env: Dict[str, _Registration] = {}
        self._secret_env: Dict[str, _Registration] = {}
        self._resource_ext: Dict[str, _Registration] = {}
        self._dependency_ext: Dict[Tuple[str, str], _Registration] = {}
        self._outputs: Dict[str, _Registration] = {}
        self._dependencies: List[str] = []
        self._references: Dict[str, StackReference] = {}

    def scoped(self, order_index: int) -> "ScopedCollector":
        """View whose registrations carry the given declaration index."""
        return ScopedCollector(self, order_index)

    # ===========================================
    # Registration
    # ===========================================

    def _add(self, table: Dict, key, item, order: Optional[int]) -> bool:
        with self._lock:
            existing = table.get(key)
            if existing is not None and not _wins(order, existing):
                return False
            if existing is not None:
                logger.debug(f"{key} taken over by resource #{order} from #{existing.order}")
            table[key] = _Registration(order, next(self._sequence), item)
            return True

    def add_env_variable_if_not_exist(
        self,
        name: str,
        value: str,
        source_type: str,
        source_name: str,
        source_stack: str,
        *,
        order: Optional[int] = None,
    ) -> bool:
        """Register a public env var; returns False when the name was already taken."""
        var = ComputeEnvVariable(name, value, False, source_type, source_name, source_stack)
        return self._add(self._env, name, var, order)

    def add_secret_env_variable_if_not_exist(
        self,
        name: str,
        value: str,
        source_type: str,
        source_name: str,
        source_stack: str,
        *,
        order: Optional[int] = None,
    ) -> bool:
        secret_masking_filter.register([value])
        var = ComputeEnvVariable(name, value, True, source_type, source_name, source_stack)
        return self._add(self._secret_env, name, var, order)

    def add_resource_tpl_extension(
        self, resource_name: str, fields: Mapping[str, str], *, order: Optional[int] = None
    ) -> bool:
        """Make fields addressable as ${resource:<resource_name>.<field>}."""
        return self._add(self._resource_ext, resource_name, dict(fields), order)

    def add_dependency_tpl_extension(
        self,
        dependency_name: str,
        resource_name: str,
        fields: Mapping[str, str],
        *,
        order: Optional[int] = None,
    ) -> bool:
        """Make fields addressable as ${dependency:<dependency>.<resource>.<field>}."""
        key = (dependency_name, resource_name)
        return self._add(self._dependency_ext, key, dict(fields), order)

    def add_output(
        self, name: str, value: OutputValue, secret: bool = False, *, order: Optional[int] = None
    ) -> bool:
        """Register an output to publish; a callable value is evaluated at resolve time."""
        return self._add(self._outputs, name, (value, secret), order)

    def add_dependency(self, reference: str) -> None:
        with self._lock:
            if reference not in self._dependencies:
                self._dependencies.append(reference)

    # ===========================================
    # Reading
    # ===========================================

    def _items(self, table: Dict) -> List[Any]:
        with self._lock:
            return [table[key].item for key in sorted(table)]

    def env_variables(self) -> List[ComputeEnvVariable]:
        return self._items(self._env)

    def secret_env_variables(self) -> List[ComputeEnvVariable]:
        return self._items(self._secret_env)

    def dependencies(self) -> List[str]:
        with self._lock:
            return list(self._dependencies)

    def resource_fields(self, resource_name: str) -> Optional[Dict[str, str]]:
        with self._lock:
            reg = self._resource_ext.get(resource_name)
            return dict(reg.item) if reg else None

    def dependency_fields(self, dependency_name: str, resource_name: str):
        with self._lock:
            reg = self._dependency_ext.get((dependency_name, resource_name))
            return dict(reg.item) if reg else None

    def outputs(self) -> Dict[str, Tuple[OutputValue, bool]]:
        with self._lock:
            return {name: reg.item for name, reg in self._outputs.items()}

    def resolve_outputs(self) -> Dict[str, StackOutput]:
        """Evaluate pending outputs."""
        resolved = {}
        for name, (value, secret) in sorted(self.outputs().items()):
            resolved[name] = StackOutput(str(value() if callable(value) else value), secret)
        return resolved

    # ===========================================
    # Cross-stack references and templates
    # ===========================================

    def stack_reference(self, reference: str) -> StackReference:
        """Memoized handle per reference string."""
        with self._lock:
            ref = self._references.get(reference)
            if ref is None:
                ref = StackReference(reference, self.backend, self.deploy_context)
                self._references[reference] = ref
            return ref

    def tpl_extensions(self) -> ExtensionRegistry:
        """`resource` and `dependency` namespaces backed by this collector."""
        return ExtensionRegistry(
            {
                "resource": resource_extension(self.resource_fields),
                "dependency": dependency_extension(self.dependency_fields),
            }
        )

    def resolve_placeholders(
        self,
        obj: Any,
        extensions: Optional[ExtensionRegistry] = None,
        data: Optional[Mapping[str, Any]] = None,
        strict: bool = True,
    ) -> Any:
        """Resolve obj with the given extensions plus this collector's namespaces."""
        registry = (extensions or ExtensionRegistry()).merged(self.tpl_extensions())
        return apply_placeholders(obj, data, registry, strict)


class ScopedCollector:
    """Collector view that stamps every registration with one declaration index."""

    def __init__(self, collector: ComputeContextCollector, order_index: int):
        self._collector = collector
        self.order_index = order_index

    def add_env_variable_if_not_exist(self, name, value, source_type, source_name, source_stack):
        return self._collector.add_env_variable_if_not_exist(
            name, value, source_type, source_name, source_stack, order=self.order_index
        )

    def add_secret_env_variable_if_not_exist(
        self, name, value, source_type, source_name, source_stack
    ):
        return self._collector.add_secret_env_variable_if_not_exist(
            name, value, source_type, source_name, source_stack, order=self.order_index
        )

    def add_resource_tpl_extension(self, resource_name, fields):
        return self._collector.add_resource_tpl_extension(
            resource_name, fields, order=self.order_index
        )

    def add_dependency_tpl_extension(self, dependency_name, resource_name, fields):
        return self._collector.add_dependency_tpl_extension(
            dependency_name, resource_name, fields, order=self.order_index
        )

    def add_output(self, name, value, secret=False):
        return self._collector.add_output(name, value, secret, order=self.order_index)

    def __getattr__(self, name):
        return getattr(self._collector, name)
