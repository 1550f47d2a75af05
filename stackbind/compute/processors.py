"""
Compute processor contract and scheduling.

A compute processor turns one used resource's published outputs into env
vars and template fields on the collector. Processors of independent
resources run in parallel; a resource listing others in `dependsOn` runs
in a later wave than they do.
"""

import contextvars
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol, Sequence

from pydantic import BaseModel

from ..core.exceptions import ResourceConfigError
from ..core.naming import resource_physical_name
from ..core.runner import CommandRunner
from ..stacks.models import ResourceDescriptor, StackParams
from ..stacks.reference import StackReference

logger = logging.getLogger("stackbind.processors")


@dataclass(frozen=True)
class ProcessorContext:
    """What a processor knows about the consuming deploy."""

    params: StackParams
    owner_reference: str
    owner_environment: str
    config: Optional[BaseModel]
    runner: CommandRunner

    @property
    def consumer_stack(self) -> str:
        return self.params.stack_name

    def physical_name(self, descriptor: ResourceDescriptor) -> str:
        return resource_physical_name(descriptor.name, self.owner_environment)


class ComputeProcessor(Protocol):
    def __call__(
        self,
        descriptor: ResourceDescriptor,
        collector,
        ref: StackReference,
        ctx: ProcessorContext,
    ) -> None: ...


def dependency_waves(resources: Sequence[ResourceDescriptor]) -> List[List[int]]:
    """
    Group resource indexes into waves; each wave only depends on earlier ones.
    Names in dependsOn that are not among `resources` are ignored.

    Raises:
        ResourceConfigError: on a dependency cycle
    """
    index_by_name = {res.name: i for i, res in enumerate(resources)}
    pending = {
        i: {index_by_name[d] for d in res.depends_on if d in index_by_name and d != res.name}
        for i, res in enumerate(resources)
    }
    done: set = set()
    waves = []
    while pending:
        ready = sorted(i for i, deps in pending.items() if deps <= done)
        if not ready:
            cycle = ", ".join(resources[i].name for i in sorted(pending))
            raise ResourceConfigError(f"Dependency cycle between resources: {cycle}")
        waves.append(ready)
        done.update(ready)
        for i in ready:
            del pending[i]
    return waves


def run_processors(
    resources: Sequence[ResourceDescriptor],
    processors: Dict[str, ComputeProcessor],
    collector,
    make_context: Callable[[ResourceDescriptor], ProcessorContext],
    owner_reference: str,
    max_workers: int = 4,
) -> None:
    """
    Run the processor of every resource against a scoped view of the collector.

    Raises the first failure in declaration order once its wave has finished.
    """
    for res in resources:
        if res.type not in processors:
            raise ResourceConfigError(
                f"No compute processor registered for type {res.type!r} (resource {res.name!r})"
            )
        for dep in res.depends_on:
            collector.add_dependency(dep)

    ref = collector.stack_reference(owner_reference)

    def _run(index: int) -> None:
        descriptor = resources[index]
        logger.info(f"Collecting compute context of {descriptor.type} {descriptor.name}")
        processors[descriptor.type](
            descriptor, collector.scoped(index), ref, make_context(descriptor)
        )

    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="processor") as pool:
        for wave in dependency_waves(resources):
            # Each worker runs in a copy of the caller context, deploy identity included.
            futures = [(i, pool.submit(contextvars.copy_context().run, _run, i)) for i in wave]
            errors = []
            for i, future in futures:
                exc = future.exception()
                if exc is not None:
                    errors.append((i, exc))
            if errors:
                for i, exc in errors[1:]:
                    logger.error(f"Compute processor for {resources[i].name} also failed: {exc}")
                raise errors[0][1]
