"""
Compute package.

Collects env vars, template fields and outputs harvested from used resources.
"""

from .collector import ComputeContextCollector, ComputeEnvVariable, ScopedCollector
from .processors import ComputeProcessor, ProcessorContext, dependency_waves, run_processors

__all__ = [
    "ComputeContextCollector",
    "ComputeEnvVariable",
    "ScopedCollector",
    "ComputeProcessor",
    "ProcessorContext",
    "dependency_waves",
    "run_processors",
]
