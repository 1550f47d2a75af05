"""
stackbind - configuration resolution and cross-stack resource binding.

Resolves ${namespace:path:default} placeholders, manages environment-scoped
encrypted secrets, and turns a parent stack's published outputs into runtime
configuration for the stacks that consume them.
"""

__version__ = "0.4.0"
