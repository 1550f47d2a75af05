"""
Orchestrator package.

Runs one deploy end to end, alerts on failure and flushes the collected
context into the workload's runtime configuration.
"""

from .alerts import Alert, LoggingAlertSender, WebhookAlertSender
from .orchestrator import DeployResult, DeployState, Orchestrator
from .sink import EnvFileSink

__all__ = [
    "Alert",
    "LoggingAlertSender",
    "WebhookAlertSender",
    "DeployResult",
    "DeployState",
    "Orchestrator",
    "EnvFileSink",
]
