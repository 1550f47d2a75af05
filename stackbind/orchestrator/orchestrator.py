"""
Provisioning orchestrator.

Drives one deploy through
    RECONCILE -> RESOLVE_PLACEHOLDERS -> PROVISION -> COLLECT_COMPUTE_CONTEXT -> FLUSH -> DONE
and lands in ABORTED from any step. Every step runs inside one recovery
boundary: engine errors and unexpected exceptions alike abort the deploy,
send exactly one alert and leave the workload untouched.
"""

import logging
import os
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..compute.collector import ComputeContextCollector
from ..compute.processors import ProcessorContext, run_processors
from ..core.config import StackbindConfig
from ..core.deploy_context import DeployContext, clear_deploy, set_deploy
from ..core.exceptions import DeployCancelledError, ProvisioningPanic, StackbindError
from ..core.logging_config import secret_masking_filter
from ..core.naming import (
    collapse_stack_reference,
    expand_stack_reference,
    export_key,
    resource_physical_name,
)
from ..core.runner import CommandRunner
from ..placeholders import extensions as ext
from ..placeholders.engine import apply_placeholders
from ..placeholders.git import GitInfo
from ..provisioners import ProvisionContext
from ..registry import Registry
from ..secrets.store import SecretsStore
from ..stacks.models import ResourceDescriptor, Stack, StackConfig, StackParams
from ..stacks.reconciler import ReconciledStack, reconcile_for_deploy
from ..stacks.reference import FileStateBackend, S3StateBackend, StackOutput, StateBackend
from .alerts import (
    STATUS_CANCELLED,
    STATUS_FAILURE,
    Alert,
    AlertSender,
    LoggingAlertSender,
    WebhookAlertSender,
    send_alert_safely,
)
from .sink import EnvFileSink, WorkloadSink

logger = logging.getLogger("stackbind.orchestrator")


class DeployState(str, Enum):
    RECONCILE = "reconcile"
    RESOLVE_PLACEHOLDERS = "resolve_placeholders"
    PROVISION = "provision"
    COLLECT_COMPUTE_CONTEXT = "collect_compute_context"
    FLUSH = "flush"
    DONE = "done"
    ABORTED = "aborted"


@dataclass
class DeployResult:
    """Outcome of one deploy. `error` is set exactly when state is ABORTED."""

    params: StackParams
    state: DeployState
    preview: bool = False
    error: Optional[StackbindError] = None
    failed_step: Optional[DeployState] = None
    completed_steps: List[DeployState] = field(default_factory=list)
    env_vars: Dict[str, str] = field(default_factory=dict)
    secret_env_vars: Dict[str, str] = field(default_factory=dict)
    outputs: Dict[str, StackOutput] = field(default_factory=dict)
    provisioned: Dict[str, Dict[str, StackOutput]] = field(default_factory=dict)
    duration: float = 0.0
    alert_sent: bool = False

    @property
    def ok(self) -> bool:
        return self.state == DeployState.DONE


@dataclass
class _DeployRun:
    """Mutable state handed from one step to the next."""

    params: StackParams
    preview: bool
    context: DeployContext
    runner: CommandRunner
    reconciled: Optional[ReconciledStack] = None
    data: Dict[str, Any] = field(default_factory=dict)
    config: Optional[StackConfig] = None
    owned_resources: List[ResourceDescriptor] = field(default_factory=list)
    used_resources: List[ResourceDescriptor] = field(default_factory=list)
    collector: Optional[ComputeContextCollector] = None
    result: Optional[DeployResult] = None


class Orchestrator:
    """
    Runs deploys of the stacks it was built with.

    Collaborators are passed in explicitly; from_config() wires the
    defaults described by a StackbindConfig.
    """

    def __init__(
        self,
        config: StackbindConfig,
        stacks: Mapping[str, Stack],
        backend: StateBackend,
        registry: Optional[Registry] = None,
        secrets: Optional[SecretsStore] = None,
        sink: Optional[WorkloadSink] = None,
        alert_sender: Optional[AlertSender] = None,
        git_factory: Optional[Callable[[Path, CommandRunner], GitInfo]] = None,
    ):
        self.config = config
        self.stacks = dict(stacks)
        self.backend = backend
        self.registry = registry or Registry.default()
        self.secrets = secrets
        self.sink = sink
        self.alert_sender = alert_sender
        self.git_factory = git_factory or (lambda cwd, runner: GitInfo(cwd, runner))

    @classmethod
    def from_config(
        cls,
        config: StackbindConfig,
        stacks: Mapping[str, Stack],
        registry: Optional[Registry] = None,
    ) -> "Orchestrator":
        if config.STATE_BACKEND == "s3":
            backend = S3StateBackend(
                config.STATE_BUCKET,
                prefix=config.STATE_PREFIX,
                region=config.AWS_REGION,
                endpoint_url=config.S3_ENDPOINT or None,
            )
        else:
            backend = FileStateBackend(config.STATE_DIR)

        secrets = None
        if Path(config.SECRETS_FILE).is_file():
            secrets = SecretsStore.from_files(config.SECRETS_FILE, config.PRIVATE_KEY_PATH)

        if config.ALERT_WEBHOOK_URL:
            alert_sender = WebhookAlertSender(
                config.ALERT_WEBHOOK_URL, timeout=config.ALERT_TIMEOUT_SECONDS
            )
        else:
            alert_sender = LoggingAlertSender()

        sink = EnvFileSink(config.WORKLOAD_ENV_FILE, config.WORKLOAD_SECRETS_FILE)
        return cls(config, stacks, backend, registry, secrets, sink, alert_sender)

    # ===========================================
    # Deploy
    # ===========================================

    def deploy(
        self,
        params: StackParams,
        preview: bool = False,
        cancel_event: Optional[threading.Event] = None,
        deadline: Optional[float] = None,
    ) -> DeployResult:
        """
        Run one deploy.

        Args:
            params: deploy identity
            preview: skip provisioning and every external write
            cancel_event: operator interrupt, observed between steps
            deadline: time.monotonic() value bounding remote state reads

        Returns:
            DeployResult in state DONE or ABORTED; engine errors are never raised.
        """
        context = DeployContext(deadline=deadline, cancel_event=cancel_event or threading.Event())
        run = _DeployRun(
            params=params,
            preview=preview,
            context=context,
            runner=CommandRunner(dry_run=preview, deploy_context=context),
        )
        run.result = DeployResult(params=params, state=DeployState.RECONCILE, preview=preview)

        steps = [
            (DeployState.RECONCILE, self._reconcile),
            (DeployState.RESOLVE_PLACEHOLDERS, self._resolve_placeholders),
            (DeployState.PROVISION, self._provision),
            (DeployState.COLLECT_COMPUTE_CONTEXT, self._collect_compute_context),
            (DeployState.FLUSH, self._flush),
        ]

        started = time.monotonic()
        deploy_id = set_deploy(params.stack_name, params.environment)
        try:
            mode = " (preview)" if preview else ""
            logger.info(f"Deploying {params.stack_name} to {params.environment}{mode}")
            for state, step in steps:
                run.result.state = state
                error = self._run_step(state, step, run)
                if error is not None:
                    return self._abort(run, state, error, time.monotonic() - started)
                run.result.completed_steps.append(state)

            run.result.state = DeployState.DONE
            run.result.duration = time.monotonic() - started
            logger.info(
                f"Deploy of {params.stack_name} to {params.environment} done "
                f"in {run.result.duration:.1f}s"
            )
            return run.result
        finally:
            secret_masking_filter.release(deploy_id)
            clear_deploy()

    def _run_step(self, state: DeployState, step, run: _DeployRun) -> Optional[StackbindError]:
        """Run one step; returns the error that aborts the deploy, if any."""
        params = run.params
        try:
            run.context.check_cancelled(state.value)
            logger.debug(f"Step {state.value}")
            step(run)
            return None
        except StackbindError as e:
            logger.error(f"Step {state.value} failed: {e}")
            return e.with_context(params.stack_name, params.environment)
        except Exception as e:
            logger.exception(f"Step {state.value} panicked")
            panic = ProvisioningPanic(state.value, e)
            panic.__cause__ = e
            return panic.with_context(params.stack_name, params.environment)

    def _abort(
        self, run: _DeployRun, state: DeployState, error: StackbindError, duration: float
    ) -> DeployResult:
        result = run.result
        result.state = DeployState.ABORTED
        result.failed_step = state
        result.error = error
        result.duration = duration
        # Nothing collected so far reaches the workload.
        result.env_vars = {}
        result.secret_env_vars = {}
        result.outputs = {}

        params = run.params
        cancelled = isinstance(error, DeployCancelledError)
        alert = Alert(
            title="Deploy cancelled" if cancelled else "Deploy failed",
            status=STATUS_CANCELLED if cancelled else STATUS_FAILURE,
            stack=params.stack_name,
            environment=params.environment,
            version=params.version,
            description=str(error),
            duration=duration,
        )
        result.alert_sent = send_alert_safely(self.alert_sender, alert)
        logger.warning(f"Deploy of {params.stack_name} aborted at {state.value}: {error}")
        return result

    # ===========================================
    # Steps
    # ===========================================

    def _reconcile(self, run: _DeployRun) -> None:
        run.reconciled = reconcile_for_deploy(
            self.stacks, run.params, self.config.ORGANIZATION, self.config.PROJECT_NAME
        )
        if run.reconciled.parent_name:
            logger.info(
                f"Using parent {run.reconciled.parent_name} "
                f"(environment {run.reconciled.secrets_environment})"
            )

    def _resolve_placeholders(self, run: _DeployRun) -> None:
        reconciled = run.reconciled
        project_root = getattr(run.params, "project_root", None)
        secrets = None
        if self.secrets is not None:
            secrets = self.secrets.for_environment(reconciled.secrets_environment)

        run.data = {
            ext.DATA_SECRETS: secrets,
            ext.DATA_ENVIRON: os.environ,
            ext.DATA_GIT: self.git_factory(Path(project_root or os.getcwd()), run.runner),
            ext.DATA_STACK: run.params.stack_name,
            ext.DATA_VARIABLES: reconciled.server.variables,
        }
        extensions = self.registry.extensions
        # Auth descriptors may carry secrets themselves; they resolve first.
        run.data[ext.DATA_AUTH] = apply_placeholders(
            reconciled.server.auth, run.data, extensions, strict=True
        )

        # Owned resources go to provisioners and must be complete here.
        run.owned_resources = [
            apply_placeholders(res, run.data, extensions, strict=True)
            for res in reconciled.owned_resources.values()
        ]
        # Used resources and the stack config may still reference collected fields.
        run.used_resources = [
            apply_placeholders(res, run.data, extensions, strict=False)
            for res in reconciled.used_resources
        ]
        run.config = apply_placeholders(reconciled.config, run.data, extensions, strict=False)

    def _provision(self, run: _DeployRun) -> None:
        if run.preview:
            logger.info(f"Preview: skipping provisioning of {len(run.owned_resources)} resources")
            return

        reconciled = run.reconciled
        for descriptor in run.owned_resources:
            run.context.check_cancelled(f"provisioning {descriptor.name}")
            provisioner = self.registry.provisioner_for(descriptor.type)
            if provisioner is None:
                logger.debug(f"No provisioner for {descriptor.type}, {descriptor.name} skipped")
                continue
            ctx = ProvisionContext(params=run.params, config=self._decode(descriptor))
            outputs = provisioner(descriptor, ctx)
            if outputs:
                self.backend.publish_outputs(reconciled.stack_reference, outputs)
            run.result.provisioned[descriptor.name] = dict(outputs or {})

    def _collect_compute_context(self, run: _DeployRun) -> None:
        reconciled = run.reconciled
        collector = ComputeContextCollector(run.params, self.backend, run.context)
        run.collector = collector

        def make_context(descriptor: ResourceDescriptor) -> ProcessorContext:
            return ProcessorContext(
                params=run.params,
                owner_reference=reconciled.resource_owner_reference,
                owner_environment=reconciled.secrets_environment,
                config=self._decode(descriptor),
                runner=run.runner,
            )

        run_processors(
            run.used_resources,
            self.registry.processors,
            collector,
            make_context,
            reconciled.resource_owner_reference,
            max_workers=self.config.MAX_PARALLEL_PROCESSORS,
        )

        for dependency in run.config.dependencies:
            reference = expand_stack_reference(
                dependency.owner, self.config.ORGANIZATION, self.config.PROJECT_NAME
            )
            collector.add_dependency(reference)
            outputs = collector.stack_reference(reference).outputs()
            fields = dependency_fields(
                outputs,
                collapse_stack_reference(reference),
                dependency.resource,
                run.params.environment,
            )
            logger.debug(
                f"Dependency {dependency.name}: {len(fields)} fields of "
                f"{dependency.resource} in {reference}"
            )
            collector.add_dependency_tpl_extension(dependency.name, dependency.resource, fields)

    def _flush(self, run: _DeployRun) -> None:
        collector = run.collector
        config = collector.resolve_placeholders(
            run.config, self.registry.extensions, run.data, strict=True
        )

        env_vars = {var.name: var.value for var in collector.env_variables()}
        secret_env_vars = {var.name: var.value for var in collector.secret_env_variables()}
        env_vars.update(config.env)
        secret_env_vars.update(config.secrets)
        for name in secret_env_vars:
            env_vars.pop(name, None)
        outputs = collector.resolve_outputs()

        result = run.result
        result.env_vars = env_vars
        result.secret_env_vars = secret_env_vars
        result.outputs = outputs

        if run.preview:
            logger.info(
                f"Preview: {len(env_vars)} env vars, {len(secret_env_vars)} secrets, "
                f"{len(outputs)} outputs not flushed"
            )
            return

        run.context.check_cancelled(DeployState.FLUSH.value)
        if outputs:
            self.backend.publish_outputs(run.reconciled.stack_reference, outputs)
        if self.sink is not None:
            self.sink.push(env_vars, secret_env_vars)

    def _decode(self, descriptor: ResourceDescriptor):
        if descriptor.type not in self.registry.resource_types.types():
            return None
        return self.registry.resource_types.decode(descriptor)


def dependency_fields(
    outputs: Mapping[str, StackOutput], owner_stack: str, resource: str, environment: str
) -> Dict[str, str]:
    """
    Fields of one resource exported by another stack.

    Picks up `<stack>-<resource>-<field>` exports and the physical
    `<resource>--<environment>-<field>` ones; the former win.
    """
    prefixes = [
        f"{resource_physical_name(resource, environment)}-",
        export_key(owner_stack, resource, ""),
    ]
    fields: Dict[str, str] = {}
    for prefix in prefixes:
        for key, output in outputs.items():
            if key.startswith(prefix) and len(key) > len(prefix):
                fields[key[len(prefix):]] = output.value
    return fields
