import threading
from unittest.mock import MagicMock

import pytest
import requests

from stackbind.core.config import StackbindConfig
from stackbind.core.exceptions import (
    DeployCancelledError,
    EmptyRequiredOutputError,
    ProvisioningPanic,
    UnresolvedPlaceholderError,
)
from stackbind.core.logging_config import secret_masking_filter
from stackbind.orchestrator.alerts import STATUS_CANCELLED, STATUS_FAILURE
from stackbind.orchestrator.orchestrator import DeployState, Orchestrator, dependency_fields
from stackbind.provisioners import S3BucketProvisioner
from stackbind.registry import Registry
from stackbind.secrets import ciphers
from stackbind.secrets.descriptor import SecretsDescriptor
from stackbind.secrets.store import SecretsStore
from stackbind.stacks.models import Stack, StackParams
from stackbind.stacks.reference import FileStateBackend, StackOutput

INFRA = "org/proj/infra"


def _stacks(api_env=None, api_secrets=None, dependencies=None):
    infra = Stack.model_validate(
        {
            "name": "infra",
            "server": {
                "resources": {
                    "prod": {
                        "logs": {
                            "type": "s3-bucket",
                            "config": {
                                "region": "eu-west-1",
                                "accessKey": "${secret:S3_KEY}",
                                "secretKey": "${secret:S3_SECRET}",
                            },
                        }
                    }
                }
            },
            "client": {"prod": {}},
        }
    )
    api = Stack.model_validate(
        {
            "name": "api",
            "client": {
                "prod": {
                    "parentStack": "infra",
                    "uses": ["logs"],
                    "env": api_env or {},
                    "secrets": api_secrets or {},
                    "dependencies": dependencies or [],
                }
            },
        }
    )
    return {"infra": infra, "api": api}


@pytest.fixture
def secrets(ed25519_keys):
    private_key, public_key = ed25519_keys
    descriptor = SecretsDescriptor.model_validate(
        {
            "schemaVersion": "2.0",
            "values": {
                "API_TOKEN": ciphers.encrypt(public_key, "shared-token"),
                "S3_SECRET": ciphers.encrypt(public_key, "s3-secret"),
            },
            "environments": {
                "prod": {
                    "values": {
                        "API_TOKEN": ciphers.encrypt(public_key, "prod-token"),
                        "S3_KEY": ciphers.encrypt(public_key, "AKIAPROD"),
                    }
                }
            },
        }
    )
    return SecretsStore(descriptor, private_key)


@pytest.fixture
def backend(tmp_path):
    backend = FileStateBackend(tmp_path / "state")
    backend.publish_outputs(
        INFRA,
        {
            "logs--prod-bucket-name": StackOutput("logs-bucket-123"),
            "logs--prod-bucket-region": StackOutput("eu-west-1"),
            "logs--prod-access-key-name": StackOutput("AKIAPROD", True),
            "logs--prod-access-key-secret": StackOutput("s3-secret", True),
        },
    )
    return backend


@pytest.fixture
def s3_client():
    return MagicMock()


@pytest.fixture
def registry(s3_client):
    registry = Registry.default()
    registry.register_provisioner("s3-bucket", S3BucketProvisioner(lambda config: s3_client))
    return registry


@pytest.fixture
def sink():
    return MagicMock()


@pytest.fixture
def alert_sender():
    return MagicMock()


def _orchestrator(stacks, backend, registry, secrets, sink, alert_sender):
    config = StackbindConfig(ORGANIZATION="org", PROJECT_NAME="proj", MAX_PARALLEL_PROCESSORS=2)
    return Orchestrator(
        config,
        stacks,
        backend,
        registry=registry,
        secrets=secrets,
        sink=sink,
        alert_sender=alert_sender,
    )


API_PROD = StackParams(stack_name="api", environment="prod", version="1.2.0")
INFRA_PROD = StackParams(stack_name="infra", environment="prod")


class TestDeploy:
    def test_child_deploy_flushes_collected_and_declared_values(
        self, backend, registry, secrets, sink, alert_sender
    ):
        stacks = _stacks(
            api_env={"LOG_BUCKET": "${resource:logs.bucket}", "STACK": "${stack:name}"},
            api_secrets={"API_TOKEN": "${secret:API_TOKEN}"},
        )
        orchestrator = _orchestrator(stacks, backend, registry, secrets, sink, alert_sender)

        result = orchestrator.deploy(API_PROD)

        assert result.state == DeployState.DONE
        assert result.ok
        assert result.error is None
        assert result.completed_steps == [
            DeployState.RECONCILE,
            DeployState.RESOLVE_PLACEHOLDERS,
            DeployState.PROVISION,
            DeployState.COLLECT_COMPUTE_CONTEXT,
            DeployState.FLUSH,
        ]
        assert result.env_vars["LOG_BUCKET"] == "logs-bucket-123"
        assert result.env_vars["BUCKET_NAME"] == "logs-bucket-123"
        assert result.env_vars["STACK"] == "api"
        assert result.secret_env_vars["API_TOKEN"] == "prod-token"
        assert result.secret_env_vars["S3_ACCESS_KEY"] == "AKIAPROD"

        sink.push.assert_called_once_with(result.env_vars, result.secret_env_vars)
        alert_sender.send.assert_not_called()

    def test_declared_env_wins_over_collected(self, backend, registry, secrets, sink, alert_sender):
        stacks = _stacks(api_env={"BUCKET_NAME": "pinned"})
        orchestrator = _orchestrator(stacks, backend, registry, secrets, sink, alert_sender)

        result = orchestrator.deploy(API_PROD)

        assert result.env_vars["BUCKET_NAME"] == "pinned"
        assert result.env_vars["BUCKET_NAME_LOGS"] == "logs-bucket-123"

    def test_owner_deploy_provisions_and_publishes(
        self, backend, registry, secrets, sink, alert_sender, s3_client
    ):
        backend = FileStateBackend(backend.state_dir / "fresh")
        orchestrator = _orchestrator(_stacks(), backend, registry, secrets, sink, alert_sender)

        result = orchestrator.deploy(INFRA_PROD)

        assert result.state == DeployState.DONE
        s3_client.create_bucket.assert_called_once_with(
            Bucket="logs--prod", CreateBucketConfiguration={"LocationConstraint": "eu-west-1"}
        )
        published = backend.read_outputs(INFRA)
        assert published["logs--prod-bucket-name"].value == "logs--prod"
        assert published["logs--prod-access-key-name"] == StackOutput("AKIAPROD", True)
        assert published["logs--prod-access-key-secret"].value == "s3-secret"
        assert "logs" in result.provisioned

    def test_dependency_fields_of_other_stack(
        self, backend, registry, secrets, sink, alert_sender
    ):
        backend.publish_outputs("org/proj/worker", {"worker-queue-url": StackOutput("amqp://q")})
        stacks = _stacks(
            api_env={"QUEUE_URL": "${dependency:jobs.queue.url}"},
            dependencies=[{"name": "jobs", "owner": "worker", "resource": "queue"}],
        )
        orchestrator = _orchestrator(stacks, backend, registry, secrets, sink, alert_sender)

        result = orchestrator.deploy(API_PROD)

        assert result.state == DeployState.DONE
        assert result.env_vars["QUEUE_URL"] == "amqp://q"

    def test_defaulted_resource_token_waits_for_collected_value(
        self, backend, registry, secrets, sink, alert_sender
    ):
        stacks = _stacks(api_env={"LOG_BUCKET": "${resource:logs.bucket:fallback}"})
        orchestrator = _orchestrator(stacks, backend, registry, secrets, sink, alert_sender)

        result = orchestrator.deploy(API_PROD)

        assert result.state == DeployState.DONE
        assert result.env_vars["LOG_BUCKET"] == "logs-bucket-123"

    def test_defaulted_dependency_token_waits_for_collected_value(
        self, backend, registry, secrets, sink, alert_sender
    ):
        backend.publish_outputs(
            "org/proj/billing", {"billing-db-endpoint": StackOutput("db:5432")}
        )
        stacks = _stacks(
            api_env={"DB": "${dependency:billing.db.endpoint:none}"},
            dependencies=[{"name": "billing", "owner": "billing", "resource": "db"}],
        )
        orchestrator = _orchestrator(stacks, backend, registry, secrets, sink, alert_sender)

        result = orchestrator.deploy(API_PROD)

        assert result.state == DeployState.DONE
        assert result.env_vars["DB"] == "db:5432"

    def test_default_applies_when_collected_field_is_missing(
        self, backend, registry, secrets, sink, alert_sender
    ):
        stacks = _stacks(api_env={"CACHE": "${resource:cache.host:localhost}"})
        orchestrator = _orchestrator(stacks, backend, registry, secrets, sink, alert_sender)

        result = orchestrator.deploy(API_PROD)

        assert result.state == DeployState.DONE
        assert result.env_vars["CACHE"] == "localhost"


    def test_secret_masks_last_for_the_deploy(
        self, backend, registry, secrets, sink, alert_sender
    ):
        masked_during = []
        sink.push.side_effect = lambda env, secret_env: masked_during.append(
            secret_masking_filter.mask("token=prod-token")
        )
        stacks = _stacks(api_secrets={"API_TOKEN": "${secret:API_TOKEN}"})
        orchestrator = _orchestrator(stacks, backend, registry, secrets, sink, alert_sender)

        result = orchestrator.deploy(API_PROD)

        assert result.ok
        assert masked_during == ["token=***"]
        assert secret_masking_filter.mask("token=prod-token") == "token=prod-token"


class TestAbort:
    def test_panic_aborts_with_one_alert_and_no_flush(
        self, backend, registry, secrets, sink, alert_sender
    ):
        def _boom(descriptor, collector, ref, ctx):
            raise RuntimeError("index out of range")

        registry.register_processor("s3-bucket", _boom)
        orchestrator = _orchestrator(_stacks(), backend, registry, secrets, sink, alert_sender)

        result = orchestrator.deploy(API_PROD)

        assert result.state == DeployState.ABORTED
        assert result.failed_step == DeployState.COLLECT_COMPUTE_CONTEXT
        assert isinstance(result.error, ProvisioningPanic)
        assert result.error.original_message == "index out of range"
        assert result.error.stack_name == "api"
        assert result.error.environment == "prod"
        assert alert_sender.send.call_count == 1
        alert = alert_sender.send.call_args.args[0]
        assert alert.status == STATUS_FAILURE
        assert alert.version == "1.2.0"
        assert "index out of range" in alert.description
        sink.push.assert_not_called()
        assert result.env_vars == {}

    def test_missing_parent_output_names_key(
        self, tmp_path, registry, secrets, sink, alert_sender
    ):
        backend = FileStateBackend(tmp_path / "empty")
        orchestrator = _orchestrator(_stacks(), backend, registry, secrets, sink, alert_sender)

        result = orchestrator.deploy(API_PROD)

        assert result.state == DeployState.ABORTED
        assert isinstance(result.error, EmptyRequiredOutputError)
        assert result.error.export_key == "logs--prod-bucket-name"
        assert "stack=api" in str(result.error)
        assert alert_sender.send.call_count == 1
        sink.push.assert_not_called()

    def test_unresolved_placeholder_fails_at_flush(
        self, backend, registry, secrets, sink, alert_sender
    ):
        stacks = _stacks(api_env={"MISSING": "${resource:cache.host}"})
        orchestrator = _orchestrator(stacks, backend, registry, secrets, sink, alert_sender)

        result = orchestrator.deploy(API_PROD)

        assert result.failed_step == DeployState.FLUSH
        assert isinstance(result.error, UnresolvedPlaceholderError)
        assert result.error.token == "${resource:cache.host}"
        sink.push.assert_not_called()

    def test_cancelled_before_start(self, backend, registry, secrets, sink, alert_sender):
        cancel = threading.Event()
        cancel.set()
        orchestrator = _orchestrator(_stacks(), backend, registry, secrets, sink, alert_sender)

        result = orchestrator.deploy(API_PROD, cancel_event=cancel)

        assert result.state == DeployState.ABORTED
        assert result.failed_step == DeployState.RECONCILE
        assert isinstance(result.error, DeployCancelledError)
        assert alert_sender.send.call_args.args[0].status == STATUS_CANCELLED

    def test_cancellation_is_observed_at_next_step_boundary(
        self, backend, registry, secrets, sink, alert_sender, s3_client
    ):
        cancel = threading.Event()
        s3_client.create_bucket.side_effect = lambda **kwargs: cancel.set()
        orchestrator = _orchestrator(_stacks(), backend, registry, secrets, sink, alert_sender)

        result = orchestrator.deploy(INFRA_PROD, cancel_event=cancel)

        assert s3_client.create_bucket.call_count == 1
        assert result.completed_steps[-1] == DeployState.PROVISION
        assert result.failed_step == DeployState.COLLECT_COMPUTE_CONTEXT
        assert alert_sender.send.call_count == 1
        sink.push.assert_not_called()

    def test_alert_failure_keeps_deploy_error(
        self, tmp_path, registry, secrets, sink, alert_sender
    ):
        alert_sender.send.side_effect = requests.exceptions.ConnectionError("webhook down")
        backend = FileStateBackend(tmp_path / "empty")
        orchestrator = _orchestrator(_stacks(), backend, registry, secrets, sink, alert_sender)

        result = orchestrator.deploy(API_PROD)

        assert isinstance(result.error, EmptyRequiredOutputError)
        assert result.alert_sent is False

    def test_unknown_stack(self, backend, registry, secrets, sink, alert_sender):
        orchestrator = _orchestrator(_stacks(), backend, registry, secrets, sink, alert_sender)

        result = orchestrator.deploy(StackParams(stack_name="nope", environment="prod"))

        assert result.state == DeployState.ABORTED
        assert result.failed_step == DeployState.RECONCILE
        assert alert_sender.send.call_count == 1


class TestPreview:
    def test_preview_skips_provisioning_and_writes(
        self, backend, registry, secrets, sink, alert_sender, s3_client
    ):
        fresh = FileStateBackend(backend.state_dir / "fresh")
        orchestrator = _orchestrator(_stacks(), fresh, registry, secrets, sink, alert_sender)

        result = orchestrator.deploy(INFRA_PROD, preview=True)

        assert result.state == DeployState.DONE
        assert result.preview
        s3_client.create_bucket.assert_not_called()
        assert fresh.read_outputs(INFRA) == {}
        sink.push.assert_not_called()

    def test_preview_still_collects_bindings(
        self, backend, registry, secrets, sink, alert_sender
    ):
        stacks = _stacks(api_env={"LOG_BUCKET": "${resource:logs.bucket}"})
        orchestrator = _orchestrator(stacks, backend, registry, secrets, sink, alert_sender)

        result = orchestrator.deploy(API_PROD, preview=True)

        assert result.state == DeployState.DONE
        assert result.env_vars["LOG_BUCKET"] == "logs-bucket-123"
        sink.push.assert_not_called()


def test_dependency_fields_prefers_stack_exports():
    outputs = {
        "queue--prod-url": StackOutput("physical"),
        "queue--prod-region": StackOutput("eu"),
        "worker-queue-url": StackOutput("exported"),
        "worker-other-url": StackOutput("ignored"),
    }

    fields = dependency_fields(outputs, "worker", "queue", "prod")

    assert fields == {"url": "exported", "region": "eu"}
