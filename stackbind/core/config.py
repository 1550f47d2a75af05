"""
Engine configuration definition.

Loads configuration from environment variables (and an optional .env file)
and provides a Pydantic model. Uses pydantic-settings for type safety and defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseAppConfig(BaseSettings):
    """
    Common application settings.
    """

    LOG_LEVEL: str = Field(default="INFO", description="Log level")
    LOG_FORMAT: str = Field(default="json", description="Log format (json or text)")

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=True, extra="ignore"
    )


class StackbindConfig(BaseAppConfig):
    """
    Configuration for one engine process.
    """

    # Identity used to expand short stack references
    ORGANIZATION: str = Field(default="organization", description="Organization name")
    PROJECT_NAME: str = Field(default="project", description="Project name")

    # Persisted provisioning state
    STATE_BACKEND: str = Field(default="fs", description="State backend type (fs or s3)")
    STATE_DIR: str = Field(default=".stackbind/state", description="Root of the fs state")
    STATE_BUCKET: str = Field(default="", description="Bucket holding the s3 state")
    STATE_PREFIX: str = Field(default="stackbind", description="Key prefix of the s3 state")
    S3_ENDPOINT: str = Field(default="", description="Custom S3 endpoint (optional)")
    AWS_REGION: str = Field(default="us-east-1", description="Region for the s3 state")

    # Secrets
    SECRETS_FILE: str = Field(default="secrets.yaml", description="Secrets descriptor path")
    PRIVATE_KEY_PATH: str = Field(default="", description="Private key used to decrypt")
    PUBLIC_KEY_PATH: str = Field(default="", description="Public key used to encrypt")

    # Compute context collection
    MAX_PARALLEL_PROCESSORS: int = Field(
        default=4, ge=1, description="Max compute processors running at once"
    )

    # Notifications
    ALERT_WEBHOOK_URL: str = Field(default="", description="Webhook receiving deploy alerts")
    ALERT_TIMEOUT_SECONDS: float = Field(default=5.0, description="Webhook timeout (seconds)")

    # Workload runtime configuration
    WORKLOAD_ENV_FILE: str = Field(default=".stackbind/workload.env", description="Env file")
    WORKLOAD_SECRETS_FILE: str = Field(
        default=".stackbind/workload.secrets.env", description="Secret env file"
    )


def load_config(**overrides) -> StackbindConfig:
    """Build the configuration; keyword overrides win over the environment."""
    return StackbindConfig(**overrides)
