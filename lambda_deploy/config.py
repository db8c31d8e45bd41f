"""
Configuration for lambda_deploy package.

Uses pydantic-settings for environment variable management. The resulting
object is passed into every component constructor; nothing reads ambient
provider state.
"""

from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

LAMBDA_BASIC_EXECUTION_ROLE = (
    "arn:aws:iam::aws:policy/service-role/AWSLambdaBasicExecutionRole"
)


class DeployConfig(BaseSettings):
    """Configuration for bundling and deploying Lambda functions."""

    model_config = SettingsConfigDict(
        env_prefix="LAMBDA_DEPLOY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App identity
    app_name: str = Field(
        default="app",
        description="App name used when resolving the bootstrap bucket",
    )
    stage: str = Field(
        default="dev",
        description="Stage name used when resolving the bootstrap bucket",
    )

    # AWS Configuration
    region: str = Field(
        default="us-east-1",
        description="Default AWS region for functions and artifacts",
    )
    bucket_name: str = Field(
        default="",
        description="Artifact bucket used when no bucket resolver is given",
    )
    endpoint_url: str | None = Field(
        default=None,
        description="Override AWS endpoint URL (for local testing)",
    )

    # Bundling
    build_dir: str = Field(
        default=".build",
        description="Directory where per-function archives are written",
    )
    hash_ignore: List[str] = Field(
        default_factory=list,
        description="Extra glob patterns excluded from bundle hashing",
    )

    # IAM
    managed_policy_arns: List[str] = Field(
        default_factory=lambda: [LAMBDA_BASIC_EXECUTION_ROLE],
        description="Managed policies attached to every execution role",
    )

    # Code update controller
    active_max_attempts: int = Field(
        default=10,
        description="Polls while waiting for a function to become active",
        ge=1,
        le=50,
    )
    apply_max_attempts: int = Field(
        default=8,
        description="Attempts for update_function_code on conflicts",
        ge=1,
        le=50,
    )
    backoff_multiplier: float = Field(
        default=1.0,
        description="Exponential backoff multiplier in seconds",
        ge=0,
    )
    backoff_max: float = Field(
        default=20.0,
        description="Maximum backoff between attempts in seconds",
        ge=0,
    )
    verify_timeout: float = Field(
        default=300.0,
        description="Maximum seconds to wait for a code update to apply",
        ge=0,
    )
    verify_poll_interval: float = Field(
        default=2.0,
        description="Seconds between update status polls",
        ge=0,
    )


@lru_cache
def get_config() -> DeployConfig:
    """Get cached configuration instance."""
    return DeployConfig()
