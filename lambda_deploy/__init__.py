"""
Lambda Deploy - bundle, publish and deploy code to AWS Lambda.

This package turns a locally built bundle into a running Lambda function
while a declarative engine (Pulumi) owns the function's configuration:

- Content hashing and deterministic zip archives of the bundle
- Optional handler wrapping to run injected code before the handler
- Content-addressed artifact publishing to S3
- Role and function declaration with placeholder code
- An out-of-band controller that points the function at the real code

Example:
    ```python
    from lambda_deploy import DeployPipeline, FunctionDeployRequest
    from lambda_deploy.pulumi_engine import PulumiEngine

    pipeline = DeployPipeline(engine=PulumiEngine())
    result = await pipeline.deploy(
        FunctionDeployRequest(name="api", bundle=path, handler="index.handler")
    )
    ```

The Pulumi pieces (``lambda_deploy.pulumi_engine`` and
``lambda_deploy.component``) are imported explicitly so the core pipeline
can be used without loading pulumi_aws.
"""

from lambda_deploy.archive import build_archive
from lambda_deploy.config import DeployConfig, get_config
from lambda_deploy.engine import (
    FUNCTION_KIND,
    ROLE_KIND,
    ResourceEngine,
    ResourceHandle,
)
from lambda_deploy.errors import (
    BundleIOError,
    CodeUpdateConflict,
    CodeUpdateFatal,
    CodeUpdateTimeout,
    DeployError,
    FatalDeployError,
    FunctionCreateError,
    RetryableDeployError,
    RoleCreationError,
    UploadError,
)
from lambda_deploy.function import FunctionResourceManager
from lambda_deploy.hasher import hash_bundle
from lambda_deploy.pipeline import (
    DeployPipeline,
    DeployResult,
    FunctionDeployRequest,
)
from lambda_deploy.publisher import (
    ArtifactPublisher,
    PublishResult,
    artifact_key,
)
from lambda_deploy.role import RoleProvisioner
from lambda_deploy.types import (
    Archive,
    ArtifactLocation,
    BundleDescriptor,
    CodeUpdateJob,
    CodeUpdateStatus,
    FunctionResource,
    HandlerSpec,
    InlinePolicy,
    PlaceholderCode,
    Role,
    RuntimeConfig,
)
from lambda_deploy.updater import CodeUpdateController
from lambda_deploy.wrapper import wrap_handler

__version__ = "0.1.0"

__all__ = [
    # Config
    "DeployConfig",
    "get_config",
    # Pipeline
    "DeployPipeline",
    "DeployResult",
    "FunctionDeployRequest",
    # Components
    "hash_bundle",
    "wrap_handler",
    "build_archive",
    "ArtifactPublisher",
    "PublishResult",
    "artifact_key",
    "RoleProvisioner",
    "FunctionResourceManager",
    "CodeUpdateController",
    # Engine interface
    "ResourceEngine",
    "ResourceHandle",
    "ROLE_KIND",
    "FUNCTION_KIND",
    # Models
    "Archive",
    "ArtifactLocation",
    "BundleDescriptor",
    "CodeUpdateJob",
    "CodeUpdateStatus",
    "FunctionResource",
    "HandlerSpec",
    "InlinePolicy",
    "PlaceholderCode",
    "Role",
    "RuntimeConfig",
    # Errors
    "DeployError",
    "RetryableDeployError",
    "FatalDeployError",
    "BundleIOError",
    "UploadError",
    "RoleCreationError",
    "FunctionCreateError",
    "CodeUpdateConflict",
    "CodeUpdateTimeout",
    "CodeUpdateFatal",
]
