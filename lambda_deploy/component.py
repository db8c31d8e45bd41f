"""
BundledFunction - a Pulumi component that deploys a built bundle to Lambda.

The component owns a per-region provider and drives the deploy pipeline
inside the Pulumi program:
- `pulumi preview`: the bundle is wrapped, hashed and archived, and the role
  and function are declared. Nothing is uploaded and no code is pushed.
- `pulumi up`: the archive is published and the function's code is pointed
  at it once the function exists.

Example:
    ```python
    api = BundledFunction(
        "api",
        bundle=".open-next/server-function",
        handler="index.handler",
        injections=["await import('./instrument.mjs');"],
        environment={"TABLE_NAME": table.name},
    )
    pulumi.export("api_function", api.function_name)
    ```
"""

from typing import Mapping, Optional, Sequence

import pulumi
import pulumi_aws as aws
from pulumi import ComponentResource, Output, ResourceOptions

from lambda_deploy.config import DeployConfig, get_config
from lambda_deploy.pipeline import (
    DeployPipeline,
    DeployResult,
    FunctionDeployRequest,
)
from lambda_deploy.publisher import ArtifactPublisher
from lambda_deploy.pulumi_engine import PulumiEngine
from lambda_deploy.types import InlinePolicy, RuntimeConfig
from lambda_deploy.updater import CodeUpdateController


class BundledFunction(ComponentResource):
    """
    Lambda function deployed from a locally built bundle.

    Exports:
    - function_name: Physical Lambda function name
    - arn: Function ARN
    - role_arn: Execution role ARN
    - handler: Entry reference the function is configured with
    - artifact_key: S3 key of the published archive
    """

    def __init__(
        self,
        name: str,
        *,
        bundle: str,
        handler: str,
        runtime_config: Optional[RuntimeConfig] = None,
        environment: Optional[Mapping[str, str]] = None,
        policies: Sequence[InlinePolicy] = (),
        streaming: bool = False,
        injections: Sequence[str] = (),
        bundle_hash: Optional[str] = None,
        region: Optional[str] = None,
        config: Optional[DeployConfig] = None,
        publisher: Optional[ArtifactPublisher] = None,
        controller: Optional[CodeUpdateController] = None,
        opts: Optional[ResourceOptions] = None,
    ):
        super().__init__(
            "lambda-deploy:index:BundledFunction", name, None, opts
        )

        config = config or get_config()
        region = region or config.region

        provider = aws.Provider(
            f"{name}-provider",
            region=region,
            opts=ResourceOptions(parent=self),
        )
        pipeline = DeployPipeline(
            config,
            PulumiEngine(provider=provider, parent=self),
            publisher=publisher,
            controller=controller,
        )
        request = FunctionDeployRequest(
            name=name,
            bundle=bundle,
            handler=handler,
            runtime_config=runtime_config or RuntimeConfig(),
            environment=dict(environment or {}),
            policies=tuple(policies),
            streaming=streaming,
            injections=tuple(injections),
            bundle_hash=bundle_hash,
            region=region,
        )

        dry_run = pulumi.runtime.is_dry_run()
        if dry_run:
            pulumi.log.info(f"Previewing '{name}' (no upload, no code update)")

        result: Output[DeployResult] = Output.from_input(
            pipeline.deploy(request, dry_run=dry_run)
        )

        self.function_name = result.apply(
            lambda r: r.function.function_name if r.function else None
        )
        self.arn = result.apply(
            lambda r: r.function.arn if r.function else None
        )
        self.role_arn = result.apply(lambda r: r.role.arn if r.role else None)
        self.handler = result.apply(lambda r: r.entry_reference)
        self.artifact_key = result.apply(lambda r: r.location.key)

        self.register_outputs(
            {
                "function_name": self.function_name,
                "arn": self.arn,
                "role_arn": self.role_arn,
                "handler": self.handler,
                "artifact_key": self.artifact_key,
            }
        )
