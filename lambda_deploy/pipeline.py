"""
Per-function deploy pipeline.

Deploying a function is a two-phase commit:

1. Declarative: the resource engine creates or updates the role and the
   function's metadata, with placeholder code.
2. Imperative: the code update controller points the function at the
   published archive. This phase is idempotent and always safe to re-run.

Each function runs its own ordered chain

    wrap -> hash -> archive -> publish -> role -> function -> update code

and chains for different functions run concurrently. The handler is wrapped
before hashing because the wrapper is written into the bundle and must be
part of the published content.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import (
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from lambda_deploy.archive import build_archive
from lambda_deploy.config import DeployConfig, get_config
from lambda_deploy.engine import ResourceEngine
from lambda_deploy.function import FunctionResourceManager
from lambda_deploy.hasher import hash_bundle
from lambda_deploy.publisher import ArtifactPublisher
from lambda_deploy.role import LAMBDA_PRINCIPAL, RoleProvisioner
from lambda_deploy.types import (
    Archive,
    ArtifactLocation,
    BundleDescriptor,
    CodeUpdateJob,
    ContentHash,
    EntryReference,
    FunctionResource,
    HandlerSpec,
    InlinePolicy,
    Role,
    RuntimeConfig,
)
from lambda_deploy.updater import CodeUpdateController
from lambda_deploy.wrapper import wrap_handler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FunctionDeployRequest:
    """Everything needed to deploy one function from a built bundle."""

    name: str
    bundle: Path
    handler: EntryReference
    runtime_config: RuntimeConfig = field(default_factory=RuntimeConfig)
    environment: Mapping[str, str] = field(default_factory=dict)
    policies: Tuple[InlinePolicy, ...] = ()
    managed_policy_arns: Tuple[str, ...] = ()
    trust_principal: str = LAMBDA_PRINCIPAL
    streaming: bool = False
    injections: Tuple[str, ...] = ()
    bundle_hash: Optional[ContentHash] = None
    region: Optional[str] = None
    ignore: Tuple[str, ...] = ()
    follow_symlinks: bool = True


@dataclass(frozen=True)
class DeployResult:
    """Outcome of a function's deploy chain."""

    name: str
    entry_reference: EntryReference
    content_hash: ContentHash
    archive: Archive
    location: ArtifactLocation
    uploaded: bool
    role: Optional[Role] = None
    function: Optional[FunctionResource] = None
    job: Optional[CodeUpdateJob] = None
    dry_run: bool = False


class DeployPipeline:
    """
    Sequences the bundling and deploy components for each function.

    Example:
        ```python
        pipeline = DeployPipeline(config, engine)
        result = await pipeline.deploy(
            FunctionDeployRequest(
                name="api",
                bundle=Path(".open-next/server-function"),
                handler="index.handler",
            )
        )
        print(result.location.uri)
        ```
    """

    def __init__(
        self,
        config: Optional[DeployConfig] = None,
        engine: Optional[ResourceEngine] = None,
        *,
        publisher: Optional[ArtifactPublisher] = None,
        controller: Optional[CodeUpdateController] = None,
        roles: Optional[RoleProvisioner] = None,
        functions: Optional[FunctionResourceManager] = None,
    ):
        self._config = config or get_config()
        if engine is None and (roles is None or functions is None):
            raise ValueError(
                "A resource engine is required unless role and function "
                "managers are supplied"
            )
        self._publisher = publisher or ArtifactPublisher(self._config)
        self._controller = controller or CodeUpdateController(self._config)
        self._roles = roles or RoleProvisioner(engine, self._config)
        self._functions = functions or FunctionResourceManager(
            engine, self._config
        )

    @property
    def controller(self) -> CodeUpdateController:
        return self._controller

    def archive_path(self, name: str) -> Path:
        return Path(self._config.build_dir) / name / "code.zip"

    async def deploy(
        self,
        request: FunctionDeployRequest,
        *,
        dry_run: bool = False,
    ) -> DeployResult:
        """
        Run the deploy chain for one function.

        With dry_run nothing is uploaded and no code is pushed; the role and
        function are still declared so the engine can preview them. The
        returned location is where the archive would be published.

        Raises:
            BundleIOError, UploadError, RoleCreationError,
            FunctionCreateError, CodeUpdateFatal, CodeUpdateTimeout
        """
        name = request.name
        region = request.region or self._config.region
        bundle = Path(request.bundle)

        entry_reference = await asyncio.to_thread(
            wrap_handler,
            HandlerSpec(
                bundle_path=bundle,
                handler=request.handler,
                streaming=request.streaming,
                injections=tuple(request.injections),
            ),
        )

        content_hash = request.bundle_hash
        if content_hash is None:
            content_hash = await asyncio.to_thread(
                hash_bundle,
                BundleDescriptor(
                    root_path=bundle,
                    ignore=tuple(request.ignore),
                    follow_symlinks=request.follow_symlinks,
                ),
                extra_ignore=self._config.hash_ignore,
            )

        archive = await asyncio.to_thread(
            build_archive, bundle, self.archive_path(name)
        )

        if dry_run:
            location = self._publisher.location_for(name, content_hash, region)
            uploaded = False
            logger.info("Dry run for %s, would publish %s", name, location.uri)
        else:
            published = await asyncio.to_thread(
                self._publisher.publish, archive, name, content_hash, region
            )
            location, uploaded = published.location, published.uploaded

        role = await self._roles.provision(
            name,
            trust_principal=request.trust_principal,
            policies=request.policies,
            managed_policy_arns=request.managed_policy_arns,
        )
        function = await self._functions.create_or_update(
            name,
            role,
            request.runtime_config,
            request.environment,
            entry_reference,
        )

        if dry_run:
            return DeployResult(
                name=name,
                entry_reference=entry_reference,
                content_hash=content_hash,
                archive=archive,
                location=location,
                uploaded=uploaded,
                role=role,
                function=function,
                dry_run=True,
            )

        job = await self._controller.run(
            function.function_name,
            location,
            content_hash,
            region,
        )

        logger.info("Deployed %s from %s", name, location.uri)
        return DeployResult(
            name=name,
            entry_reference=entry_reference,
            content_hash=content_hash,
            archive=archive,
            location=location,
            uploaded=uploaded,
            role=role,
            function=replace(function, code=location),
            job=job,
        )

    async def deploy_all(
        self,
        requests: Sequence[FunctionDeployRequest],
        *,
        dry_run: bool = False,
    ) -> Dict[str, Union[DeployResult, BaseException]]:
        """
        Deploy several functions concurrently.

        A failure aborts only that function's chain; its exception is
        returned in place of a result.
        """
        names = [request.name for request in requests]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate function names in {names}")

        outcomes: List[Union[DeployResult, BaseException]] = (
            await asyncio.gather(
                *(
                    self.deploy(request, dry_run=dry_run)
                    for request in requests
                ),
                return_exceptions=True,
            )
        )
        for name, outcome in zip(names, outcomes):
            if isinstance(outcome, BaseException):
                logger.error("Deploy failed for %s: %s", name, outcome)
        return dict(zip(names, outcomes))
