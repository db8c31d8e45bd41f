"""
Out-of-band code updates for Lambda functions.

The resource engine creates functions with placeholder code because it cannot
wait for an artifact that is built asynchronously. This controller then points
the live function at the published archive:

    IDLE -> AWAITING_ACTIVE -> APPLYING -> VERIFYING -> DONE | FAILED

Lambda rejects code updates while a function is still initializing or while
another update (often the engine's own configuration update) is applying.
Those conflicts are expected and retried with exponential backoff. Only one
job per function name runs at a time so this controller never causes the
conflict it works around. Every step is idempotent, so a failed or cancelled
job is safe to run again.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
    wait_fixed,
)

from lambda_deploy.config import DeployConfig, get_config
from lambda_deploy.errors import (
    CodeUpdateConflict,
    CodeUpdateFatal,
    CodeUpdateTimeout,
)
from lambda_deploy.types import (
    ArtifactLocation,
    CodeUpdateJob,
    CodeUpdateStatus,
    ContentHash,
)

if TYPE_CHECKING:
    from mypy_boto3_lambda import LambdaClient
else:
    LambdaClient = Any  # type: ignore[misc,assignment]

logger = logging.getLogger(__name__)


class _NotReady(Exception):
    """The function is initializing or an update is still in progress."""


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


class CodeUpdateController:
    """
    Pushes published artifacts onto existing functions.

    Example:
        ```python
        controller = CodeUpdateController(config)
        job = await controller.run(
            "my-fn-abc123",
            ArtifactLocation(bucket="artifacts", key="api-code-<hash>.zip"),
            "<hash>",
        )
        assert job.status is CodeUpdateStatus.DONE
        ```
    """

    def __init__(
        self,
        config: Optional[DeployConfig] = None,
        lambda_client: Optional[LambdaClient] = None,
    ):
        self._config = config or get_config()
        self._clients: Dict[str, LambdaClient] = {}
        if lambda_client is not None:
            self._clients[self._config.region] = lambda_client
        self._locks: Dict[str, asyncio.Lock] = {}
        self._applied: Dict[str, ContentHash] = {}

    def _client(self, region: str) -> LambdaClient:
        if region not in self._clients:
            client_kwargs: dict[str, Any] = {"region_name": region}
            if self._config.endpoint_url:
                client_kwargs["endpoint_url"] = self._config.endpoint_url
            self._clients[region] = boto3.client("lambda", **client_kwargs)
        return self._clients[region]

    def lock_for(self, function_name: str) -> asyncio.Lock:
        """The lock serializing jobs for one function name."""
        lock = self._locks.get(function_name)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[function_name] = lock
        return lock

    def last_applied(self, function_name: str) -> Optional[ContentHash]:
        return self._applied.get(function_name)

    def _backoff(self) -> Any:
        return wait_exponential(
            multiplier=self._config.backoff_multiplier,
            max=self._config.backoff_max,
        )

    async def run(
        self,
        function_name: str,
        location: ArtifactLocation,
        content_hash: ContentHash,
        region: Optional[str] = None,
    ) -> CodeUpdateJob:
        """
        Point a function at an artifact and wait until the update applied.

        Args:
            function_name: Physical Lambda function name
            location: Published artifact
            content_hash: Bundle hash the artifact was built from
            region: Function region (defaults to config)

        Returns:
            The finished job. ``job.skipped`` is set when the hash was
            already applied and no API calls were made.

        Raises:
            CodeUpdateFatal: The function vanished or failed, or retries
                were exhausted
            CodeUpdateTimeout: The update did not finish applying in time;
                running the job again is safe
        """
        region = region or self._config.region
        job = CodeUpdateJob(
            function_name=function_name,
            location=location,
            content_hash=content_hash,
            region=region,
        )

        async with self.lock_for(function_name):
            job.last_applied_hash = self._applied.get(function_name)
            if job.last_applied_hash == content_hash:
                job.skipped = True
                job.transition(CodeUpdateStatus.DONE)
                logger.info(
                    "Code for %s already at %s, skipping update",
                    function_name,
                    content_hash[:12],
                )
                return job

            client = self._client(region)
            try:
                await self._await_active(job, client)
                await self._apply(job, client)
                await self._verify(job, client)
            except CodeUpdateTimeout as e:
                job.retryable = True
                job.error = str(e)
                job.transition(CodeUpdateStatus.FAILED)
                raise
            except CodeUpdateFatal as e:
                job.retryable = False
                job.error = str(e)
                job.transition(CodeUpdateStatus.FAILED)
                raise

            self._applied[function_name] = content_hash
            job.last_applied_hash = content_hash
            job.transition(CodeUpdateStatus.DONE)

        logger.info(
            "Updated code for %s to %s after %d call(s)",
            function_name,
            location.uri,
            job.attempts,
        )
        return job

    async def _describe(
        self, job: CodeUpdateJob, client: LambdaClient
    ) -> Dict[str, Any]:
        try:
            return await asyncio.to_thread(
                client.get_function_configuration,
                FunctionName=job.function_name,
            )
        except ClientError as e:
            if _error_code(e) == "ResourceNotFoundException":
                raise CodeUpdateFatal(
                    f"Function {job.function_name} no longer exists",
                    resource_name=job.function_name,
                ) from e
            raise CodeUpdateFatal(
                f"Failed to read {job.function_name} configuration: {e}",
                resource_name=job.function_name,
            ) from e
        except BotoCoreError as e:
            raise CodeUpdateFatal(
                f"Failed to read {job.function_name} configuration: {e}",
                resource_name=job.function_name,
            ) from e

    async def _await_active(
        self, job: CodeUpdateJob, client: LambdaClient
    ) -> None:
        job.transition(CodeUpdateStatus.AWAITING_ACTIVE)
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(_NotReady),
                stop=stop_after_attempt(self._config.active_max_attempts),
                wait=self._backoff(),
                before_sleep=before_sleep_log(logger, logging.INFO),
                reraise=True,
            ):
                with attempt:
                    job.attempts += 1
                    configuration = await self._describe(job, client)
                    state = configuration.get("State", "Active")
                    last_update = configuration.get(
                        "LastUpdateStatus", "Successful"
                    )
                    if state == "Failed":
                        raise CodeUpdateFatal(
                            f"Function {job.function_name} is in a failed "
                            f"state: {configuration.get('StateReason')}",
                            resource_name=job.function_name,
                        )
                    if state == "Pending" or last_update == "InProgress":
                        raise _NotReady(
                            f"{job.function_name} is {state}/{last_update}"
                        )
        except _NotReady as e:
            raise CodeUpdateFatal(
                f"Function {job.function_name} did not become active after "
                f"{self._config.active_max_attempts} checks ({e}); "
                "re-run the deploy",
                resource_name=job.function_name,
            ) from e

    async def _update_code(
        self, job: CodeUpdateJob, client: LambdaClient
    ) -> None:
        try:
            await asyncio.to_thread(
                client.update_function_code,
                FunctionName=job.function_name,
                S3Bucket=job.location.bucket,
                S3Key=job.location.key,
            )
        except ClientError as e:
            code = _error_code(e)
            if code == "ResourceConflictException":
                raise CodeUpdateConflict(
                    f"Update already in progress for {job.function_name}",
                    resource_name=job.function_name,
                ) from e
            if code == "ResourceNotFoundException":
                raise CodeUpdateFatal(
                    f"Function {job.function_name} no longer exists",
                    resource_name=job.function_name,
                ) from e
            raise CodeUpdateFatal(
                f"Failed to update code for {job.function_name}: {e}",
                resource_name=job.function_name,
            ) from e
        except BotoCoreError as e:
            raise CodeUpdateFatal(
                f"Failed to update code for {job.function_name}: {e}",
                resource_name=job.function_name,
            ) from e

    async def _apply(self, job: CodeUpdateJob, client: LambdaClient) -> None:
        job.transition(CodeUpdateStatus.APPLYING)
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(CodeUpdateConflict),
                stop=stop_after_attempt(self._config.apply_max_attempts),
                wait=self._backoff(),
                before_sleep=before_sleep_log(logger, logging.INFO),
                reraise=True,
            ):
                with attempt:
                    job.attempts += 1
                    await self._update_code(job, client)
        except CodeUpdateConflict as e:
            raise CodeUpdateFatal(
                f"{job.function_name} was still busy after "
                f"{self._config.apply_max_attempts} update attempts; "
                "re-run the deploy",
                resource_name=job.function_name,
            ) from e

    async def _verify(self, job: CodeUpdateJob, client: LambdaClient) -> None:
        job.transition(CodeUpdateStatus.VERIFYING)
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(_NotReady),
                stop=stop_after_delay(self._config.verify_timeout),
                wait=wait_fixed(self._config.verify_poll_interval),
                reraise=True,
            ):
                with attempt:
                    job.attempts += 1
                    configuration = await self._describe(job, client)
                    last_update = configuration.get(
                        "LastUpdateStatus", "Successful"
                    )
                    if last_update == "Failed":
                        raise CodeUpdateFatal(
                            f"Code update for {job.function_name} failed: "
                            f"{configuration.get('LastUpdateStatusReason')}",
                            resource_name=job.function_name,
                        )
                    if last_update != "Successful":
                        raise _NotReady(
                            f"{job.function_name} update is {last_update}"
                        )
        except _NotReady as e:
            raise CodeUpdateTimeout(
                f"Code update for {job.function_name} still in progress "
                f"after {self._config.verify_timeout:.0f}s",
                resource_name=job.function_name,
            ) from e
