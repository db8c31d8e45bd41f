"""
Content-addressed artifact publishing to S3.

Archives are stored under ``<resource-name>-code-<content-hash>.zip``. The key
is a total function of the resource name and the bundle hash, so identical
content always maps to the same object and re-publishing it is a no-op.
"""

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Optional

import boto3
from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import BotoCoreError, ClientError

from lambda_deploy.config import DeployConfig, get_config
from lambda_deploy.errors import UploadError
from lambda_deploy.types import Archive, ArtifactLocation, ContentHash

if TYPE_CHECKING:
    from mypy_boto3_s3 import S3Client
else:
    S3Client = Any  # type: ignore[misc,assignment]

logger = logging.getLogger(__name__)

# Resolves the bootstrap artifact bucket for a region
BucketResolver = Callable[[str], str]

_NOT_FOUND_CODES = ("404", "NoSuchKey", "NotFound")

# S3 answers HEAD with 403 for a missing key when ListBucket is not granted
_DENIED_CODES = ("403", "AccessDenied", "Forbidden")


def artifact_key(resource_name: str, content_hash: ContentHash) -> str:
    """Build the storage key for a function's code archive."""
    return f"{resource_name}-code-{content_hash}.zip"


@dataclass(frozen=True)
class PublishResult:
    """Result from publishing an archive."""

    location: ArtifactLocation
    uploaded: bool


class ArtifactPublisher:
    """
    Uploads code archives to the per-region artifact bucket.

    A HEAD request is made before uploading; when the object already exists
    the upload is skipped. Failures are surfaced as UploadError and are not
    retried here.
    """

    def __init__(
        self,
        config: Optional[DeployConfig] = None,
        s3_client: Optional[S3Client] = None,
        bucket_resolver: Optional[BucketResolver] = None,
    ):
        self._config = config or get_config()
        self._bucket_resolver = bucket_resolver
        self._clients: dict[str, S3Client] = {}
        # publish runs in worker threads
        self._clients_lock = threading.Lock()
        if s3_client is not None:
            self._clients[self._config.region] = s3_client

    def _client(self, region: str) -> S3Client:
        with self._clients_lock:
            if region not in self._clients:
                client_kwargs: dict[str, Any] = {"region_name": region}
                if self._config.endpoint_url:
                    client_kwargs["endpoint_url"] = self._config.endpoint_url
                self._clients[region] = boto3.client("s3", **client_kwargs)
            return self._clients[region]

    def bucket_for(self, region: str) -> str:
        """Resolve the artifact bucket name for a region."""
        if self._bucket_resolver is not None:
            return self._bucket_resolver(region)
        if not self._config.bucket_name:
            raise ValueError(
                "Artifact bucket required. "
                "Set LAMBDA_DEPLOY_BUCKET_NAME or pass a bucket_resolver."
            )
        return self._config.bucket_name

    def location_for(
        self,
        resource_name: str,
        content_hash: ContentHash,
        region: Optional[str] = None,
    ) -> ArtifactLocation:
        """Where an archive with this hash is (or would be) stored."""
        region = region or self._config.region
        return ArtifactLocation(
            bucket=self.bucket_for(region),
            key=artifact_key(resource_name, content_hash),
        )

    def exists(
        self,
        location: ArtifactLocation,
        region: Optional[str] = None,
    ) -> bool:
        """
        Check whether an object already exists at location.

        A denied HEAD counts as absent so the caller goes on to upload; a
        real permission problem then fails the upload instead.
        """
        client = self._client(region or self._config.region)
        try:
            client.head_object(Bucket=location.bucket, Key=location.key)
        except ClientError as e:
            code = e.response["Error"]["Code"]
            if code in _NOT_FOUND_CODES:
                return False
            if code in _DENIED_CODES:
                logger.debug(
                    "HEAD denied for %s, treating as absent", location.uri
                )
                return False
            raise
        return True

    def publish(
        self,
        archive: Archive,
        resource_name: str,
        content_hash: ContentHash,
        region: Optional[str] = None,
    ) -> PublishResult:
        """
        Upload an archive unless its content-addressed key already exists.

        Args:
            archive: The built archive
            resource_name: Logical function name (first part of the key)
            content_hash: Bundle content hash (second part of the key)
            region: Region whose artifact bucket receives the object

        Returns:
            PublishResult with the location and whether an upload happened

        Raises:
            UploadError: On network or permission failures
        """
        region = region or self._config.region
        location = self.location_for(resource_name, content_hash, region)

        try:
            if self.exists(location, region):
                logger.info(
                    "Artifact already present, skipping upload: %s",
                    location.uri,
                )
                return PublishResult(location=location, uploaded=False)

            self._client(region).upload_file(
                str(archive.path), location.bucket, location.key
            )
        except (
            ClientError,
            BotoCoreError,
            S3UploadFailedError,
            OSError,
        ) as e:
            raise UploadError(
                f"Failed to upload {archive.path} to {location.uri} "
                f"for {resource_name}: {e}",
                resource_name=resource_name,
            ) from e

        logger.info(
            "Uploaded artifact for %s: %s (%d bytes)",
            resource_name,
            location.uri,
            archive.size,
        )
        return PublishResult(location=location, uploaded=True)
