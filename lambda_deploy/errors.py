"""Custom exceptions for lambda_deploy operations."""

from typing import Optional


class DeployError(Exception):
    """Base exception for all lambda_deploy errors."""

    def __init__(self, message: str, resource_name: Optional[str] = None):
        super().__init__(message)
        self.resource_name = resource_name


class RetryableDeployError(DeployError):
    """
    Exception raised for transient failures.

    The same operation may succeed when attempted again without any change
    to its inputs.
    """


class FatalDeployError(DeployError):
    """
    Exception raised for permanent failures.

    These abort the affected function's deploy chain and are surfaced to the
    caller. Re-running the deploy is safe once the cause is addressed.
    """


# Bundle exceptions
class BundleIOError(FatalDeployError, OSError):
    """Raised when a bundle cannot be read, wrapped or archived."""


# Provider exceptions
class UploadError(FatalDeployError):
    """Raised when an artifact cannot be written to object storage."""


class RoleCreationError(FatalDeployError):
    """Raised when the execution role cannot be created."""


class FunctionCreateError(FatalDeployError):
    """Raised when the function resource cannot be created or updated."""


# Code update exceptions
class CodeUpdateConflict(RetryableDeployError):
    """Raised when the function rejects an update because it is busy."""


class CodeUpdateTimeout(RetryableDeployError):
    """Raised when a code update did not finish applying in time."""


class CodeUpdateFatal(FatalDeployError):
    """
    Raised when a code update cannot complete.

    The function vanished, entered a failed state, or retries were exhausted.
    Run the deploy again once the function is healthy.
    """
