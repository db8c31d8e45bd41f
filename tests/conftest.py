"""
Pytest fixtures for lambda_deploy tests.

Uses moto to mock S3. Lambda and the resource engine are replaced by small
in-memory fakes that behave like the real services where it matters: code
updates are rejected while another update is in progress, and functions only
finish updating after being polled.
"""

import os
import threading
from collections import defaultdict
from pathlib import Path
from typing import Any, Callable, Dict, Generator, List, Mapping, Optional

import boto3
import pytest
from botocore.exceptions import ClientError
from moto import mock_aws

from lambda_deploy.config import DeployConfig
from lambda_deploy.engine import FUNCTION_KIND, ROLE_KIND
from lambda_deploy.publisher import ArtifactPublisher
from lambda_deploy.updater import CodeUpdateController

TEST_BUCKET = "test-artifacts"
TEST_REGION = "us-east-1"
ACCOUNT_ID = "123456789012"


def client_error(
    code: str, operation: str = "UpdateFunctionCode"
) -> ClientError:
    """Build a botocore ClientError with the given error code."""
    return ClientError(
        {"Error": {"Code": code, "Message": f"{code} (test)"}},
        operation,
    )


class FakeLambdaClient:
    """
    In-memory stand-in for the boto3 Lambda client.

    Functions are registered by FakeEngine when it declares them. A function
    reports LastUpdateStatus=InProgress for one poll after each code update,
    and update_function_code raises ResourceConflictException while an update
    is still in progress.
    """

    def __init__(self) -> None:
        self.functions: Dict[str, Dict[str, Any]] = {}
        self.calls: List[tuple] = []
        self.conflicts = 0
        # Configurations returned before falling back to the live state
        self.scripted_states: Dict[str, List[Dict[str, Any]]] = defaultdict(
            list
        )
        # Error codes raised by update_function_code before it succeeds
        self.update_errors: Dict[str, List[str]] = defaultdict(list)
        self._lock = threading.Lock()

    def register(self, function_name: str, code: Any) -> None:
        with self._lock:
            self.functions.setdefault(
                function_name,
                {"code": code, "updating": False, "polls_until_done": 0},
            )

    def _function(self, name: str, operation: str) -> Dict[str, Any]:
        if name not in self.functions:
            raise client_error("ResourceNotFoundException", operation)
        return self.functions[name]

    def get_function_configuration(self, FunctionName: str) -> Dict[str, Any]:
        with self._lock:
            self.calls.append(("get", FunctionName))
            function = self._function(
                FunctionName, "GetFunctionConfiguration"
            )
            if self.scripted_states[FunctionName]:
                return self.scripted_states[FunctionName].pop(0)
            if function["updating"]:
                if function["polls_until_done"] > 0:
                    function["polls_until_done"] -= 1
                    return {
                        "State": "Active",
                        "LastUpdateStatus": "InProgress",
                    }
                function["updating"] = False
            return {"State": "Active", "LastUpdateStatus": "Successful"}

    def update_function_code(
        self, FunctionName: str, S3Bucket: str, S3Key: str
    ) -> Dict[str, Any]:
        with self._lock:
            self.calls.append(("update", FunctionName, S3Bucket, S3Key))
            if self.update_errors[FunctionName]:
                raise client_error(self.update_errors[FunctionName].pop(0))
            function = self._function(FunctionName, "UpdateFunctionCode")
            if function["updating"]:
                self.conflicts += 1
                raise client_error("ResourceConflictException")
            function["code"] = {"S3Bucket": S3Bucket, "S3Key": S3Key}
            function["updating"] = True
            function["polls_until_done"] = 1
            return {
                "FunctionName": FunctionName,
                "LastUpdateStatus": "InProgress",
            }

    def update_calls(self) -> List[tuple]:
        return [call for call in self.calls if call[0] == "update"]


class FakeHandle:
    """Resource handle whose outputs are already resolved."""

    def __init__(self, outputs: Mapping[str, Any]):
        self.outputs = dict(outputs)

    async def output(self, name: str) -> Any:
        return self.outputs[name]

    def ref(self, name: str) -> Any:
        return self.outputs[name]


class FakeEngine:
    """Records constructed resources and resolves them immediately."""

    def __init__(self, lambda_client: Optional[FakeLambdaClient] = None):
        self.lambda_client = lambda_client
        self.constructed: List[Dict[str, Any]] = []
        self.failures: Dict[str, Exception] = {}

    def construct(
        self,
        kind: str,
        name: str,
        args: Mapping[str, Any],
        *,
        ignore_changes: Optional[List[str]] = None,
    ) -> FakeHandle:
        self.constructed.append(
            {
                "kind": kind,
                "name": name,
                "args": dict(args),
                "ignore_changes": ignore_changes,
            }
        )
        if kind in self.failures:
            raise self.failures[kind]

        if kind == ROLE_KIND:
            return FakeHandle(
                {"arn": f"arn:aws:iam::{ACCOUNT_ID}:role/{name}", "name": name}
            )
        if kind == FUNCTION_KIND:
            function_name = f"{name}-1a2b3c4"
            if self.lambda_client is not None:
                self.lambda_client.register(function_name, args["code"])
            return FakeHandle(
                {
                    "name": function_name,
                    "arn": (
                        f"arn:aws:lambda:{TEST_REGION}:{ACCOUNT_ID}:"
                        f"function:{function_name}"
                    ),
                }
            )
        raise ValueError(f"Unsupported resource kind: {kind}")

    def of_kind(self, kind: str) -> List[Dict[str, Any]]:
        return [item for item in self.constructed if item["kind"] == kind]


@pytest.fixture
def aws_credentials() -> None:
    """Set up mock AWS credentials for moto."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_SECURITY_TOKEN"] = "testing"
    os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = TEST_REGION


@pytest.fixture
def mock_s3(aws_credentials: None) -> Generator[Any, None, None]:
    """Create a mock S3 artifact bucket."""
    with mock_aws():
        client = boto3.client("s3", region_name=TEST_REGION)
        client.create_bucket(Bucket=TEST_BUCKET)
        yield client


@pytest.fixture
def test_config(tmp_path: Path) -> DeployConfig:
    """Create test configuration with no backoff delays."""
    return DeployConfig(
        app_name="test-app",
        stage="test",
        region=TEST_REGION,
        bucket_name=TEST_BUCKET,
        build_dir=str(tmp_path / "build"),
        active_max_attempts=5,
        apply_max_attempts=5,
        backoff_multiplier=0,
        backoff_max=0,
        verify_timeout=5,
        verify_poll_interval=0,
    )


@pytest.fixture
def make_bundle(tmp_path: Path) -> Callable[..., Path]:
    """Return a helper that writes a bundle directory from a mapping."""

    def _make(files: Mapping[str, str], name: str = "bundle") -> Path:
        root = tmp_path / name
        root.mkdir(parents=True, exist_ok=True)
        for rel_path, content in files.items():
            path = root / rel_path
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)
        return root

    return _make


@pytest.fixture
def fake_lambda() -> FakeLambdaClient:
    return FakeLambdaClient()


@pytest.fixture
def fake_engine(fake_lambda: FakeLambdaClient) -> FakeEngine:
    return FakeEngine(lambda_client=fake_lambda)


@pytest.fixture
def publisher(mock_s3: Any, test_config: DeployConfig) -> ArtifactPublisher:
    """Create an ArtifactPublisher with mocked S3."""
    return ArtifactPublisher(config=test_config, s3_client=mock_s3)


@pytest.fixture
def controller(
    fake_lambda: FakeLambdaClient, test_config: DeployConfig
) -> CodeUpdateController:
    """Create a CodeUpdateController backed by the fake Lambda client."""
    return CodeUpdateController(config=test_config, lambda_client=fake_lambda)
