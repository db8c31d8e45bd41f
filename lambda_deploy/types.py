"""Data models shared by the bundling and deploy pipeline."""

import posixpath
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

# Hex sha256 digest of a bundle's (relative path, content) pairs
ContentHash = str

# Lambda handler reference, e.g. "server/index.handler"
EntryReference = str


@dataclass(frozen=True)
class BundleDescriptor:
    """A directory of built code and how to walk it."""

    root_path: Path
    ignore: Tuple[str, ...] = ()
    follow_symlinks: bool = True


@dataclass(frozen=True)
class HandlerSpec:
    """The original handler of a bundle and what to inject before it runs."""

    bundle_path: Path
    handler: EntryReference
    streaming: bool = False
    injections: Tuple[str, ...] = ()

    @property
    def entry_dir(self) -> str:
        """Directory of the handler module, relative to the bundle root."""
        return posixpath.dirname(self.handler)

    @property
    def module_name(self) -> str:
        base = posixpath.basename(self.handler)
        module, _, _ = base.rpartition(".")
        return module or base

    @property
    def exported_symbol(self) -> str:
        base = posixpath.basename(self.handler)
        module, _, symbol = base.rpartition(".")
        return symbol if module else ""


@dataclass(frozen=True)
class RewrittenEntry:
    """A generated wrapper module written beside the original handler."""

    module_name: str
    exported_symbol: str
    path: Path


@dataclass(frozen=True)
class Archive:
    """A zip archive built from a bundle."""

    path: Path
    size: int
    entry_count: int


@dataclass(frozen=True)
class ArtifactLocation:
    """Where an archive lives in object storage."""

    bucket: str
    key: str

    @property
    def uri(self) -> str:
        return f"s3://{self.bucket}/{self.key}"


@dataclass(frozen=True)
class PlaceholderCode:
    """Inline code used only to satisfy the non-null code requirement."""

    files: Mapping[str, str]


@dataclass(frozen=True)
class RuntimeConfig:
    """Declarative Lambda settings owned by the resource engine."""

    runtime: str = "nodejs20.x"
    memory_size: int = 1024
    timeout: int = 20
    architectures: Tuple[str, ...] = ("arm64",)
    description: Optional[str] = None
    subnet_ids: Tuple[str, ...] = ()
    security_group_ids: Tuple[str, ...] = ()
    tags: Mapping[str, str] = field(default_factory=dict)

    @property
    def is_python(self) -> bool:
        return self.runtime.startswith("python")

    def to_args(self) -> Dict[str, Any]:
        """Convert to engine construct arguments."""
        args: Dict[str, Any] = {
            "runtime": self.runtime,
            "memory_size": self.memory_size,
            "timeout": self.timeout,
            "architectures": list(self.architectures),
        }
        if self.description:
            args["description"] = self.description
        if self.subnet_ids or self.security_group_ids:
            args["vpc_config"] = {
                "subnet_ids": list(self.subnet_ids),
                "security_group_ids": list(self.security_group_ids),
            }
        if self.tags:
            args["tags"] = dict(self.tags)
        return args


@dataclass(frozen=True)
class InlinePolicy:
    """A named IAM policy document embedded in a role."""

    name: str
    document: Mapping[str, Any]


@dataclass(frozen=True)
class Role:
    """The execution identity a function assumes."""

    name: str
    arn: Optional[str]
    trust_principal: str
    inline_policies: Tuple[InlinePolicy, ...] = ()
    managed_policy_arns: Tuple[str, ...] = ()
    # Engine reference to the ARN, set even when the value is not yet known
    arn_ref: Any = field(default=None, compare=False, repr=False)

    @property
    def arn_input(self) -> Any:
        """The ARN as another resource should receive it."""
        return self.arn if self.arn_ref is None else self.arn_ref


@dataclass(frozen=True)
class FunctionResource:
    """A Lambda function as created by the resource engine."""

    name: str
    # Unknown until the engine has created the function
    function_name: Optional[str]
    arn: Optional[str]
    role_arn: Optional[str]
    handler: EntryReference
    runtime_config: RuntimeConfig
    environment: Mapping[str, str]
    code: Union[PlaceholderCode, ArtifactLocation]


class CodeUpdateStatus(str, Enum):
    """States of a code update job."""

    IDLE = "IDLE"
    AWAITING_ACTIVE = "AWAITING_ACTIVE"
    APPLYING = "APPLYING"
    VERIFYING = "VERIFYING"
    DONE = "DONE"
    FAILED = "FAILED"

    # Jobs start out idle; PENDING reads better in logs
    PENDING = "IDLE"


@dataclass
class CodeUpdateJob:
    """A single out-of-band code push. Lives only for the current deploy."""

    function_name: str
    location: ArtifactLocation
    content_hash: ContentHash
    region: str
    status: CodeUpdateStatus = CodeUpdateStatus.PENDING
    attempts: int = 0
    last_applied_hash: Optional[ContentHash] = None
    retryable: Optional[bool] = None
    error: Optional[str] = None
    skipped: bool = False
    history: List[CodeUpdateStatus] = field(default_factory=list)

    def transition(self, status: CodeUpdateStatus) -> None:
        self.history.append(status)
        self.status = status

    @property
    def done(self) -> bool:
        return self.status is CodeUpdateStatus.DONE
