"""
Interface to the declarative resource engine.

The engine diffs desired against actual state and owns the create/update/
delete calls for ordinary resources. This package only needs two things from
it: construct a resource of a given kind, and read its output attributes once
they resolve.
"""

from typing import Any, Mapping, Optional, Protocol, Sequence

ROLE_KIND = "aws:iam/role:Role"
FUNCTION_KIND = "aws:lambda/function:Function"


class ResourceHandle(Protocol):
    """A constructed resource whose outputs resolve asynchronously."""

    async def output(self, name: str) -> Any:
        """Wait for and return an output attribute (e.g. ``arn``)."""
        ...

    def ref(self, name: str) -> Any:
        """
        Return an output attribute without waiting for it.

        The result is passed straight into another resource's args so the
        engine can wire the dependency, even when the value is still unknown.
        """
        ...


class ResourceEngine(Protocol):
    """Creates resources from desired state."""

    def construct(
        self,
        kind: str,
        name: str,
        args: Mapping[str, Any],
        *,
        ignore_changes: Optional[Sequence[str]] = None,
    ) -> ResourceHandle:
        """
        Declare a resource.

        Args:
            kind: Resource type token, e.g. ``aws:iam/role:Role``
            name: Logical resource name
            args: Desired-state properties
            ignore_changes: Properties the engine must never diff or revert
        """
        ...
