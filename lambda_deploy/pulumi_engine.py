"""
Pulumi implementation of the resource engine interface.

Roles are declared the same way the rest of the infra declares them: a Role
with its trust policy, one RolePolicy per inline document and one
RolePolicyAttachment per managed policy, all parented to the role.
"""

from typing import Any, Dict, Mapping, Optional, Sequence

import pulumi
from pulumi import AssetArchive, ResourceOptions, StringAsset
from pulumi_aws.iam import Role, RolePolicy, RolePolicyAttachment
from pulumi_aws.lambda_ import (
    Function,
    FunctionEnvironmentArgs,
    FunctionVpcConfigArgs,
)

from lambda_deploy.engine import FUNCTION_KIND, ROLE_KIND
from lambda_deploy.types import PlaceholderCode


class PulumiHandle:
    """Wraps a Pulumi resource so its outputs can be awaited."""

    def __init__(self, resource: pulumi.CustomResource):
        self.resource = resource

    async def output(self, name: str) -> Any:
        # Unknown during preview, in which case this resolves to None
        return await getattr(self.resource, name).future()

    def ref(self, name: str) -> pulumi.Output[Any]:
        return getattr(self.resource, name)


class PulumiEngine:
    """Declares roles and functions as pulumi_aws resources."""

    def __init__(
        self,
        provider: Optional[pulumi.ProviderResource] = None,
        parent: Optional[pulumi.Resource] = None,
    ):
        self._provider = provider
        self._parent = parent

    def _opts(
        self,
        parent: Optional[pulumi.Resource] = None,
        ignore_changes: Optional[Sequence[str]] = None,
    ) -> ResourceOptions:
        return ResourceOptions(
            parent=parent or self._parent,
            provider=self._provider,
            ignore_changes=list(ignore_changes) if ignore_changes else None,
        )

    def construct(
        self,
        kind: str,
        name: str,
        args: Mapping[str, Any],
        *,
        ignore_changes: Optional[Sequence[str]] = None,
    ) -> PulumiHandle:
        if kind == ROLE_KIND:
            return self._role(name, args, ignore_changes)
        if kind == FUNCTION_KIND:
            return self._function(name, args, ignore_changes)
        raise ValueError(f"Unsupported resource kind: {kind}")

    def _role(
        self,
        name: str,
        args: Mapping[str, Any],
        ignore_changes: Optional[Sequence[str]],
    ) -> PulumiHandle:
        role = Role(
            name,
            assume_role_policy=args["assume_role_policy"],
            opts=self._opts(ignore_changes=ignore_changes),
        )

        for policy in args.get("inline_policies", []):
            RolePolicy(
                f"{name}-{policy['name']}",
                role=role.id,
                policy=policy["policy"],
                opts=self._opts(parent=role),
            )

        managed = args.get("managed_policy_arns", [])
        for index, policy_arn in enumerate(managed):
            RolePolicyAttachment(
                f"{name}-attachment-{index}",
                role=role.name,
                policy_arn=policy_arn,
                opts=self._opts(parent=role),
            )

        return PulumiHandle(role)

    def _function(
        self,
        name: str,
        args: Mapping[str, Any],
        ignore_changes: Optional[Sequence[str]],
    ) -> PulumiHandle:
        function_args: Dict[str, Any] = dict(args)

        code = function_args.pop("code", None)
        if isinstance(code, PlaceholderCode):
            code = AssetArchive(
                {
                    path: StringAsset(source)
                    for path, source in code.files.items()
                }
            )
        function_args["code"] = code

        environment = function_args.pop("environment", None)
        if environment is not None:
            function_args["environment"] = FunctionEnvironmentArgs(
                variables=environment.get("variables", {})
            )

        vpc_config = function_args.pop("vpc_config", None)
        if vpc_config is not None:
            function_args["vpc_config"] = FunctionVpcConfigArgs(
                subnet_ids=vpc_config["subnet_ids"],
                security_group_ids=vpc_config["security_group_ids"],
            )

        function = Function(
            name,
            **function_args,
            opts=self._opts(ignore_changes=ignore_changes),
        )
        return PulumiHandle(function)
