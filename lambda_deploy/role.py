"""Execution role provisioning through the resource engine."""

import json
import logging
from typing import Optional, Sequence

from lambda_deploy.config import DeployConfig, get_config
from lambda_deploy.engine import ROLE_KIND, ResourceEngine
from lambda_deploy.errors import RoleCreationError
from lambda_deploy.types import InlinePolicy, Role

logger = logging.getLogger(__name__)

LAMBDA_PRINCIPAL = "lambda.amazonaws.com"


def assume_role_policy(principal: str) -> str:
    """Trust policy allowing a service principal to assume the role."""
    return json.dumps(
        {
            "Version": "2012-10-17",
            "Statement": [
                {
                    "Effect": "Allow",
                    "Principal": {"Service": principal},
                    "Action": "sts:AssumeRole",
                }
            ],
        }
    )


class RoleProvisioner:
    """Creates the IAM role a function runs as."""

    def __init__(
        self,
        engine: ResourceEngine,
        config: Optional[DeployConfig] = None,
    ):
        self._engine = engine
        self._config = config or get_config()

    async def provision(
        self,
        name: str,
        trust_principal: str = LAMBDA_PRINCIPAL,
        policies: Sequence[InlinePolicy] = (),
        managed_policy_arns: Optional[Sequence[str]] = None,
    ) -> Role:
        """
        Declare the role and wait for its ARN.

        The ARN is None during a preview of a role that does not exist yet;
        the returned role still carries the engine reference to it.

        The configured managed policies (basic execution by default) are
        always attached; managed_policy_arns adds to them.

        Raises:
            RoleCreationError: If the engine rejects or fails the role
        """
        managed = list(self._config.managed_policy_arns)
        for arn in managed_policy_arns or ():
            if arn not in managed:
                managed.append(arn)

        args = {
            "assume_role_policy": assume_role_policy(trust_principal),
            "inline_policies": [
                {"name": policy.name, "policy": json.dumps(policy.document)}
                for policy in policies
            ],
            "managed_policy_arns": managed,
        }

        role_name = f"{name}-role"
        try:
            handle = self._engine.construct(ROLE_KIND, role_name, args)
            arn_ref = handle.ref("arn")
            arn = await handle.output("arn")
        except Exception as e:
            raise RoleCreationError(
                f"Failed to create role {role_name}: {e}",
                resource_name=role_name,
            ) from e

        logger.info("Provisioned role %s: %s", role_name, arn)
        return Role(
            name=role_name,
            arn=arn,
            trust_principal=trust_principal,
            inline_policies=tuple(policies),
            managed_policy_arns=tuple(managed),
            arn_ref=arn_ref,
        )
