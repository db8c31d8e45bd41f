"""
Declarative management of the Lambda function resource.

The engine requires code at creation time, before the real archive location
is known. Functions are therefore created with a do-nothing placeholder and
every code property is excluded from the engine's diff. The code update
controller is the only thing that points the function at real code.
"""

import logging
from typing import Any, Dict, Mapping, Optional

from lambda_deploy.config import DeployConfig, get_config
from lambda_deploy.engine import FUNCTION_KIND, ResourceEngine
from lambda_deploy.errors import FunctionCreateError
from lambda_deploy.types import (
    EntryReference,
    FunctionResource,
    PlaceholderCode,
    Role,
    RuntimeConfig,
)

logger = logging.getLogger(__name__)

NODE_PLACEHOLDER = PlaceholderCode(
    files={"index.js": "exports.handler = () => {}"}
)
PYTHON_PLACEHOLDER = PlaceholderCode(
    files={"index.py": "def handler(event, context):\n    return None\n"}
)

# Never diffed by the engine, so pushed code is not reverted
CODE_PROPERTIES = [
    "code",
    "image_uri",
    "s3_bucket",
    "s3_key",
    "s3_object_version",
    "source_code_hash",
]


def placeholder_for(runtime_config: RuntimeConfig) -> PlaceholderCode:
    return PYTHON_PLACEHOLDER if runtime_config.is_python else NODE_PLACEHOLDER


class FunctionResourceManager:
    """Creates and updates function metadata through the resource engine."""

    def __init__(
        self,
        engine: ResourceEngine,
        config: Optional[DeployConfig] = None,
    ):
        self._engine = engine
        self._config = config or get_config()

    async def create_or_update(
        self,
        name: str,
        role: Role,
        runtime_config: RuntimeConfig,
        environment: Mapping[str, str],
        entry_reference: EntryReference,
    ) -> FunctionResource:
        """
        Declare the function with placeholder code.

        Memory, timeout, environment, network and handler are diffed and
        applied by the engine on later deploys. The code reference is not.

        Raises:
            FunctionCreateError: If the engine rejects or fails the function
                (quota exceeded, validation errors, ...)
        """
        placeholder = placeholder_for(runtime_config)
        args: Dict[str, Any] = {
            **runtime_config.to_args(),
            "role": role.arn_input,
            "handler": entry_reference,
            "environment": {"variables": dict(environment)},
            "code": placeholder,
            "tags": {"environment": self._config.stage, **runtime_config.tags},
        }

        resource_name = f"{name}-function"
        try:
            handle = self._engine.construct(
                FUNCTION_KIND,
                resource_name,
                args,
                ignore_changes=CODE_PROPERTIES,
            )
            function_name = await handle.output("name")
            arn = await handle.output("arn")
        except Exception as e:
            raise FunctionCreateError(
                f"Failed to create function {resource_name}: {e}",
                resource_name=resource_name,
            ) from e

        logger.info(
            "Declared function %s (%s) with handler %s",
            resource_name,
            function_name,
            entry_reference,
        )
        return FunctionResource(
            name=name,
            function_name=function_name,
            arn=arn,
            role_arn=role.arn,
            handler=entry_reference,
            runtime_config=runtime_config,
            environment=dict(environment),
            code=placeholder,
        )
