"""
GARM external provider protocol.

GARM runs the provider once per operation. The operation and its
arguments arrive as environment variables, bootstrap params for
CreateInstance arrive as JSON on stdin, and the result is whatever
the provider prints on stdout.
"""

from __future__ import annotations

import json
import logging
import threading
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ValidationError

from .errors import ProviderError
from .models import BootstrapInstance

logger = logging.getLogger("garm_linode.execution")


class Command(str, Enum):
    CREATE_INSTANCE = "CreateInstance"
    DELETE_INSTANCE = "DeleteInstance"
    GET_INSTANCE = "GetInstance"
    LIST_INSTANCES = "ListInstances"
    REMOVE_ALL_INSTANCES = "RemoveAllInstances"
    START_INSTANCE = "StartInstance"
    STOP_INSTANCE = "StopInstance"
    GET_VERSION = "GetVersion"


_NEEDS_INSTANCE_ID = {
    Command.DELETE_INSTANCE,
    Command.GET_INSTANCE,
    Command.START_INSTANCE,
    Command.STOP_INSTANCE,
}


class Environment(BaseModel):
    """One provider invocation as described by GARM."""

    command: Command
    controller_id: str = ""
    pool_id: str = ""
    provider_config_file: str = ""
    instance_id: str = ""
    interface_version: str = ""
    bootstrap_params: Optional[BootstrapInstance] = None

    def validate_for_command(self) -> None:
        """Check the arguments the command needs are present.

        Raises:
            ProviderError: If something required is missing.
        """
        if self.command == Command.GET_VERSION:
            return

        if not self.provider_config_file:
            raise ProviderError("missing GARM_PROVIDER_CONFIG_FILE")
        if not self.controller_id:
            raise ProviderError("missing GARM_CONTROLLER_ID")

        if self.command == Command.CREATE_INSTANCE:
            if self.bootstrap_params is None:
                raise ProviderError("CreateInstance requires bootstrap params on stdin")
            if not self.bootstrap_params.name:
                raise ProviderError("bootstrap params are missing the instance name")
        elif self.command in _NEEDS_INSTANCE_ID and not self.instance_id:
            raise ProviderError(f"missing GARM_INSTANCE_ID for {self.command.value}")
        elif self.command == Command.LIST_INSTANCES and not self.pool_id:
            raise ProviderError("missing GARM_POOL_ID")


def parse_command(value: str) -> Command:
    try:
        return Command(value)
    except ValueError:
        raise ProviderError(f"unknown command: {value}") from None


def parse_bootstrap_params(payload: str) -> BootstrapInstance:
    """Decode bootstrap params from the JSON GARM writes to stdin."""
    try:
        return BootstrapInstance.model_validate_json(payload)
    except ValidationError as exc:
        raise ProviderError(f"decoding bootstrap params: {exc}") from exc


def run(provider, env: Environment, stop: Optional[threading.Event] = None) -> str:
    """Execute the requested command.

    Args:
        provider: A LinodeProvider (or anything with the same verbs).
        env: The validated invocation.
        stop: Cancellation event forwarded to blocking operations.

    Returns:
        str: What to print on stdout, possibly empty.
    """
    logger.debug("Running %s", env.command.value)

    if env.command == Command.CREATE_INSTANCE:
        instance = provider.create_instance(env.bootstrap_params, stop=stop)
        return instance.model_dump_json(exclude_none=True)

    if env.command == Command.GET_INSTANCE:
        instance = provider.get_instance(env.instance_id)
        return instance.model_dump_json(exclude_none=True)

    if env.command == Command.LIST_INSTANCES:
        instances = provider.list_instances(env.pool_id)
        return json.dumps([i.model_dump(mode="json", exclude_none=True) for i in instances])

    if env.command == Command.DELETE_INSTANCE:
        provider.delete_instance(env.instance_id)
    elif env.command == Command.REMOVE_ALL_INSTANCES:
        provider.remove_all_instances()
    elif env.command == Command.START_INSTANCE:
        provider.start(env.instance_id)
    elif env.command == Command.STOP_INSTANCE:
        provider.stop(env.instance_id, force=True)
    elif env.command == Command.GET_VERSION:
        return provider.get_version()

    return ""
