"""Small building blocks used by the lifecycle client."""

from __future__ import annotations

import base64
import json
import logging
import secrets
import threading
import time
from typing import Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import (
    ExtraSpecsParseError,
    OperationCancelled,
    ProvisioningTimeoutError,
    RandomSourceError,
)
from .models import BootstrapInstance

logger = logging.getLogger("garm_linode.helpers")

ROOT_PASSWORD_BYTES = 50


class ExtraSpecs(BaseModel):
    """Pool-level extra specs understood by this provider."""

    model_config = ConfigDict(extra="ignore")

    # Extra packages to install on the VM.
    extra_packages: List[str] = Field(default_factory=list)
    # Scripts run before the runner install, name -> base64 content.
    pre_install_scripts: Dict[str, str] = Field(default_factory=dict)
    # Base64 encoded replacement for the runner install script.
    runner_install_template: Optional[str] = None
    # Additional values made available to the install template.
    extra_context: Dict[str, str] = Field(default_factory=dict)


def create_random_root_password() -> str:
    """Generate a throwaway root password for a new instance.

    Returns:
        str: 50 random bytes, base64 encoded.

    Raises:
        RandomSourceError: If the OS random source is unavailable.
    """
    try:
        raw = secrets.token_bytes(ROOT_PASSWORD_BYTES)
    except (OSError, NotImplementedError) as exc:
        raise RandomSourceError(f"generating random password: {exc}") from exc

    return base64.b64encode(raw).decode("ascii")


def wait_until_ready(
    timeout: float,
    delay: float,
    check: Callable[[], bool],
    stop: Optional[threading.Event] = None,
) -> None:
    """Call ``check`` until it returns True.

    Args:
        timeout: Seconds after which to give up.
        delay: Seconds to wait between two checks.
        check: Condition to test; errors it raises propagate as-is.
        stop: Event that cancels the wait as soon as it is set.

    Raises:
        ProvisioningTimeoutError: If ``timeout`` elapses first.
        OperationCancelled: If ``stop`` is set while waiting.
    """
    stop = stop or threading.Event()
    deadline = time.monotonic() + timeout

    while True:
        if stop.is_set():
            raise OperationCancelled("operation cancelled")
        if time.monotonic() >= deadline:
            raise ProvisioningTimeoutError("time limit exceeded")

        if check():
            return

        remaining = max(deadline - time.monotonic(), 0)
        if stop.wait(min(delay, remaining)):
            raise OperationCancelled("operation cancelled")


def extra_specs_from_bootstrap(data: BootstrapInstance) -> ExtraSpecs:
    """Decode the extra specs attached to the bootstrap params.

    Missing or empty specs are not an error.

    Raises:
        ExtraSpecsParseError: If the specs are not a valid JSON object.
    """
    raw = data.extra_specs
    if not raw:
        return ExtraSpecs()

    try:
        if isinstance(raw, str):
            raw = json.loads(raw)
        return ExtraSpecs.model_validate(raw)
    except (ValueError, ValidationError) as exc:
        raise ExtraSpecsParseError(f"unmarshalling extra_specs: {exc}") from exc
