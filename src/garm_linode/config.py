"""
Provider configuration.

The host passes the path of a TOML file holding the Linode API
token and, optionally, the region new instances are created in::

    token = "..."
    region = "us-ord"
"""

from __future__ import annotations

import logging
import tomllib
from pathlib import Path
from typing import Union

from pydantic import BaseModel, ConfigDict, ValidationError

from . import DEFAULT_REGION
from .errors import ConfigError

logger = logging.getLogger("garm_linode.config")


class Config(BaseModel):
    """Linode provider settings."""

    model_config = ConfigDict(extra="ignore")

    # Region where instances are deployed.
    region: str = ""
    # Token used to authenticate against the Linode API.
    token: str = ""

    def validate_token(self) -> None:
        """Check the settings are usable.

        Raises:
            ConfigError: If no token is set.
        """
        if not self.token:
            raise ConfigError("token needs to be set")


def load_config(path: Union[str, Path]) -> Config:
    """Load and validate the provider config file.

    Args:
        path: Path to the TOML config file.

    Returns:
        Config: Validated config with the region defaulted.

    Raises:
        ConfigError: If the file can't be read, parsed or validated.
    """
    path = Path(path).expanduser()
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
        config = Config.model_validate(data)
    except (OSError, tomllib.TOMLDecodeError, ValidationError) as exc:
        raise ConfigError(f"decoding config: {exc}") from exc

    try:
        config.validate_token()
    except ConfigError as exc:
        raise ConfigError(f"validating config: {exc}") from exc

    if not config.region:
        config.region = DEFAULT_REGION

    logger.debug("Loaded config from %s (region=%s)", path, config.region)
    return config
