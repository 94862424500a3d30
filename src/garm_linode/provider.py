"""
GARM external provider backed by Linode.

Exposes the lifecycle client under the host's fixed verb set and
converts results into GARM's instance shape. Stop and Start are
accepted but do nothing: runners are ephemeral and GARM replaces
them rather than power-cycling them.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import List, Optional, Union

from . import __version__
from .api import LinodeAPI, new_api
from .client import LinodeClient
from .config import Config, load_config
from .errors import ProviderError
from .models import BootstrapInstance, ProviderInstance
from .translate import instance_to_provider_instance

logger = logging.getLogger("garm_linode.provider")


class LinodeProvider:
    """The provider GARM talks to.

    Args:
        client: Lifecycle client doing the actual work.
    """

    def __init__(self, client: LinodeClient) -> None:
        self.client = client

    @classmethod
    def from_config_file(
        cls,
        config_path: Union[str, Path],
        controller_id: str,
        api: Optional[LinodeAPI] = None,
    ) -> "LinodeProvider":
        """Build a provider from the config file GARM points us at.

        Raises:
            ProviderError: If the config can't be loaded or the client built.
        """
        try:
            cfg = load_config(config_path)
        except ProviderError as exc:
            raise exc.with_context("loading config") from exc

        return cls.from_config(cfg, controller_id, api=api)

    @classmethod
    def from_config(
        cls,
        cfg: Config,
        controller_id: str,
        api: Optional[LinodeAPI] = None,
    ) -> "LinodeProvider":
        try:
            client = LinodeClient(cfg, api or new_api(cfg), controller_id)
        except ProviderError as exc:
            raise exc.with_context("getting client") from exc
        return cls(client)

    def create_instance(
        self,
        bootstrap: BootstrapInstance,
        stop: Optional[threading.Event] = None,
    ) -> ProviderInstance:
        """Create a new compute instance for a pool."""
        try:
            instance = self.client.create_instance(bootstrap, stop=stop)
        except ProviderError as exc:
            raise exc.with_context("creating instance") from exc

        result = instance_to_provider_instance(instance)
        result.os_type = bootstrap.os_type
        result.os_arch = bootstrap.os_arch
        return result

    def delete_instance(self, instance: str) -> None:
        """Delete an instance by ID or name."""
        try:
            self.client.delete_instance(instance)
        except ProviderError as exc:
            raise exc.with_context("deleting instance") from exc

    def get_instance(self, instance: str) -> ProviderInstance:
        """Return details about one instance."""
        try:
            return instance_to_provider_instance(self.client.get_instance(instance))
        except ProviderError as exc:
            raise exc.with_context("getting instance") from exc

    def list_instances(self, pool_id: str) -> List[ProviderInstance]:
        """List the instances of a pool."""
        try:
            instances = self.client.list_instances(pool_id)
        except ProviderError as exc:
            raise exc.with_context("listing instances") from exc

        return [instance_to_provider_instance(i) for i in instances]

    def remove_all_instances(self) -> None:
        """Remove every instance created by this controller."""
        try:
            self.client.remove_all_instances()
        except ProviderError as exc:
            raise exc.with_context("removing all instances") from exc

    def stop(self, instance: str, force: bool = False) -> None:
        logger.debug("Stop requested for %s (force=%s), ignoring", instance, force)

    def start(self, instance: str) -> None:
        logger.debug("Start requested for %s, ignoring", instance)

    @staticmethod
    def get_version() -> str:
        return f"v{__version__}"
