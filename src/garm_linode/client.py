"""
Linode lifecycle client.

Turns the four raw gateway primitives into the operations GARM needs:
create-and-wait-until-running, delete/get by ID or label, list by
pool and tear down everything owned by this controller.

Ownership is recorded only in tags. Every instance we create carries
``pool=<pool id>`` and ``controller=<controller id>``, and every
listing is a server-side tag filter. Nothing is cached between calls.
"""

from __future__ import annotations

import base64
import json
import logging
import re
import threading
from typing import List, Optional

from .api import LinodeAPI, ListOptions
from .cloudconfig import build_user_data, resolve_tool
from .config import Config
from .errors import (
    ConfigError,
    IdentifierParseError,
    InstanceNotFoundError,
    PartialBulkFailure,
    ProviderTransportError,
)
from .helpers import (
    create_random_root_password,
    extra_specs_from_bootstrap,
    wait_until_ready,
)
from .models import (
    BootstrapInstance,
    Instance,
    InstanceCreateOptions,
    InstanceMetadata,
    LinodeStatus,
)

logger = logging.getLogger("garm_linode.client")

TAG_POOL = "pool"
TAG_CONTROLLER = "controller"

POLL_INTERVAL = 5.0
POLL_TIMEOUT = 300.0

_NUMERIC_ID = re.compile(r"[+-]?[0-9]+")


def tag(key: str, value: str) -> str:
    """Format an ownership tag, e.g. ``pool=1234``."""
    return f"{key}={value}"


def tag_filter(key: str, value: str) -> ListOptions:
    """Server-side filter matching instances carrying one tag."""
    return ListOptions(filter=json.dumps({"tags": tag(key, value)}, separators=(",", ":")))


def label_filter(label: str) -> ListOptions:
    """Server-side filter matching instances by label."""
    return ListOptions(filter=json.dumps({"label": label}, separators=(",", ":")))


def _transport_error(context: str, exc: ProviderTransportError) -> ProviderTransportError:
    return ProviderTransportError(f"{context}: {exc}", status_code=exc.status_code)


class LinodeClient:
    """Pool-aware, ownership-aware operations on Linode instances.

    Args:
        cfg: Provider config; must carry a token.
        api: Gateway used for every call to Linode.
        controller_id: ID of the GARM installation, used as a tag value.
        poll_interval: Seconds between two status checks after create.
        poll_timeout: Seconds to wait for a new instance to be running.
    """

    def __init__(
        self,
        cfg: Config,
        api: LinodeAPI,
        controller_id: str,
        poll_interval: float = POLL_INTERVAL,
        poll_timeout: float = POLL_TIMEOUT,
    ) -> None:
        if cfg is None:
            raise ConfigError("configuration is missing")
        try:
            cfg.validate_token()
        except ConfigError as exc:
            raise ConfigError(f"validating configuration: {exc}") from exc

        self.cfg = cfg
        self.api = api
        self.controller_id = controller_id
        self.poll_interval = poll_interval
        self.poll_timeout = poll_timeout

    # -- identifiers ------------------------------------------------------

    def resolve_instance_id(self, identifier: str) -> int:
        """Turn an instance identifier into a Linode ID.

        A decimal identifier is the ID itself and is returned without
        asking Linode anything. Anything else is looked up as a label;
        if several instances share it the first one wins.

        Raises:
            IdentifierParseError: If the identifier is empty.
            InstanceNotFoundError: If no instance carries the label.
        """
        if not identifier.strip():
            raise IdentifierParseError("instance identifier is empty")

        if _NUMERIC_ID.fullmatch(identifier):
            return int(identifier)

        try:
            return self._instance_id_by_label(identifier)
        except InstanceNotFoundError as exc:
            raise InstanceNotFoundError(f"getting instance ID by its name: {exc}") from exc
        except ProviderTransportError as exc:
            raise _transport_error("getting instance ID by its name", exc) from exc

    def _instance_id_by_label(self, label: str) -> int:
        try:
            instances = self.api.list_instances(label_filter(label))
        except ProviderTransportError as exc:
            raise _transport_error("getting instances list from Linode API", exc) from exc

        if not instances:
            raise InstanceNotFoundError(f"no instances matching this name: {label}")

        if len(instances) > 1:
            logger.warning(
                "%d instances are labelled %s, using %d",
                len(instances), label, instances[0].id,
            )
        return instances[0].id

    # -- operations -------------------------------------------------------

    def create_instance(
        self,
        bootstrap: BootstrapInstance,
        stop: Optional[threading.Event] = None,
    ) -> Instance:
        """Create a runner instance and wait until it is running.

        The instance is left in place if it never reaches ``running``.

        Args:
            bootstrap: Bootstrap parameters from GARM.
            stop: Cancels the wait for the instance when set.

        Returns:
            Instance: The instance as last fetched, in running state.

        Raises:
            ToolResolutionError: No runner tool for the OS/arch.
            ExtraSpecsParseError: Malformed extra specs.
            RandomSourceError: No secure random source.
            ProviderTransportError: Linode rejected a call.
            ProvisioningTimeoutError: Instance not running in time.
            OperationCancelled: ``stop`` was set while waiting.
        """
        tool = resolve_tool(bootstrap.tools, bootstrap.os_type, bootstrap.os_arch)
        specs = extra_specs_from_bootstrap(bootstrap)
        user_data = build_user_data(bootstrap, tool, specs)
        root_pass = create_random_root_password()

        opts = InstanceCreateOptions(
            region=self.cfg.region,
            type=bootstrap.flavor,
            label=bootstrap.name,
            image=bootstrap.image,
            root_pass=root_pass,
            tags=[
                tag(TAG_POOL, bootstrap.pool_id),
                tag(TAG_CONTROLLER, self.controller_id),
            ],
            metadata=InstanceMetadata(
                user_data=base64.b64encode(user_data.encode("utf-8")).decode("ascii"),
            ),
            booted=True,
        )

        logger.info(
            "Creating Linode instance %s (type=%s, image=%s, region=%s, pool=%s)",
            bootstrap.name, opts.type, opts.image, opts.region, bootstrap.pool_id,
        )
        try:
            created = self.api.create_instance(opts)
        except ProviderTransportError as exc:
            raise _transport_error("creating instance from Linode API", exc) from exc

        current: List[Instance] = []

        def _is_running() -> bool:
            instance = self.get_instance(str(created.id))
            current[:] = [instance]
            logger.debug("Instance %d is %s", instance.id, instance.status)
            return instance.status == LinodeStatus.RUNNING

        wait_until_ready(self.poll_timeout, self.poll_interval, _is_running, stop)

        logger.info("Instance %d (%s) is running", created.id, bootstrap.name)
        return current[0]

    def delete_instance(self, identifier: str) -> None:
        """Delete an instance by ID or label."""
        instance_id = self.resolve_instance_id(identifier)

        try:
            self.api.delete_instance(instance_id)
        except ProviderTransportError as exc:
            raise _transport_error("deleting instance from Linode API", exc) from exc

        logger.info("Deleted instance %d", instance_id)

    def get_instance(self, identifier: str) -> Instance:
        """Fetch an instance by ID or label."""
        instance_id = self.resolve_instance_id(identifier)

        try:
            return self.api.get_instance(instance_id)
        except ProviderTransportError as exc:
            raise _transport_error("getting instance from Linode API", exc) from exc

    def list_instances(self, pool_id: str) -> List[Instance]:
        """List the instances tagged with a pool."""
        try:
            return self.api.list_instances(tag_filter(TAG_POOL, pool_id))
        except ProviderTransportError as exc:
            raise _transport_error("getting instances list from Linode API", exc) from exc

    def remove_all_instances(self) -> None:
        """Delete every instance owned by this controller.

        Instances are deleted one at a time in listing order. The first
        failure stops the run: instances already deleted stay deleted
        and the remaining ones are not touched.

        Raises:
            PartialBulkFailure: A deletion failed.
        """
        try:
            instances = self.api.list_instances(tag_filter(TAG_CONTROLLER, self.controller_id))
        except ProviderTransportError as exc:
            raise _transport_error("getting instances list from Linode API", exc) from exc

        logger.info(
            "Removing %d instances owned by controller %s",
            len(instances), self.controller_id,
        )
        for deleted, instance in enumerate(instances):
            try:
                self.delete_instance(str(instance.id))
            except ProviderTransportError as exc:
                raise PartialBulkFailure(
                    f"deleting instance {instance.id}: {exc}",
                    instance_id=instance.id,
                    deleted=deleted,
                ) from exc
