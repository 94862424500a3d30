"""Translate Linode instances into the shape GARM expects."""

from __future__ import annotations

from typing import Dict, Optional

from .models import (
    Address,
    AddressType,
    Instance,
    InstanceStatus,
    LinodeStatus,
    ProviderInstance,
)

STATUS_MAP: Dict[LinodeStatus, InstanceStatus] = {
    LinodeStatus.RUNNING: InstanceStatus.RUNNING,
    LinodeStatus.OFFLINE: InstanceStatus.STOPPED,
    LinodeStatus.DELETING: InstanceStatus.DELETING,
    LinodeStatus.PROVISIONING: InstanceStatus.PENDING_CREATE,
    LinodeStatus.BOOTING: InstanceStatus.CREATING,
    LinodeStatus.SHUTTING_DOWN: InstanceStatus.STOPPED,
    LinodeStatus.REBOOTING: InstanceStatus.UNKNOWN,
    LinodeStatus.MIGRATING: InstanceStatus.UNKNOWN,
    LinodeStatus.REBUILDING: InstanceStatus.UNKNOWN,
    LinodeStatus.CLONING: InstanceStatus.UNKNOWN,
    LinodeStatus.RESTORING: InstanceStatus.UNKNOWN,
    LinodeStatus.RESIZING: InstanceStatus.UNKNOWN,
}


def translate_status(status: str) -> InstanceStatus:
    """Map a Linode status to a GARM status.

    Statuses Linode adds later map to unknown.
    """
    try:
        return STATUS_MAP.get(LinodeStatus(status), InstanceStatus.UNKNOWN)
    except ValueError:
        return InstanceStatus.UNKNOWN


def instance_to_provider_instance(instance: Optional[Instance]) -> ProviderInstance:
    """Convert a Linode instance to a GARM provider instance.

    Args:
        instance: Instance from the Linode API, or None.

    Returns:
        ProviderInstance: Empty when ``instance`` is None.
    """
    if instance is None:
        return ProviderInstance()

    out = ProviderInstance(
        provider_id=str(instance.id),
        name=instance.label,
        status=translate_status(instance.status),
    )

    # Only the first IPv4 is reported, as the public address.
    if instance.ipv4:
        out.addresses = [Address(address=instance.ipv4[0], type=AddressType.PUBLIC)]

    return out
