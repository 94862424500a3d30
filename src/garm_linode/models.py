"""
Pydantic models for both sides of the provider.

Linode side: the instance representation returned by the Linode API
and the options sent when creating one.

Host side: the bootstrap parameters GARM hands us on stdin and the
provider-agnostic instance shape it expects back.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Linode API
# ---------------------------------------------------------------------------


class LinodeStatus(str, Enum):
    """Instance status values reported by the Linode API."""

    RUNNING = "running"
    OFFLINE = "offline"
    BOOTING = "booting"
    REBOOTING = "rebooting"
    SHUTTING_DOWN = "shutting_down"
    PROVISIONING = "provisioning"
    DELETING = "deleting"
    MIGRATING = "migrating"
    REBUILDING = "rebuilding"
    CLONING = "cloning"
    RESTORING = "restoring"
    RESIZING = "resizing"


class Instance(BaseModel):
    """A Linode instance as returned by the API.

    ``status`` is kept as the raw string so values added by Linode
    later still parse.
    """

    model_config = ConfigDict(extra="ignore")

    id: int = 0
    label: str = ""
    status: str = ""
    ipv4: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    region: str = ""
    type: Optional[str] = None
    image: Optional[str] = None


class InstanceMetadata(BaseModel):
    """Metadata service payload attached to a new instance."""

    user_data: str = ""


class InstanceCreateOptions(BaseModel):
    """Body of a create-instance request."""

    region: str
    type: str
    label: Optional[str] = None
    image: Optional[str] = None
    root_pass: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    metadata: Optional[InstanceMetadata] = None
    booted: Optional[bool] = None


# ---------------------------------------------------------------------------
# GARM
# ---------------------------------------------------------------------------


class OSType(str, Enum):
    LINUX = "linux"
    WINDOWS = "windows"


class OSArch(str, Enum):
    AMD64 = "amd64"
    I386 = "i386"
    ARM64 = "arm64"
    ARM = "arm"


class InstanceStatus(str, Enum):
    """Provider-agnostic instance status understood by GARM."""

    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"
    PENDING_DELETE = "pending_delete"
    DELETING = "deleting"
    PENDING_CREATE = "pending_create"
    CREATING = "creating"
    UNKNOWN = "unknown"


class AddressType(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"


class Address(BaseModel):
    address: str
    type: AddressType


class RunnerApplicationDownload(BaseModel):
    """One entry of the runner tools list published by GitHub."""

    model_config = ConfigDict(extra="ignore")

    os: Optional[str] = None
    architecture: Optional[str] = None
    download_url: Optional[str] = None
    filename: Optional[str] = None
    sha256_checksum: Optional[str] = None
    temp_download_token: Optional[str] = None


class BootstrapInstance(BaseModel):
    """Everything GARM sends to create one runner instance."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str = ""
    tools: List[RunnerApplicationDownload] = Field(default_factory=list)
    repo_url: str = ""
    callback_url: str = Field(default="", alias="callback-url")
    metadata_url: str = Field(default="", alias="metadata-url")
    instance_token: str = Field(default="", alias="instance-token")
    ssh_keys: List[str] = Field(default_factory=list, alias="ssh-keys")
    # Raw JSON text, or the already decoded object when read from stdin.
    extra_specs: Union[str, Dict[str, Any], None] = None
    github_runner_group: str = Field(default="", alias="github-runner-group")
    # Base64 encoded PEM bundle.
    ca_cert_bundle: Optional[str] = Field(default=None, alias="ca-cert-bundle")
    os_type: OSType = OSType.LINUX
    os_arch: OSArch = Field(default=OSArch.AMD64, alias="arch")
    flavor: str = ""
    image: str = ""
    labels: List[str] = Field(default_factory=list)
    pool_id: str = ""
    jit_config_enabled: bool = False


class ProviderInstance(BaseModel):
    """Instance shape returned to GARM."""

    provider_id: Optional[str] = None
    name: Optional[str] = None
    os_type: Optional[OSType] = None
    os_name: Optional[str] = None
    os_version: Optional[str] = None
    os_arch: Optional[OSArch] = None
    addresses: List[Address] = Field(default_factory=list)
    status: Optional[InstanceStatus] = None
    provider_fault: Optional[str] = None
