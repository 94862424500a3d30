"""Shared test fixtures for garm_linode."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

import pytest

from garm_linode.api import ListOptions
from garm_linode.client import LinodeClient
from garm_linode.config import Config
from garm_linode.models import (
    BootstrapInstance,
    Instance,
    InstanceCreateOptions,
    OSArch,
    OSType,
    RunnerApplicationDownload,
)
from garm_linode.provider import LinodeProvider

CREATE = "create_instance"
DELETE = "delete_instance"
GET = "get_instance"
LIST = "list_instances"


@dataclass
class Call:
    name: str
    args: Any


@dataclass
class FakeLinodeAPI:
    """Records every call; behaviour comes from optional hooks."""

    calls: List[Call] = field(default_factory=list)
    on_create: Optional[Callable[[InstanceCreateOptions], Instance]] = None
    on_delete: Optional[Callable[[int], None]] = None
    on_get: Optional[Callable[[int], Instance]] = None
    on_list: Optional[Callable[[Optional[ListOptions]], List[Instance]]] = None

    def create_instance(self, opts: InstanceCreateOptions) -> Instance:
        self.calls.append(Call(CREATE, opts))
        if self.on_create:
            return self.on_create(opts)
        return Instance()

    def delete_instance(self, instance_id: int) -> None:
        self.calls.append(Call(DELETE, instance_id))
        if self.on_delete:
            self.on_delete(instance_id)

    def get_instance(self, instance_id: int) -> Instance:
        self.calls.append(Call(GET, instance_id))
        if self.on_get:
            return self.on_get(instance_id)
        return Instance(id=instance_id)

    def list_instances(self, opts: Optional[ListOptions] = None) -> List[Instance]:
        self.calls.append(Call(LIST, opts))
        if self.on_list:
            return self.on_list(opts)
        return []

    def names(self) -> List[str]:
        return [c.name for c in self.calls]


@pytest.fixture
def config() -> Config:
    return Config(token="foo", region="us-ord")


@pytest.fixture
def fake_api() -> FakeLinodeAPI:
    return FakeLinodeAPI()


@pytest.fixture
def client(config: Config, fake_api: FakeLinodeAPI) -> LinodeClient:
    """Client polling without delay against the fake gateway."""
    return LinodeClient(config, fake_api, "1234", poll_interval=0, poll_timeout=5)


def _make_bootstrap(**overrides: Any) -> BootstrapInstance:
    """Build typical bootstrap params for a linux/amd64 runner."""
    params = dict(
        name="test-instance",
        instance_token="test-token",
        os_arch=OSArch.AMD64,
        os_type=OSType.LINUX,
        flavor="g6-nanode-1",
        image="linode/ubuntu22.04",
        tools=[
            RunnerApplicationDownload(
                os="linux",
                architecture="x64",
                download_url="http://test.com",
                filename="runner.tar.gz",
                sha256_checksum="sha256:1123",
                temp_download_token="test-token",
            ),
        ],
        extra_specs='{"extra_packages": ["curl"]}',
        pool_id="test-pool",
    )
    params.update(overrides)
    return BootstrapInstance(**params)


@pytest.fixture
def make_bootstrap() -> Callable[..., BootstrapInstance]:
    """Factory for bootstrap params with selected fields overridden."""
    return _make_bootstrap


@pytest.fixture
def bootstrap() -> BootstrapInstance:
    return _make_bootstrap()


@pytest.fixture
def provider(fake_api: FakeLinodeAPI) -> LinodeProvider:
    prov = LinodeProvider.from_config(Config(token="foo", region="us-ord"), "ctrl", api=fake_api)
    prov.client.poll_interval = 0
    return prov
