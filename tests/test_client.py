"""Tests for the Linode lifecycle client.

The gateway is replaced by a recording fake; no network involved.
"""

from __future__ import annotations

import base64
import threading

import pytest
import yaml

from garm_linode.client import (
    TAG_CONTROLLER,
    TAG_POOL,
    LinodeClient,
    label_filter,
    tag_filter,
)
from garm_linode.config import Config
from garm_linode.errors import (
    ConfigError,
    ExtraSpecsParseError,
    IdentifierParseError,
    InstanceNotFoundError,
    OperationCancelled,
    PartialBulkFailure,
    ProviderTransportError,
    ProvisioningTimeoutError,
    ToolResolutionError,
)
from garm_linode.models import Instance, InstanceCreateOptions, LinodeStatus, OSArch


def _api_error(*args):
    raise ProviderTransportError("random error from the API")


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestNew:
    def test_valid_config(self, fake_api):
        cli = LinodeClient(Config(token="foo"), fake_api, "1234")
        assert cli.controller_id == "1234"

    def test_missing_token(self, fake_api):
        with pytest.raises(ConfigError, match="token needs to be set"):
            LinodeClient(Config(), fake_api, "1234")

    def test_missing_config(self, fake_api):
        with pytest.raises(ConfigError, match="configuration is missing"):
            LinodeClient(None, fake_api, "1234")


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------


class TestFilters:
    def test_pool_filter(self):
        assert tag_filter(TAG_POOL, "1234").filter == '{"tags":"pool=1234"}'

    def test_controller_filter(self):
        assert tag_filter(TAG_CONTROLLER, "abc").filter == '{"tags":"controller=abc"}'

    def test_label_filter(self):
        assert label_filter("foo").filter == '{"label":"foo"}'


# ---------------------------------------------------------------------------
# CreateInstance
# ---------------------------------------------------------------------------


class TestCreateInstance:
    def test_success(self, client, fake_api, bootstrap):
        fake_api.on_create = lambda opts: Instance(
            id=9876, label="test-instance", status="booting",
        )
        fake_api.on_get = lambda i: Instance(
            id=9876, label="test-instance", status="running",
        )

        instance = client.create_instance(bootstrap)

        assert instance.id == 9876
        assert fake_api.names() == ["create_instance", "get_instance"]

        opts = fake_api.calls[0].args
        assert isinstance(opts, InstanceCreateOptions)
        assert opts.tags == ["pool=test-pool", "controller=1234"]
        assert opts.region == "us-ord"
        assert opts.type == "g6-nanode-1"
        assert opts.image == "linode/ubuntu22.04"
        assert opts.label == "test-instance"
        assert opts.booted is True
        assert opts.root_pass
        assert opts.metadata is not None
        assert opts.metadata.user_data

        assert fake_api.calls[1].args == 9876

    def test_user_data_is_base64_cloud_config(self, client, fake_api, bootstrap):
        fake_api.on_get = lambda i: Instance(id=i, status="running")

        client.create_instance(bootstrap)

        user_data = base64.b64decode(fake_api.calls[0].args.metadata.user_data).decode()
        assert user_data.startswith("#cloud-config\n")
        assert "curl" in yaml.safe_load(user_data)["packages"]

    def test_polls_until_running(self, client, fake_api, bootstrap):
        statuses = iter(["booting", "running"])
        fake_api.on_create = lambda opts: Instance(id=42, status="provisioning")
        fake_api.on_get = lambda i: Instance(id=i, status=next(statuses))

        instance = client.create_instance(bootstrap)

        assert instance.status == LinodeStatus.RUNNING
        assert fake_api.names() == ["create_instance", "get_instance", "get_instance"]
        assert [c.args for c in fake_api.calls[1:]] == [42, 42]

    def test_timeout(self, config, fake_api, bootstrap):
        cli = LinodeClient(config, fake_api, "1234", poll_interval=0.01, poll_timeout=0.05)
        fake_api.on_create = lambda opts: Instance(id=42, status="provisioning")
        fake_api.on_get = lambda i: Instance(id=i, status="booting")

        with pytest.raises(ProvisioningTimeoutError):
            cli.create_instance(bootstrap)

        # No cleanup of the half-created instance.
        assert "delete_instance" not in fake_api.names()

    def test_get_error_aborts_polling(self, client, fake_api, bootstrap):
        fake_api.on_create = lambda opts: Instance(id=42)
        fake_api.on_get = _api_error

        with pytest.raises(ProviderTransportError, match="getting instance from Linode API"):
            client.create_instance(bootstrap)

        assert fake_api.names() == ["create_instance", "get_instance"]

    def test_create_error(self, client, fake_api, bootstrap):
        fake_api.on_create = _api_error

        with pytest.raises(ProviderTransportError, match="random error from the API"):
            client.create_instance(bootstrap)

        assert fake_api.names() == ["create_instance"]

    def test_cancelled(self, config, fake_api, bootstrap):
        cli = LinodeClient(config, fake_api, "1234", poll_interval=60, poll_timeout=300)
        stop = threading.Event()
        fake_api.on_create = lambda opts: Instance(id=42)

        def _get(instance_id):
            stop.set()
            return Instance(id=instance_id, status="booting")

        fake_api.on_get = _get

        with pytest.raises(OperationCancelled):
            cli.create_instance(bootstrap, stop=stop)

        assert fake_api.names() == ["create_instance", "get_instance"]

    def test_no_matching_tool(self, client, fake_api, make_bootstrap):
        with pytest.raises(ToolResolutionError):
            client.create_instance(make_bootstrap(os_arch=OSArch.ARM64))

        assert fake_api.calls == []

    def test_malformed_extra_specs(self, client, fake_api, make_bootstrap):
        with pytest.raises(ExtraSpecsParseError):
            client.create_instance(make_bootstrap(extra_specs="{not json"))

        assert fake_api.calls == []

    def test_missing_extra_specs(self, client, fake_api, make_bootstrap):
        fake_api.on_get = lambda i: Instance(id=i, status="running")

        client.create_instance(make_bootstrap(extra_specs=None))

        assert fake_api.names() == ["create_instance", "get_instance"]

    def test_two_creates_make_two_instances(self, client, fake_api, bootstrap):
        fake_api.on_get = lambda i: Instance(id=i, status="running")

        client.create_instance(bootstrap)
        client.create_instance(bootstrap)

        assert fake_api.names().count("create_instance") == 2

    def test_root_password_differs_between_creates(self, client, fake_api, bootstrap):
        fake_api.on_get = lambda i: Instance(id=i, status="running")

        client.create_instance(bootstrap)
        client.create_instance(bootstrap)

        creates = [c.args for c in fake_api.calls if c.name == "create_instance"]
        assert creates[0].root_pass != creates[1].root_pass


# ---------------------------------------------------------------------------
# DeleteInstance
# ---------------------------------------------------------------------------


class TestDeleteInstance:
    def test_numeric_id(self, client, fake_api):
        client.delete_instance("9876")

        assert fake_api.names() == ["delete_instance"]
        assert fake_api.calls[0].args == 9876

    def test_label(self, client, fake_api):
        fake_api.on_list = lambda opts: [Instance(id=9876)]

        client.delete_instance("foo")

        assert fake_api.names() == ["list_instances", "delete_instance"]
        assert fake_api.calls[0].args.filter == '{"label":"foo"}'
        assert fake_api.calls[1].args == 9876

    def test_label_ambiguous_uses_first(self, client, fake_api):
        fake_api.on_list = lambda opts: [Instance(id=1), Instance(id=2)]

        client.delete_instance("foo")

        assert fake_api.calls[1].args == 1

    def test_api_error(self, client, fake_api):
        fake_api.on_delete = _api_error

        with pytest.raises(ProviderTransportError) as exc_info:
            client.delete_instance("9876")

        assert "deleting instance from Linode API: random error from the API" in str(exc_info.value)
        assert fake_api.names() == ["delete_instance"]

    def test_label_not_found(self, client, fake_api):
        with pytest.raises(InstanceNotFoundError) as exc_info:
            client.delete_instance("foo")

        assert (
            "getting instance ID by its name: no instances matching this name: foo"
            in str(exc_info.value)
        )
        assert fake_api.names() == ["list_instances"]

    def test_empty_identifier(self, client, fake_api):
        with pytest.raises(IdentifierParseError):
            client.delete_instance("  ")

        assert fake_api.calls == []


# ---------------------------------------------------------------------------
# GetInstance
# ---------------------------------------------------------------------------


class TestGetInstance:
    def test_numeric_id(self, client, fake_api):
        fake_api.on_get = lambda i: Instance(id=1234)

        instance = client.get_instance("9876")

        assert instance.id == 1234
        assert fake_api.names() == ["get_instance"]
        assert fake_api.calls[0].args == 9876

    def test_label(self, client, fake_api):
        fake_api.on_list = lambda opts: [Instance(id=9876)]
        fake_api.on_get = lambda i: Instance(id=9876, label="foo")

        instance = client.get_instance("foo")

        assert instance.label == "foo"
        assert fake_api.names() == ["list_instances", "get_instance"]
        assert fake_api.calls[0].args.filter == '{"label":"foo"}'
        assert fake_api.calls[1].args == 9876

    def test_underscored_number_is_a_label(self, client, fake_api):
        fake_api.on_list = lambda opts: [Instance(id=5)]

    def test_padded_number_is_a_label(self, client, fake_api):
        fake_api.on_list = lambda opts: [Instance(id=5)]

        client.get_instance(" 12")

        assert fake_api.names() == ["list_instances", "get_instance"]
        assert fake_api.calls[0].args.filter == '{"label":" 12"}'
        assert fake_api.calls[1].args == 5

        client.get_instance("1_000")

        assert fake_api.names() == ["list_instances", "get_instance"]

    def test_api_error(self, client, fake_api):
        fake_api.on_get = _api_error

        with pytest.raises(ProviderTransportError, match="getting instance from Linode API: random error"):
            client.get_instance("9876")

        assert fake_api.names() == ["get_instance"]

    def test_label_not_found(self, client, fake_api):
        with pytest.raises(InstanceNotFoundError, match="no instances matching this name: foo"):
            client.get_instance("foo")

        assert fake_api.names() == ["list_instances"]

    def test_label_lookup_error(self, client, fake_api):
        fake_api.on_list = _api_error

        with pytest.raises(ProviderTransportError, match="getting instance ID by its name"):
            client.get_instance("foo")

    def test_status_code_preserved(self, client, fake_api):
        def _missing(instance_id):
            raise ProviderTransportError("Not found", status_code=404)

        fake_api.on_get = _missing

        with pytest.raises(ProviderTransportError) as exc_info:
            client.get_instance("1")

        assert exc_info.value.status_code == 404


# ---------------------------------------------------------------------------
# ListInstances
# ---------------------------------------------------------------------------


class TestListInstances:
    def test_success(self, client, fake_api):
        records = [Instance(id=1234), Instance(id=5678)]
        fake_api.on_list = lambda opts: records if opts.filter == '{"tags":"pool=p1"}' else []

        instances = client.list_instances("p1")

        assert [i.id for i in instances] == [1234, 5678]
        assert fake_api.names() == ["list_instances"]
        assert fake_api.calls[0].args.filter == '{"tags":"pool=p1"}'

    def test_other_pool_gets_nothing(self, client, fake_api):
        fake_api.on_list = lambda opts: [Instance(id=1)] if opts.filter == '{"tags":"pool=p1"}' else []

        assert client.list_instances("p2") == []

    def test_empty(self, client, fake_api):
        assert client.list_instances("1234") == []

    def test_api_error(self, client, fake_api):
        fake_api.on_list = _api_error

        with pytest.raises(ProviderTransportError, match="getting instances list from Linode API: random error"):
            client.list_instances("1234")

        assert fake_api.calls[0].args.filter == '{"tags":"pool=1234"}'


# ---------------------------------------------------------------------------
# RemoveAllInstances
# ---------------------------------------------------------------------------


class TestRemoveAllInstances:
    def test_success(self, client, fake_api):
        fake_api.on_list = lambda opts: [Instance(id=1111), Instance(id=2222)]

        client.remove_all_instances()

        assert fake_api.names() == ["list_instances", "delete_instance", "delete_instance"]
        assert fake_api.calls[0].args.filter == '{"tags":"controller=1234"}'
        assert [c.args for c in fake_api.calls[1:]] == [1111, 2222]

    def test_nothing_to_remove(self, client, fake_api):
        client.remove_all_instances()

        assert fake_api.names() == ["list_instances"]

    def test_list_error(self, client, fake_api):
        fake_api.on_list = _api_error

        with pytest.raises(ProviderTransportError, match="getting instances list from Linode API"):
            client.remove_all_instances()

        assert fake_api.names() == ["list_instances"]

    def test_first_failure_aborts(self, client, fake_api):
        fake_api.on_list = lambda opts: [Instance(id=1111), Instance(id=2222)]
        fake_api.on_delete = _api_error

        with pytest.raises(PartialBulkFailure) as exc_info:
            client.remove_all_instances()

        err = exc_info.value
        assert str(err) == (
            "deleting instance 1111: deleting instance from Linode API: "
            "random error from the API"
        )
        assert err.instance_id == 1111
        assert err.deleted == 0
        assert fake_api.names() == ["list_instances", "delete_instance"]
        assert fake_api.calls[1].args == 1111

    def test_failure_after_some_deletions(self, client, fake_api):
        fake_api.on_list = lambda opts: [Instance(id=1), Instance(id=2), Instance(id=3)]

        def _delete(instance_id):
            if instance_id == 2:
                raise ProviderTransportError("boom")

        fake_api.on_delete = _delete

        with pytest.raises(PartialBulkFailure) as exc_info:
            client.remove_all_instances()

        assert exc_info.value.instance_id == 2
        assert exc_info.value.deleted == 1
        assert [c.args for c in fake_api.calls if c.name == "delete_instance"] == [1, 2]
