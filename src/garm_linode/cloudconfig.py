"""
Cloud-init user data for runner instances.

Linode hands the user data to cloud-init through its metadata
service. The document installs a few packages, writes the runner
install script (plus any pre-install scripts from the pool's extra
specs) and runs them on first boot. The install script downloads the
runner, verifies it, registers it with GitHub and reports progress
back to GARM using the instance token.
"""

from __future__ import annotations

import base64
import binascii
import logging
import posixpath
import shlex
from string import Template
from typing import Dict, List, Optional

import yaml

from .errors import ProviderError, ToolResolutionError
from .helpers import ExtraSpecs
from .models import BootstrapInstance, OSArch, OSType, RunnerApplicationDownload

logger = logging.getLogger("garm_linode.cloudconfig")

RUNNER_USER = "runner"
INSTALL_SCRIPT_PATH = "/install_runner.sh"
PRE_INSTALL_DIR = "/garm-pre-install"
BASE_PACKAGES = ["curl", "tar"]

# GitHub names its runner downloads differently from GARM.
_OS_NAMES = {
    OSType.LINUX: "linux",
    OSType.WINDOWS: "win",
}
_ARCH_NAMES = {
    OSArch.AMD64: "x64",
    OSArch.ARM64: "arm64",
    OSArch.ARM: "arm",
}

RUNNER_INSTALL_TEMPLATE = r"""#!/bin/bash

set -e
set -o pipefail

CALLBACK_URL=${callback_url}
METADATA_URL=${metadata_url}
BEARER_TOKEN=${instance_token}
DOWNLOAD_URL=${download_url}
DOWNLOAD_TOKEN=${temp_download_token}
FILENAME=${filename}
SHA256=${sha256_checksum}
RUNNER_NAME=${runner_name}
RUNNER_LABELS=${runner_labels}
RUNNER_GROUP=${runner_group}
REPO_URL=${repo_url}
JIT_CONFIG_ENABLED=${jit_config_enabled}
RUNNER_HOME=/home/${runner_user}/actions-runner

function call() {
    PAYLOAD="$$1"
    [ -z "$$CALLBACK_URL" ] && return 0
    curl --retry 5 --retry-delay 5 --retry-connrefused --fail -s -X POST \
        -d "$$PAYLOAD" -H 'Accept: application/json' \
        -H "Authorization: Bearer $$BEARER_TOKEN" "$$CALLBACK_URL" || echo "failed to call home: exit code ($$?)"
}

function sendStatus() {
    call "{\"status\": \"installing\", \"message\": \"$$1\"}"
}

function success() {
    call "{\"status\": \"idle\", \"message\": \"$$1\", \"agent_id\": $${2:-0}}"
}

function fail() {
    call "{\"status\": \"failed\", \"message\": \"$$1\"}"
    exit 1
}

sendStatus "downloading tools from $$DOWNLOAD_URL"

TEMP_TOKEN=""
if [ -n "$$DOWNLOAD_TOKEN" ]; then
    TEMP_TOKEN="Authorization: Bearer $$DOWNLOAD_TOKEN"
fi

curl --retry 5 --retry-delay 5 --retry-connrefused --fail -L \
    -H "$$TEMP_TOKEN" -o "/home/${runner_user}/$$FILENAME" "$$DOWNLOAD_URL" || fail "failed to download tools"

if [ -n "$$SHA256" ]; then
    echo "$$SHA256  /home/${runner_user}/$$FILENAME" | sha256sum -c - || fail "runner archive checksum mismatch"
fi

mkdir -p "$$RUNNER_HOME" || fail "failed to create actions-runner folder"

sendStatus "extracting runner"
tar xf "/home/${runner_user}/$$FILENAME" -C "$$RUNNER_HOME" || fail "failed to extract runner"
chown -R ${runner_user}:${runner_user} "/home/${runner_user}" || fail "failed to change owner"

sendStatus "installing dependencies"
cd "$$RUNNER_HOME"
./bin/installdependencies.sh || fail "failed to install dependencies"

if [ "$$JIT_CONFIG_ENABLED" = "true" ]; then
    sendStatus "downloading JIT credentials"
    for NAME in runner credentials credentials_rsaparams; do
        curl --retry 5 --retry-delay 5 --retry-connrefused --fail -s -X GET \
            -H 'Accept: application/json' -H "Authorization: Bearer $$BEARER_TOKEN" \
            -o "$$RUNNER_HOME/.$$NAME" "$$METADATA_URL/credentials/$$NAME/" || fail "failed to get JIT $$NAME file"
    done
    chown ${runner_user}:${runner_user} "$$RUNNER_HOME"/.runner "$$RUNNER_HOME"/.credentials "$$RUNNER_HOME"/.credentials_rsaparams \
        || fail "failed to change owner of JIT credentials"
else
    sendStatus "fetching runner registration token"
    GITHUB_TOKEN=$$(curl --retry 5 --retry-delay 5 --retry-connrefused --fail -s -X GET \
        -H 'Accept: application/json' -H "Authorization: Bearer $$BEARER_TOKEN" \
        "$$METADATA_URL/runner-registration-token/") || fail "failed to get runner registration token"

    sendStatus "configuring runner"
    GROUP_ARGS=()
    if [ -n "$$RUNNER_GROUP" ]; then
        GROUP_ARGS=(--runnergroup "$$RUNNER_GROUP")
    fi
    sudo -u ${runner_user} -- ./config.sh --unattended --url "$$REPO_URL" --token "$$GITHUB_TOKEN" \
        --name "$$RUNNER_NAME" --labels "$$RUNNER_LABELS" "$${GROUP_ARGS[@]}" --ephemeral || fail "failed to configure runner"
fi

sendStatus "installing runner service"
./svc.sh install ${runner_user} || fail "failed to install service"
./svc.sh start || fail "failed to start service"

AGENT_ID=$$(grep -oP '(?<="[Ii][Dd]": )[0-9]+' "$$RUNNER_HOME/.runner" || true)
success "runner successfully installed" "$$AGENT_ID"
"""


def resolve_tool(
    tools: List[RunnerApplicationDownload],
    os_type: OSType,
    os_arch: OSArch,
) -> RunnerApplicationDownload:
    """Pick the runner download matching the requested platform.

    Raises:
        ToolResolutionError: If no tool matches.
    """
    os_name = _OS_NAMES.get(os_type)
    arch_name = _ARCH_NAMES.get(os_arch)
    if os_name is None or arch_name is None:
        raise ToolResolutionError(
            f"unsupported OS type or architecture: {os_type.value}/{os_arch.value}"
        )

    for tool in tools:
        if tool.os == os_name and tool.architecture == arch_name:
            if not tool.download_url:
                continue
            return tool

    raise ToolResolutionError(
        f"failed to find tools for OS {os_type.value} and arch {os_arch.value}"
    )


def _install_context(
    params: BootstrapInstance,
    tool: RunnerApplicationDownload,
    specs: ExtraSpecs,
) -> Dict[str, str]:
    """Values substituted into the install script, shell-quoted.

    Keys from the pool's ``extra_context`` are available to custom
    templates but never replace the per-instance values.
    """
    context = dict(specs.extra_context)
    context.update({
        "callback_url": params.callback_url,
        "metadata_url": params.metadata_url,
        "instance_token": params.instance_token,
        "download_url": tool.download_url or "",
        "temp_download_token": tool.temp_download_token or "",
        "filename": tool.filename or "actions-runner.tar.gz",
        "sha256_checksum": tool.sha256_checksum or "",
        "runner_name": params.name,
        "runner_labels": ",".join(params.labels),
        "runner_group": params.github_runner_group,
        "repo_url": params.repo_url,
        "jit_config_enabled": "true" if params.jit_config_enabled else "false",
    })
    quoted = {key: shlex.quote(value) for key, value in context.items()}
    quoted["runner_user"] = RUNNER_USER
    return quoted


def _decode_b64(value: str, what: str) -> str:
    try:
        return base64.b64decode(value, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise ProviderError(f"decoding {what}: {exc}") from exc


def render_install_script(
    params: BootstrapInstance,
    tool: RunnerApplicationDownload,
    specs: ExtraSpecs,
) -> str:
    """Render the runner install script.

    A ``runner_install_template`` in the extra specs replaces the
    built-in script. Placeholders use ``${name}`` syntax; unknown
    placeholders are left untouched.
    """
    template = RUNNER_INSTALL_TEMPLATE
    if specs.runner_install_template:
        template = _decode_b64(specs.runner_install_template, "runner_install_template")

    return Template(template).safe_substitute(_install_context(params, tool, specs))


def build_user_data(
    params: BootstrapInstance,
    tool: RunnerApplicationDownload,
    specs: Optional[ExtraSpecs] = None,
) -> str:
    """Build the cloud-init document for a runner instance.

    Args:
        params: Bootstrap parameters from GARM.
        tool: Runner download to install.
        specs: Parsed extra specs.

    Returns:
        str: A ``#cloud-config`` YAML document.
    """
    specs = specs or ExtraSpecs()

    packages = list(BASE_PACKAGES)
    for pkg in specs.extra_packages:
        if pkg not in packages:
            packages.append(pkg)

    user: Dict[str, object] = {
        "name": RUNNER_USER,
        "groups": "sudo",
        "homedir": f"/home/{RUNNER_USER}",
        "shell": "/bin/bash",
        "sudo": "ALL=(ALL) NOPASSWD:ALL",
    }
    if params.ssh_keys:
        user["ssh_authorized_keys"] = list(params.ssh_keys)

    write_files = []
    runcmd = []
    for name in sorted(specs.pre_install_scripts):
        path = posixpath.join(PRE_INSTALL_DIR, posixpath.basename(name))
        # Fail early on content cloud-init could not decode.
        _decode_b64(specs.pre_install_scripts[name], f"pre_install_scripts[{name}]")
        write_files.append({
            "path": path,
            "encoding": "b64",
            "content": specs.pre_install_scripts[name],
            "owner": "root:root",
            "permissions": "0755",
        })
        runcmd.append(path)

    script = render_install_script(params, tool, specs)
    write_files.append({
        "path": INSTALL_SCRIPT_PATH,
        "encoding": "b64",
        "content": base64.b64encode(script.encode("utf-8")).decode("ascii"),
        "owner": "root:root",
        "permissions": "0755",
    })
    runcmd.extend([INSTALL_SCRIPT_PATH, f"rm -f {INSTALL_SCRIPT_PATH}"])

    doc: Dict[str, object] = {
        "package_upgrade": False,
        "packages": packages,
        "users": ["default", user],
        "write_files": write_files,
        "runcmd": runcmd,
    }
    if params.ca_cert_bundle:
        doc["ca_certs"] = {
            "trusted": [_decode_b64(params.ca_cert_bundle, "ca-cert-bundle")],
        }

    logger.debug(
        "Built user data for %s (%d packages, %d pre-install scripts)",
        params.name, len(packages), len(specs.pre_install_scripts),
    )
    return "#cloud-config\n" + yaml.safe_dump(
        doc, default_flow_style=False, sort_keys=False,
    )
