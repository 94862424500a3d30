"""
Linode API gateway.

The only part of the provider that talks to the network. It exposes
four primitives (create, delete, get, list) and nothing else: no
retries, no caching, no interpretation of the results. Anything that
goes wrong on the wire comes back as a ProviderTransportError with
the upstream message attached.

LinodeAPI is the seam the lifecycle client depends on, so tests can
swap in a fake without any HTTP involved.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

import requests
from pydantic import ValidationError

from .config import Config
from .errors import ConfigError, ProviderTransportError
from .models import Instance, InstanceCreateOptions

logger = logging.getLogger("garm_linode.api")

API_URL = "https://api.linode.com/v4"
REQUEST_TIMEOUT = 30
PAGE_SIZE = 500


@dataclass(frozen=True)
class ListOptions:
    """Server-side filter for list calls.

    Args:
        filter: JSON filter document, sent verbatim as ``X-Filter``.
    """

    filter: str = ""


class LinodeAPI(Protocol):
    """Capability set the lifecycle client needs from Linode."""

    def create_instance(self, opts: InstanceCreateOptions) -> Instance: ...

    def delete_instance(self, instance_id: int) -> None: ...

    def get_instance(self, instance_id: int) -> Instance: ...

    def list_instances(self, opts: Optional[ListOptions] = None) -> List[Instance]: ...


def _to_instance(data: Any) -> Instance:
    try:
        return Instance.model_validate(data)
    except ValidationError as exc:
        raise ProviderTransportError(f"unexpected instance payload: {exc}") from exc


def _error_message(resp: requests.Response) -> str:
    """Pull the human readable reasons out of a Linode error body."""
    try:
        body = resp.json()
    except ValueError:
        return resp.text

    errors = body.get("errors") if isinstance(body, dict) else None
    if not errors or not isinstance(errors, list):
        return resp.text

    reasons = []
    for err in errors:
        if not isinstance(err, dict):
            reasons.append(str(err))
            continue
        reason = err.get("reason", "")
        if err.get("field"):
            reason = f"[{err['field']}] {reason}"
        reasons.append(reason)
    return "; ".join(reasons)


class HTTPLinodeAPI:
    """LinodeAPI backed by the public Linode v4 REST API.

    Args:
        token: Personal access token, presented as a bearer token.
        base_url: API root, overridable for tests.
        session: Optional preconfigured requests session.
    """

    def __init__(
        self,
        token: str,
        base_url: str = API_URL,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._session = session or requests.Session()
        self._session.headers.update({
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        })

    def _api_call(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Make an authenticated Linode API call.

        Args:
            method: HTTP method.
            endpoint: API endpoint path.
            data: JSON request body.
            params: Query string parameters.
            headers: Extra request headers.

        Returns:
            Parsed JSON response (empty dict for empty bodies).

        Raises:
            ProviderTransportError: On network failure or a non-2xx status.
        """
        url = f"{self._base_url}{endpoint}"
        logger.debug("%s %s", method, endpoint)

        try:
            resp = self._session.request(
                method, url, json=data, params=params, headers=headers,
                timeout=REQUEST_TIMEOUT,
            )
        except requests.RequestException as exc:
            raise ProviderTransportError(f"{method} {endpoint}: {exc}") from exc

        if resp.status_code >= 400:
            raise ProviderTransportError(
                f"{method} {endpoint}: {resp.status_code} {_error_message(resp)}",
                status_code=resp.status_code,
            )

        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as exc:
            raise ProviderTransportError(
                f"{method} {endpoint}: invalid JSON response: {exc}",
                status_code=resp.status_code,
            ) from exc

    def create_instance(self, opts: InstanceCreateOptions) -> Instance:
        body = opts.model_dump(mode="json", exclude_none=True)
        return _to_instance(self._api_call("POST", "/linode/instances", data=body))

    def delete_instance(self, instance_id: int) -> None:
        self._api_call("DELETE", f"/linode/instances/{instance_id}")

    def get_instance(self, instance_id: int) -> Instance:
        return _to_instance(self._api_call("GET", f"/linode/instances/{instance_id}"))

    def list_instances(self, opts: Optional[ListOptions] = None) -> List[Instance]:
        """List instances, reading every page of the result."""
        headers = {"X-Filter": opts.filter} if opts and opts.filter else None

        instances: List[Instance] = []
        page = 1
        while True:
            result = self._api_call(
                "GET", "/linode/instances",
                params={"page": page, "page_size": PAGE_SIZE},
                headers=headers,
            )
            instances.extend(
                _to_instance(item) for item in result.get("data", [])
            )
            if page >= int(result.get("pages", 1) or 1):
                break
            page += 1

        return instances


def new_api(cfg: Optional[Config]) -> HTTPLinodeAPI:
    """Build the HTTP gateway from a config.

    Raises:
        ConfigError: If the config is missing or has no token.
    """
    if cfg is None:
        raise ConfigError("configuration is missing")

    try:
        cfg.validate_token()
    except ConfigError as exc:
        raise ConfigError(f"validating configuration: {exc}") from exc

    return HTTPLinodeAPI(cfg.token)
