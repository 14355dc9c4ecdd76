"""HTTP helpers for the Vault control endpoints used by the sidecar."""

from __future__ import annotations

import logging
from typing import Any

import requests
import urllib3

from ._vault_state import (
    InitRequest,
    UnsealRequest,
    UnsealResponse,
    VaultApiError,
    VaultInitConfig,
)

logger = logging.getLogger(__name__)

HEALTH_PATH = "/v1/sys/health"
INIT_PATH = "/v1/sys/init"
UNSEAL_PATH = "/v1/sys/unseal"


def build_session(config: VaultInitConfig) -> requests.Session:
    """Return a session honouring the configured TLS trust settings.

    Examples
    --------
    >>> build_session(VaultInitConfig(bucket_name="b")).verify
    True
    """

    session = requests.Session()
    if config.tls_skip_verify:
        logger.warning(
            "TLS certificate verification is DISABLED for %s; "
            "only use this when Vault is reachable solely from this host",
            config.vault_addr,
        )
        urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
        session.verify = False
    elif config.ca_certificate is not None:
        session.verify = str(config.ca_certificate)
    return session


class VaultApi:
    """Blocking client for ``sys/health``, ``sys/init`` and ``sys/unseal``."""

    def __init__(
        self,
        config: VaultInitConfig,
        session: requests.Session | None = None,
    ) -> None:
        self._base_url = config.vault_addr.rstrip("/")
        self._timeout = (config.connect_timeout, config.request_timeout)
        self._session = session if session is not None else build_session(config)

    def _request(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
    ) -> requests.Response:
        url = f"{self._base_url}{path}"
        try:
            return self._session.request(method, url, json=payload, timeout=self._timeout)
        except requests.RequestException as exc:
            msg = f"{method} {path} failed: {exc}"
            raise VaultApiError(msg) from exc

    def health_status(self) -> int:
        """Return the status code reported by ``GET /v1/sys/health``."""

        return self._request("GET", HEALTH_PATH).status_code

    def initialise(self, request: InitRequest) -> bytes:
        """Initialise Vault and return the raw response body.

        The body is returned untouched because it is the only copy of the root
        token and key shares.
        """

        response = self._request("PUT", INIT_PATH, request.to_mapping())
        if response.status_code != 200:
            msg = f"Vault init returned status {response.status_code}"
            raise VaultApiError(msg)
        return response.content

    def unseal(self, request: UnsealRequest) -> UnsealResponse:
        """Submit one key share and return the resulting seal status."""

        response = self._request("PUT", UNSEAL_PATH, request.to_mapping())
        if response.status_code != 200:
            msg = f"Vault unseal returned status {response.status_code}"
            raise VaultApiError(msg)
        try:
            payload = response.json()
        except ValueError as exc:
            raise VaultApiError(f"Invalid JSON from unseal: {exc}") from exc
        return UnsealResponse.from_mapping(payload)


__all__ = [
    "HEALTH_PATH",
    "INIT_PATH",
    "UNSEAL_PATH",
    "VaultApi",
    "build_session",
]
