"""Data model, configuration and errors for the Vault init sidecar."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_VAULT_ADDR = "https://127.0.0.1:8200"
DEFAULT_OBJECT_NAME = "keys.json"
DEFAULT_CHECK_INTERVAL = 10.0
DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_CONNECT_TIMEOUT = 5.0


def build_kms_key_id(
    project: str,
    location: str,
    key_ring: str,
    crypto_key: str,
) -> str:
    """Return the fully-qualified Cloud KMS crypto key resource name.

    Examples
    --------
    >>> build_kms_key_id("hightowerlabs", "global", "vault", "vault-init")
    'projects/hightowerlabs/locations/global/keyRings/vault/cryptoKeys/vault-init'
    """

    return (
        f"projects/{project}/locations/{location}"
        f"/keyRings/{key_ring}/cryptoKeys/{crypto_key}"
    )


DEFAULT_KMS_KEY_ID = build_kms_key_id("hightowerlabs", "global", "vault", "vault-init")


class VaultInitError(RuntimeError):
    """Raised when a sidecar workflow step fails."""


class VaultApiError(VaultInitError):
    """Raised when the Vault control API rejects or fails a request."""


class EnvelopeCryptoError(VaultInitError):
    """Raised when the key-management service cannot encrypt or decrypt."""


class BootstrapStoreError(VaultInitError):
    """Raised when the object store cannot read or write bootstrap material."""


class BootstrapMaterialMissing(BootstrapStoreError):
    """Raised when no bootstrap material has been persisted yet."""


class BootstrapMaterialError(VaultInitError):
    """Raised when decrypted bootstrap material is malformed."""


@dataclass(frozen=True, slots=True)
class VaultInitConfig:
    """Process-wide settings, resolved once at startup."""

    bucket_name: str
    vault_addr: str = DEFAULT_VAULT_ADDR
    object_name: str = DEFAULT_OBJECT_NAME
    kms_key_id: str = DEFAULT_KMS_KEY_ID
    check_interval: float = DEFAULT_CHECK_INTERVAL
    secret_shares: int = 1
    secret_threshold: int = 1
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    ca_certificate: Path | None = None
    tls_skip_verify: bool = False
    persist_attempts: int = 3
    persist_retry_delay: float = 2.0

    @property
    def storage_location(self) -> str:
        """Return the ``gs://`` URL of the bootstrap material.

        Examples
        --------
        >>> VaultInitConfig(bucket_name="vault-keys").storage_location
        'gs://vault-keys/keys.json'
        """

        return f"gs://{self.bucket_name}/{self.object_name}"


@dataclass(frozen=True, slots=True)
class InitRequest:
    """Body of ``PUT /v1/sys/init``."""

    secret_shares: int = 1
    secret_threshold: int = 1

    def to_mapping(self) -> dict[str, int]:
        """Return the JSON payload expected by Vault.

        Examples
        --------
        >>> InitRequest().to_mapping()
        {'secret_shares': 1, 'secret_threshold': 1}
        """

        return {
            "secret_shares": self.secret_shares,
            "secret_threshold": self.secret_threshold,
        }


@dataclass(slots=True)
class InitResponse:
    """Secret material returned once by a successful initialisation."""

    keys: list[str] = field(default_factory=list)
    keys_base64: list[str] = field(default_factory=list)
    root_token: str = ""

    @classmethod
    def from_json(cls, payload: bytes | str) -> InitResponse:
        """Parse a serialised init response.

        Examples
        --------
        >>> InitResponse.from_json(b'{"keys": ["a"], "keys_base64": ["YQ=="], "root_token": "r"}').keys_base64
        ['YQ==']
        """

        try:
            data = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            msg = f"Bootstrap material is not valid JSON: {exc}"
            raise BootstrapMaterialError(msg) from exc
        if not isinstance(data, dict):
            raise BootstrapMaterialError("Bootstrap material must be a JSON object")
        return cls(
            keys=_validate_list_str_field(data.get("keys", []), "keys"),
            keys_base64=_validate_list_str_field(
                data.get("keys_base64", []), "keys_base64"
            ),
            root_token=_validate_str_field(data.get("root_token"), "root_token"),
        )


@dataclass(frozen=True, slots=True)
class UnsealRequest:
    """Body of ``PUT /v1/sys/unseal``."""

    key: str
    reset: bool = False

    def to_mapping(self) -> dict[str, Any]:
        return {"key": self.key, "reset": self.reset}


@dataclass(frozen=True, slots=True)
class UnsealResponse:
    """Seal status reported after submitting a key share."""

    sealed: bool
    threshold: int = 0
    total_shares: int = 0
    progress: int = 0

    @classmethod
    def from_mapping(cls, payload: Any) -> UnsealResponse:
        """Build a response from the decoded JSON body.

        Examples
        --------
        >>> UnsealResponse.from_mapping({"sealed": False, "t": 1, "n": 1, "progress": 0})
        UnsealResponse(sealed=False, threshold=1, total_shares=1, progress=0)
        """

        if not isinstance(payload, dict) or not isinstance(payload.get("sealed"), bool):
            msg = "Unseal response did not report a boolean 'sealed' flag"
            raise VaultApiError(msg)
        try:
            return cls(
                sealed=payload["sealed"],
                threshold=int(payload.get("t", 0)),
                total_shares=int(payload.get("n", 0)),
                progress=int(payload.get("progress", 0)),
            )
        except (TypeError, ValueError) as exc:
            msg = f"Unseal response carried a non-integer share count: {exc}"
            raise VaultApiError(msg) from exc


def _validate_list_str_field(value: Any, field_name: str) -> list[str]:
    """Validate and return a list[str] field from bootstrap material.

    Examples
    --------
    >>> _validate_list_str_field(["a", "b"], "keys")
    ['a', 'b']
    """

    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        msg = f"Bootstrap field {field_name!r} must be list[str]"
        raise BootstrapMaterialError(msg)
    return list(value)


def _validate_str_field(value: Any, field_name: str) -> str:
    if not isinstance(value, str):
        msg = f"Bootstrap field {field_name!r} must be str"
        raise BootstrapMaterialError(msg)
    return value


__all__ = [
    "DEFAULT_KMS_KEY_ID",
    "BootstrapMaterialError",
    "BootstrapMaterialMissing",
    "BootstrapStoreError",
    "EnvelopeCryptoError",
    "InitRequest",
    "InitResponse",
    "UnsealRequest",
    "UnsealResponse",
    "VaultApiError",
    "VaultInitConfig",
    "VaultInitError",
    "build_kms_key_id",
    "DEFAULT_OBJECT_NAME",
    "DEFAULT_VAULT_ADDR",
]
