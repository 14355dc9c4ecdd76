from __future__ import annotations

import json
import sys
from dataclasses import dataclass, field
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest
from google.api_core.exceptions import NotFound

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from vault_init._envelope_crypto import crc32c  # imported after sys.path mutation
from vault_init._vault_state import VaultInitConfig  # imported after sys.path mutation

INIT_BODY = b'{"keys":["a"],"keys_base64":["YQ=="],"root_token":"r"}'


class FakeResponse:
    """Minimal stand-in for :class:`requests.Response`."""

    def __init__(self, status_code: int, content: bytes = b"") -> None:
        self.status_code = status_code
        self.content = content

    def json(self) -> Any:
        return json.loads(self.content)


@dataclass
class FakeVaultServer:
    """In-memory Vault answering the health, init and unseal endpoints.

    Usable as a ``requests.Session`` through :meth:`request`.
    """

    initialized: bool = False
    sealed: bool = True
    init_body: bytes = INIT_BODY
    health_override: int | None = None
    unseal_override: dict[str, Any] | None = None
    calls: list[tuple[str, str, Any]] = field(default_factory=list)

    def request(self, method: str, url: str, json: Any = None, timeout: Any = None) -> FakeResponse:
        path = url.split("://", 1)[-1].split("/", 1)[-1]
        self.calls.append((method, f"/{path}", json))
        if path == "v1/sys/health":
            return FakeResponse(self._health_code())
        if path == "v1/sys/init":
            if self.initialized:
                return FakeResponse(400, b'{"errors":["Vault is already initialized"]}')
            self.initialized = True
            return FakeResponse(200, self.init_body)
        if path == "v1/sys/unseal":
            keys = _loads(self.init_body)["keys_base64"]
            if json["key"] in keys:
                self.sealed = False
            body = {"sealed": self.sealed, "t": 1, "n": len(keys), "progress": 0}
            if self.unseal_override is not None:
                body = self.unseal_override
            return FakeResponse(200, _dumps(body))
        return FakeResponse(404)

    def _health_code(self) -> int:
        if self.health_override is not None:
            return self.health_override
        if not self.initialized:
            return 501
        return 503 if self.sealed else 200

    @property
    def unseal_keys_submitted(self) -> list[str]:
        return [payload["key"] for method, path, payload in self.calls if path == "/v1/sys/unseal"]


def _loads(raw: bytes) -> Any:
    return json.loads(raw)


def _dumps(payload: Any) -> bytes:
    return json.dumps(payload).encode("utf-8")


@dataclass
class FakeKmsClient:
    """Reversible stand-in for ``KeyManagementServiceClient``."""

    calls: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    error: Exception | None = None

    def encrypt(self, request: dict[str, Any], timeout: float | None = None) -> SimpleNamespace:
        self.calls.append(("encrypt", request))
        if self.error is not None:
            raise self.error
        assert request["plaintext_crc32c"] == crc32c(request["plaintext"])
        ciphertext = b"kms:" + request["plaintext"][::-1]
        return SimpleNamespace(
            ciphertext=ciphertext,
            ciphertext_crc32c=crc32c(ciphertext),
            verified_plaintext_crc32c=True,
        )

    def decrypt(self, request: dict[str, Any], timeout: float | None = None) -> SimpleNamespace:
        self.calls.append(("decrypt", request))
        if self.error is not None:
            raise self.error
        ciphertext = request["ciphertext"]
        assert ciphertext.startswith(b"kms:"), "ciphertext was not produced by encrypt"
        plaintext = ciphertext[len(b"kms:"):][::-1]
        return SimpleNamespace(plaintext=plaintext, plaintext_crc32c=crc32c(plaintext))


class FakeBlob:
    def __init__(self, bucket: FakeBucket, name: str) -> None:
        self._bucket = bucket
        self.name = name

    def upload_from_string(self, data: bytes, content_type: str | None = None, timeout: Any = None) -> None:
        self._bucket.uploads.append((self.name, data))
        if self._bucket.upload_errors:
            raise self._bucket.upload_errors.pop(0)
        self._bucket.objects[self.name] = data

    def download_as_bytes(self, timeout: Any = None) -> bytes:
        if self._bucket.download_error is not None:
            raise self._bucket.download_error
        if self.name not in self._bucket.objects:
            raise NotFound(f"No such object: {self._bucket.name}/{self.name}")
        return self._bucket.objects[self.name]


@dataclass
class FakeBucket:
    """In-memory Cloud Storage bucket."""

    name: str = "vault-keys"
    objects: dict[str, bytes] = field(default_factory=dict)
    uploads: list[tuple[str, bytes]] = field(default_factory=list)
    upload_errors: list[Exception] = field(default_factory=list)
    download_error: Exception | None = None

    def blob(self, name: str) -> FakeBlob:
        return FakeBlob(self, name)


@pytest.fixture
def config() -> VaultInitConfig:
    return VaultInitConfig(
        bucket_name="vault-keys",
        check_interval=0,
        persist_retry_delay=0,
    )


@pytest.fixture
def vault_server() -> FakeVaultServer:
    return FakeVaultServer()


@pytest.fixture
def kms_client() -> FakeKmsClient:
    return FakeKmsClient()


@pytest.fixture
def bucket() -> FakeBucket:
    return FakeBucket()
