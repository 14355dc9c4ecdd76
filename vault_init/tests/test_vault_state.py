"""Tests for the sidecar data model and configuration defaults."""

from __future__ import annotations

import pytest

from vault_init._vault_state import (
    DEFAULT_KMS_KEY_ID,
    BootstrapMaterialError,
    InitRequest,
    InitResponse,
    UnsealRequest,
    UnsealResponse,
    VaultApiError,
    VaultInitConfig,
)


def test_config_defaults_match_single_share_policy() -> None:
    config = VaultInitConfig(bucket_name="vault-keys")
    assert config.vault_addr == "https://127.0.0.1:8200", "Expected local Vault address"
    assert config.object_name == "keys.json", "Expected fixed object name"
    assert (config.secret_shares, config.secret_threshold) == (1, 1)
    assert config.check_interval == 10.0, "Expected ten second poll cadence"
    assert config.tls_skip_verify is False, "TLS verification must be on by default"
    assert config.kms_key_id == DEFAULT_KMS_KEY_ID
    assert config.storage_location == "gs://vault-keys/keys.json"


def test_init_request_payload() -> None:
    assert InitRequest(secret_shares=5, secret_threshold=3).to_mapping() == {
        "secret_shares": 5,
        "secret_threshold": 3,
    }


def test_unseal_request_never_resets() -> None:
    assert UnsealRequest(key="YQ==").to_mapping() == {"key": "YQ==", "reset": False}


def test_init_response_parses_vault_body() -> None:
    material = InitResponse.from_json(
        b'{"keys":["a"],"keys_base64":["YQ=="],"root_token":"r"}'
    )
    assert material.keys == ["a"]
    assert material.keys_base64 == ["YQ=="]
    assert material.root_token == "r"


@pytest.mark.parametrize(
    "payload",
    [
        pytest.param(b"not json", id="invalid-json"),
        pytest.param(b"[]", id="not-object"),
        pytest.param(b'{"keys_base64": "YQ==", "root_token": "r"}', id="keys-not-list"),
        pytest.param(b'{"keys_base64": ["YQ=="]}', id="missing-root-token"),
        pytest.param(b"\xff\xfe", id="not-utf8"),
    ],
)
def test_init_response_rejects_malformed_material(payload: bytes) -> None:
    with pytest.raises(BootstrapMaterialError):
        InitResponse.from_json(payload)


def test_unseal_response_maps_short_field_names() -> None:
    status = UnsealResponse.from_mapping({"sealed": True, "t": 3, "n": 5, "progress": 2})
    assert status == UnsealResponse(sealed=True, threshold=3, total_shares=5, progress=2)


def test_unseal_response_requires_sealed_flag() -> None:
    with pytest.raises(VaultApiError, match="sealed"):
        UnsealResponse.from_mapping({"t": 1})


@pytest.mark.parametrize(
    "payload",
    [
        pytest.param({"sealed": True, "t": None, "n": 1, "progress": 0}, id="null-threshold"),
        pytest.param({"sealed": True, "t": 1, "n": "five", "progress": 0}, id="text-shares"),
    ],
)
def test_unseal_response_rejects_non_integer_counts(payload: dict[str, object]) -> None:
    with pytest.raises(VaultApiError, match="non-integer"):
        UnsealResponse.from_mapping(payload)
