#!/usr/bin/env -S uv run python
# /// script
# requires-python = ">=3.13"
# dependencies = [
#     "cyclopts>=2.9",
#     "requests>=2.31",
#     "urllib3>=2",
#     "google-api-core>=2.15",
#     "google-auth>=2.23",
#     "google-cloud-kms>=2.21",
#     "google-cloud-storage>=2.14",
#     "google-crc32c>=1.5",
# ]
# ///

"""Vault init sidecar.

This script:
- polls the local Vault health endpoint every ``CHECK_INTERVAL`` seconds;
- initialises an uninitialised Vault and stores the KMS-encrypted init keys
  in Cloud Storage; and
- unseals a sealed Vault using those stored keys.

Only ``GCS_BUCKET_NAME`` is required; everything else has a default.
"""

from __future__ import annotations

import logging
import os
import signal
import sys
from collections import abc as cabc
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated

from cyclopts import App, Parameter

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from vault_init._input_resolution import (
    InputResolution,
    parse_bool,
    resolve_input,
    resolve_number,
)
from vault_init._vault_bootstrap import PollScheduler, serve
from vault_init._vault_context import SidecarContext
from vault_init._vault_state import (
    DEFAULT_CHECK_INTERVAL,
    DEFAULT_OBJECT_NAME,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_VAULT_ADDR,
    VaultInitConfig,
    VaultInitError,
    build_kms_key_id,
)

app = App(help="Initialise and unseal a colocated Vault using Cloud KMS and Cloud Storage.")
logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_KEY_THRESHOLD_ERROR = "SECRET_THRESHOLD must be ≤ SECRET_SHARES"


@dataclass(frozen=True, slots=True)
class EnvContext:
    """Environment resolution context."""

    env: cabc.Mapping[str, str]

    @classmethod
    def from_os_environ(cls) -> EnvContext:
        """Create context from os.environ."""

        return cls(env=os.environ)


@dataclass(frozen=True, slots=True)
class KmsKeyInputs:
    """Either a full key resource name or its four path segments."""

    kms_key_id: str | None = None
    kms_project: str | None = None
    kms_location: str | None = None
    kms_key_ring: str | None = None
    kms_crypto_key: str | None = None


@dataclass(frozen=True, slots=True)
class SidecarInputs:
    """Raw inputs from the CLI; ``None`` falls back to the environment."""

    vault_addr: str | None = None
    bucket_name: str | None = None
    object_name: str | None = None
    kms: KmsKeyInputs = KmsKeyInputs()
    check_interval: float | None = None
    secret_shares: int | None = None
    secret_threshold: int | None = None
    request_timeout: float | None = None
    ca_certificate: Path | None = None
    tls_skip_verify: bool | None = None
    persist_attempts: int | None = None


def _resolve_kms_key_id(*, kms: KmsKeyInputs, context: EnvContext) -> str:
    explicit = resolve_input(
        kms.kms_key_id,
        InputResolution(env_key="KMS_KEY_ID"),
        env=context.env,
    )
    if explicit is not None:
        return str(explicit)
    segments = [
        resolve_input(value, InputResolution(env_key=key, default=default), env=context.env)
        for value, key, default in (
            (kms.kms_project, "KMS_PROJECT", "hightowerlabs"),
            (kms.kms_location, "KMS_LOCATION", "global"),
            (kms.kms_key_ring, "KMS_KEY_RING", "vault"),
            (kms.kms_crypto_key, "KMS_CRYPTO_KEY", "vault-init"),
        )
    ]
    return build_kms_key_id(*(str(segment) for segment in segments))


def _resolve_shamir_config(
    *,
    inputs: SidecarInputs,
    context: EnvContext,
) -> tuple[int, int]:
    key_shares = int(
        resolve_number(
            inputs.secret_shares,
            InputResolution(env_key="SECRET_SHARES", default="1"),
            int,
            env=context.env,
        )
    )
    key_threshold = int(
        resolve_number(
            inputs.secret_threshold,
            InputResolution(env_key="SECRET_THRESHOLD", default="1"),
            int,
            env=context.env,
        )
    )
    if key_shares < 1 or key_threshold < 1:
        raise SystemExit("SECRET_SHARES and SECRET_THRESHOLD must be at least 1")
    if key_threshold > key_shares:
        raise SystemExit(_KEY_THRESHOLD_ERROR)
    return key_shares, key_threshold


def build_config(
    *,
    inputs: SidecarInputs,
    context: EnvContext | None = None,
) -> VaultInitConfig:
    """Build the sidecar configuration from CLI parameters and environment."""

    context = context or EnvContext.from_os_environ()
    bucket_name = resolve_input(
        inputs.bucket_name,
        InputResolution(env_key="GCS_BUCKET_NAME", required=True, aliases=("BUCKET_NAME",)),
        env=context.env,
    )
    vault_addr = resolve_input(
        inputs.vault_addr,
        InputResolution(env_key="VAULT_ADDR", default=DEFAULT_VAULT_ADDR),
        env=context.env,
    )
    object_name = resolve_input(
        inputs.object_name,
        InputResolution(env_key="KEYS_OBJECT_NAME", default=DEFAULT_OBJECT_NAME),
        env=context.env,
    )
    check_interval = resolve_number(
        inputs.check_interval,
        InputResolution(env_key="CHECK_INTERVAL", default=str(DEFAULT_CHECK_INTERVAL)),
        float,
        env=context.env,
    )
    request_timeout = resolve_number(
        inputs.request_timeout,
        InputResolution(env_key="REQUEST_TIMEOUT", default=str(DEFAULT_REQUEST_TIMEOUT)),
        float,
        env=context.env,
    )
    persist_attempts = int(
        resolve_number(
            inputs.persist_attempts,
            InputResolution(env_key="PERSIST_ATTEMPTS", default="3"),
            int,
            env=context.env,
        )
    )
    if check_interval <= 0:
        raise SystemExit("CHECK_INTERVAL must be positive")
    if request_timeout <= 0:
        raise SystemExit("REQUEST_TIMEOUT must be positive")
    if persist_attempts < 1:
        raise SystemExit("PERSIST_ATTEMPTS must be at least 1")

    ca_certificate = resolve_input(
        inputs.ca_certificate,
        InputResolution(env_key="CA_CERT_PATH", as_path=True),
        env=context.env,
    )
    tls_skip_verify = parse_bool(
        inputs.tls_skip_verify
        if inputs.tls_skip_verify is not None
        else context.env.get("TLS_SKIP_VERIFY")
    )
    key_shares, key_threshold = _resolve_shamir_config(inputs=inputs, context=context)

    return VaultInitConfig(
        bucket_name=str(bucket_name),
        vault_addr=str(vault_addr),
        object_name=str(object_name),
        kms_key_id=_resolve_kms_key_id(kms=inputs.kms, context=context),
        check_interval=float(check_interval),
        secret_shares=key_shares,
        secret_threshold=key_threshold,
        request_timeout=float(request_timeout),
        ca_certificate=Path(ca_certificate) if ca_certificate is not None else None,
        tls_skip_verify=tls_skip_verify,
        persist_attempts=persist_attempts,
    )


def configure_logging(level: str | None) -> None:
    """Configure root logging once for the process."""

    name = (level or "INFO").upper()
    numeric = logging.getLevelName(name)
    if not isinstance(numeric, int):
        raise SystemExit(f"LOG_LEVEL must be a logging level name, got: {level!r}")
    logging.basicConfig(level=numeric, format=LOG_FORMAT)


def build_context(config: VaultInitConfig) -> SidecarContext:
    """Construct the Vault, KMS and Cloud Storage clients."""

    from google.api_core.exceptions import GoogleAPIError
    from google.auth.exceptions import GoogleAuthError
    from google.cloud import kms, storage

    from vault_init._bootstrap_store import BootstrapStore
    from vault_init._envelope_crypto import EnvelopeCrypto
    from vault_init._vault_api import VaultApi

    try:
        storage_client = storage.Client()
        kms_client = kms.KeyManagementServiceClient()
    except (GoogleAuthError, GoogleAPIError, OSError) as exc:
        raise VaultInitError(f"Failed to create Google Cloud clients: {exc}") from exc

    return SidecarContext(
        config=config,
        vault=VaultApi(config),
        crypto=EnvelopeCrypto(kms_client, config.kms_key_id, timeout=config.request_timeout),
        store=BootstrapStore(
            storage_client.bucket(config.bucket_name),
            timeout=config.request_timeout,
        ),
    )


def _install_signal_handlers(scheduler: PollScheduler) -> dict[int, object]:
    """Stop *scheduler* on SIGINT/SIGTERM; return the handlers replaced."""

    def _handle(signum: int, _frame: object) -> None:
        logger.info("Received %s", signal.Signals(signum).name)
        scheduler.stop()

    previous = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.signal(signum, _handle)
    return previous


@app.default
def main(
    vault_addr: str | None = None,
    bucket_name: Annotated[str | None, Parameter(name=["--bucket-name", "--bucket"])] = None,
    object_name: str | None = None,
    kms_key_id: str | None = None,
    kms_project: str | None = None,
    kms_location: str | None = None,
    kms_key_ring: str | None = None,
    kms_crypto_key: str | None = None,
    check_interval: float | None = None,
    secret_shares: int | None = None,
    secret_threshold: int | None = None,
    request_timeout: float | None = None,
    ca_certificate: Path | None = None,
    tls_skip_verify: bool | None = None,
    persist_attempts: int | None = None,
    log_level: str | None = None,
    once: bool = False,
) -> int:
    """Entry point for command-line execution."""

    configure_logging(log_level or os.environ.get("LOG_LEVEL"))
    inputs = SidecarInputs(
        vault_addr=vault_addr,
        bucket_name=bucket_name,
        object_name=object_name,
        kms=KmsKeyInputs(
            kms_key_id=kms_key_id,
            kms_project=kms_project,
            kms_location=kms_location,
            kms_key_ring=kms_key_ring,
            kms_crypto_key=kms_crypto_key,
        ),
        check_interval=check_interval,
        secret_shares=secret_shares,
        secret_threshold=secret_threshold,
        request_timeout=request_timeout,
        ca_certificate=ca_certificate,
        tls_skip_verify=tls_skip_verify,
        persist_attempts=persist_attempts,
    )
    config = build_config(inputs=inputs)

    try:
        context = build_context(config)
    except VaultInitError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    logger.info(
        "Starting Vault init sidecar for %s (keys at %s)",
        config.vault_addr,
        config.storage_location,
    )
    scheduler = PollScheduler(interval=config.check_interval)
    previous = _install_signal_handlers(scheduler)
    try:
        serve(context, scheduler, max_cycles=1 if once else None)
    finally:
        for signum, handler in previous.items():
            if handler is not None:
                signal.signal(signum, handler)
    logger.info("Vault init sidecar stopped.")
    return 0


def run() -> None:
    raise SystemExit(app())


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    run()
