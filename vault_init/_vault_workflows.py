"""Initialisation and unseal workflows driven by the poll loop."""

from __future__ import annotations

import logging
import time

from ._vault_context import SidecarContext
from ._vault_state import (
    BootstrapMaterialError,
    BootstrapStoreError,
    EnvelopeCryptoError,
    InitRequest,
    InitResponse,
    UnsealRequest,
    UnsealResponse,
    VaultInitError,
)

logger = logging.getLogger(__name__)


def _persist_material(context: SidecarContext, ciphertext: bytes) -> None:
    """Write sealed material, retrying a bounded number of times.

    Vault has already committed the initialisation at this point, so a final
    failure means the root token and key shares are gone.
    """

    config = context.config
    attempts = max(1, config.persist_attempts)
    last_error: BootstrapStoreError | None = None
    for attempt in range(1, attempts + 1):
        try:
            context.store.put(config.object_name, ciphertext)
        except BootstrapStoreError as exc:
            last_error = exc
            logger.warning(
                "Writing %s failed (attempt %d of %d): %s",
                config.storage_location,
                attempt,
                attempts,
                exc,
            )
        else:
            return
        if attempt < attempts:
            time.sleep(config.persist_retry_delay)
    logger.critical(
        "Vault was initialised but %s could not be written; "
        "the root token and unseal keys are lost",
        config.storage_location,
    )
    msg = f"Failed to persist bootstrap material to {config.storage_location}"
    raise VaultInitError(msg) from last_error


def initialise_vault(context: SidecarContext) -> None:
    """Initialise Vault and persist the sealed init response."""

    config = context.config
    request = InitRequest(
        secret_shares=config.secret_shares,
        secret_threshold=config.secret_threshold,
    )
    body = context.vault.initialise(request)

    try:
        ciphertext = context.crypto.seal(body)
    except EnvelopeCryptoError:
        logger.critical(
            "Vault was initialised but its init keys could not be encrypted; "
            "the root token and unseal keys are lost"
        )
        raise

    _persist_material(context, ciphertext)
    logger.info("Initialization complete.")


def unseal_vault(context: SidecarContext) -> UnsealResponse | None:
    """Replay stored key shares until Vault reports itself unsealed.

    Returns the last unseal status observed, or ``None`` when no share was
    submitted. Running out of shares while still sealed is not an error: the
    next health poll sees the true state.
    """

    config = context.config
    ciphertext = context.store.get(config.object_name)
    material = InitResponse.from_json(context.crypto.open(ciphertext))
    if not material.keys_base64:
        msg = f"{config.storage_location} holds no unseal key shares"
        raise BootstrapMaterialError(msg)

    status: UnsealResponse | None = None
    for key in material.keys_base64:
        status = context.vault.unseal(UnsealRequest(key=key))
        if not status.sealed:
            logger.info("Unseal complete.")
            return status
        logger.info(
            "Unseal progress %d of %d", status.progress, status.threshold
        )

    logger.warning(
        "Vault remains sealed after applying %d key share(s)",
        len(material.keys_base64),
    )
    return status


__all__ = ["initialise_vault", "unseal_vault"]
