"""Health-driven poll loop that keeps Vault initialised and unsealed."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from ._vault_context import SidecarContext
from ._vault_state import VaultApiError, VaultInitError
from ._vault_workflows import initialise_vault, unseal_vault

logger = logging.getLogger(__name__)

Workflow = Callable[[SidecarContext], object]


class VaultHealth(Enum):
    """Vault lifecycle state derived from a single health response."""

    OPERABLE = "operable"
    STANDBY = "standby"
    UNINITIALIZED = "uninitialized"
    SEALED = "sealed"
    UNKNOWN = "unknown"


_STATUS_TO_HEALTH = {
    200: VaultHealth.OPERABLE,
    429: VaultHealth.STANDBY,
    501: VaultHealth.UNINITIALIZED,
    503: VaultHealth.SEALED,
}

_HEALTH_MESSAGES = {
    VaultHealth.OPERABLE: "Vault is initialized and unsealed.",
    VaultHealth.STANDBY: "Vault is unsealed and in standby mode.",
    VaultHealth.UNINITIALIZED: "Vault is not initialized. Initializing...",
    VaultHealth.SEALED: "Vault is sealed. Unsealing...",
    VaultHealth.UNKNOWN: "Vault is in an unknown state",
}


def classify_health(status_code: int | None) -> VaultHealth:
    """Map a ``sys/health`` status code to a lifecycle state.

    ``None`` stands for a transport failure.

    Examples
    --------
    >>> classify_health(503)
    <VaultHealth.SEALED: 'sealed'>
    >>> classify_health(None)
    <VaultHealth.UNKNOWN: 'unknown'>
    """

    if status_code is None:
        return VaultHealth.UNKNOWN
    return _STATUS_TO_HEALTH.get(status_code, VaultHealth.UNKNOWN)


@dataclass(frozen=True, slots=True)
class CycleOutcome:
    """What a single poll cycle observed and did."""

    health: VaultHealth
    status_code: int | None = None
    workflow: str | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


def run_cycle(
    context: SidecarContext,
    *,
    initialise: Workflow = initialise_vault,
    unseal: Workflow = unseal_vault,
) -> CycleOutcome:
    """Poll health once and run the workflow that state calls for.

    Workflow failures are logged and reported in the outcome, never raised.
    """

    try:
        status_code: int | None = context.vault.health_status()
    except VaultApiError as exc:
        logger.warning("Health check failed: %s", exc)
        status_code = None

    health = classify_health(status_code)
    if health is VaultHealth.UNKNOWN and status_code is not None:
        logger.warning("%s (status %d)", _HEALTH_MESSAGES[health], status_code)
    else:
        logger.info(_HEALTH_MESSAGES[health])

    dispatch = {
        VaultHealth.UNINITIALIZED: ("initialise", initialise),
        VaultHealth.SEALED: ("unseal", unseal),
    }
    if health not in dispatch:
        return CycleOutcome(health=health, status_code=status_code)

    name, workflow = dispatch[health]
    try:
        workflow(context)
    except VaultInitError as exc:
        logger.error("Vault %s aborted for this cycle: %s", name, exc)
        return CycleOutcome(health, status_code, workflow=name, error=str(exc))
    except Exception as exc:
        logger.exception("Vault %s aborted unexpectedly", name)
        return CycleOutcome(health, status_code, workflow=name, error=repr(exc))
    return CycleOutcome(health, status_code, workflow=name)


@dataclass(slots=True)
class PollScheduler:
    """Run a cycle, wait the interval, repeat until stopped.

    The wait is interruptible so :meth:`stop` ends the loop between cycles; a
    cycle already in progress always runs to completion.
    """

    interval: float
    _stopped: threading.Event = field(default_factory=threading.Event)

    def stop(self) -> None:
        self._stopped.set()

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def run(self, cycle: Callable[[], object], *, max_cycles: int | None = None) -> int:
        """Drive *cycle* and return how many cycles ran.

        Examples
        --------
        >>> PollScheduler(interval=0).run(lambda: None, max_cycles=2)
        2
        """

        completed = 0
        while not self._stopped.is_set():
            cycle()
            completed += 1
            if max_cycles is not None and completed >= max_cycles:
                break
            logger.info("Next check in %g seconds.", self.interval)
            if self._stopped.wait(self.interval):
                break
        if self._stopped.is_set():
            logger.info("Shutdown requested; stopping after %d cycle(s)", completed)
        return completed


def serve(
    context: SidecarContext,
    scheduler: PollScheduler | None = None,
    *,
    max_cycles: int | None = None,
) -> int:
    """Keep Vault initialised and unsealed until the scheduler is stopped."""

    scheduler = scheduler or PollScheduler(interval=context.config.check_interval)
    return scheduler.run(lambda: run_cycle(context), max_cycles=max_cycles)


__all__ = [
    "CycleOutcome",
    "PollScheduler",
    "VaultHealth",
    "classify_health",
    "run_cycle",
    "serve",
]
