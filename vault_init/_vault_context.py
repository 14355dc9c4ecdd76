"""Explicit dependency bundle handed to each sidecar workflow."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from ._vault_state import InitRequest, UnsealRequest, UnsealResponse, VaultInitConfig


class VaultControl(Protocol):
    def health_status(self) -> int: ...

    def initialise(self, request: InitRequest) -> bytes: ...

    def unseal(self, request: UnsealRequest) -> UnsealResponse: ...


class Sealer(Protocol):
    def seal(self, plaintext: bytes) -> bytes: ...

    def open(self, ciphertext: bytes) -> bytes: ...


class MaterialStore(Protocol):
    def put(self, name: str, data: bytes) -> None: ...

    def get(self, name: str) -> bytes: ...


@dataclass(frozen=True, slots=True)
class SidecarContext:
    """Configuration and clients constructed once at startup."""

    config: VaultInitConfig
    vault: VaultControl
    crypto: Sealer
    store: MaterialStore


__all__ = ["MaterialStore", "Sealer", "SidecarContext", "VaultControl"]
