"""Durable storage of bootstrap material in a Cloud Storage bucket."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import requests
from google.api_core.exceptions import GoogleAPIError, NotFound
from google.auth.exceptions import GoogleAuthError

from ._vault_state import BootstrapMaterialMissing, BootstrapStoreError

if TYPE_CHECKING:
    from google.cloud import storage

logger = logging.getLogger(__name__)

_STORAGE_ERRORS = (GoogleAPIError, GoogleAuthError, requests.RequestException)


class BootstrapStore:
    """Read and overwrite named objects in one bucket."""

    def __init__(
        self,
        bucket: storage.Bucket | Any,
        timeout: float | None = None,
    ) -> None:
        self._bucket = bucket
        self._timeout = timeout

    def location(self, name: str) -> str:
        return f"gs://{self._bucket.name}/{name}"

    def put(self, name: str, data: bytes) -> None:
        """Write *data* to *name*, replacing any existing object."""

        blob = self._bucket.blob(name)
        try:
            blob.upload_from_string(
                data,
                content_type="application/octet-stream",
                timeout=self._timeout,
            )
        except _STORAGE_ERRORS as exc:
            msg = f"Failed to write {self.location(name)}: {exc}"
            raise BootstrapStoreError(msg) from exc
        logger.info("Keys written to %s", self.location(name))

    def get(self, name: str) -> bytes:
        """Return the contents of *name*.

        Raises
        ------
        BootstrapMaterialMissing
            When the object does not exist.
        BootstrapStoreError
            On any other transport or permission failure.
        """

        blob = self._bucket.blob(name)
        try:
            return blob.download_as_bytes(timeout=self._timeout)
        except NotFound as exc:
            msg = f"{self.location(name)} does not exist; has Vault been initialised?"
            raise BootstrapMaterialMissing(msg) from exc
        except _STORAGE_ERRORS as exc:
            msg = f"Failed to read {self.location(name)}: {exc}"
            raise BootstrapStoreError(msg) from exc


__all__ = ["BootstrapStore"]
