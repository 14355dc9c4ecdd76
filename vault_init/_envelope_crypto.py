"""Envelope encryption of bootstrap material through Cloud KMS.

The stored ciphertext is the base64 text form that the KMS REST API returns,
so material written by earlier releases of the sidecar stays readable.
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import TYPE_CHECKING, Any

import google_crc32c
from google.api_core.exceptions import GoogleAPIError
from google.auth.exceptions import GoogleAuthError

from ._vault_state import EnvelopeCryptoError

if TYPE_CHECKING:
    from google.cloud import kms

logger = logging.getLogger(__name__)


def crc32c(data: bytes) -> int:
    """Return the CRC32C checksum KMS uses for integrity verification.

    Examples
    --------
    >>> crc32c(b"")
    0
    """

    return google_crc32c.value(data)


class EnvelopeCrypto:
    """Seal and open bootstrap material with a single KMS crypto key."""

    def __init__(
        self,
        client: kms.KeyManagementServiceClient | Any,
        key_id: str,
        timeout: float | None = None,
    ) -> None:
        self._client = client
        self.key_id = key_id
        self._timeout = timeout

    def seal(self, plaintext: bytes) -> bytes:
        """Encrypt *plaintext* and return the base64 ciphertext text."""

        logger.info("Encrypting Vault init keys with %s", self.key_id)
        try:
            response = self._client.encrypt(
                request={
                    "name": self.key_id,
                    "plaintext": plaintext,
                    "plaintext_crc32c": crc32c(plaintext),
                },
                timeout=self._timeout,
            )
        except (GoogleAPIError, GoogleAuthError) as exc:
            msg = f"KMS encrypt with {self.key_id} failed: {exc}"
            raise EnvelopeCryptoError(msg) from exc
        if not response.verified_plaintext_crc32c:
            raise EnvelopeCryptoError("KMS did not verify the plaintext checksum")
        if response.ciphertext_crc32c != crc32c(response.ciphertext):
            raise EnvelopeCryptoError("Ciphertext was corrupted in transit from KMS")
        return base64.b64encode(response.ciphertext)

    def open(self, ciphertext: bytes) -> bytes:
        """Decrypt stored base64 ciphertext and return the original bytes."""

        try:
            raw = base64.b64decode(ciphertext, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise EnvelopeCryptoError(f"Stored ciphertext is not base64: {exc}") from exc
        logger.info("Decrypting Vault init keys with %s", self.key_id)
        try:
            response = self._client.decrypt(
                request={
                    "name": self.key_id,
                    "ciphertext": raw,
                    "ciphertext_crc32c": crc32c(raw),
                },
                timeout=self._timeout,
            )
        except (GoogleAPIError, GoogleAuthError) as exc:
            msg = f"KMS decrypt with {self.key_id} failed: {exc}"
            raise EnvelopeCryptoError(msg) from exc
        if response.plaintext_crc32c != crc32c(response.plaintext):
            raise EnvelopeCryptoError("Plaintext was corrupted in transit from KMS")
        return response.plaintext


__all__ = ["EnvelopeCrypto", "crc32c"]
