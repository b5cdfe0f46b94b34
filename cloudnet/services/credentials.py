"""
Credential decryption.

Stored credentials hold a Fernet token whose plaintext is a JSON object of
provider secrets (``access_key``/``secret_key`` for AWS, the service-account
JSON plus ``project_id`` for GCP, a service principal plus
``subscription_id`` for Azure).  The decrypted map lives only for one call.
"""

import json
import logging
from abc import ABC, abstractmethod

from cryptography.fernet import Fernet, InvalidToken

from cloudnet.errors import InternalError

logger = logging.getLogger(__name__)


class CredentialDecryptor(ABC):
    @abstractmethod
    def decrypt(self, encrypted_data: str) -> dict:
        """Return the plaintext secrets map for *encrypted_data*."""


class FernetCredentialDecryptor(CredentialDecryptor):
    def __init__(self, key: str) -> None:
        self._fernet = Fernet(key.encode()) if key else None

    def _require_fernet(self) -> Fernet:
        if self._fernet is None:
            raise InternalError("Credential encryption key is not configured")
        return self._fernet

    def encrypt(self, secrets: dict) -> str:
        return self._require_fernet().encrypt(json.dumps(secrets).encode()).decode()

    def decrypt(self, encrypted_data: str) -> dict:
        fernet = self._require_fernet()
        try:
            plaintext = fernet.decrypt(encrypted_data.encode())
        except InvalidToken as exc:
            logger.error("Credential decryption failed: invalid token")
            raise InternalError("Failed to decrypt credential") from exc
        try:
            secrets = json.loads(plaintext)
        except ValueError as exc:
            raise InternalError("Decrypted credential is not valid JSON") from exc
        if not isinstance(secrets, dict):
            raise InternalError("Decrypted credential must be a JSON object")
        return secrets
