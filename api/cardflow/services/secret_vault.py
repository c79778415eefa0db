"""Fernet encryption for webhook signing secrets stored at rest."""

from __future__ import annotations

import base64
import hashlib
import logging
from typing import Any

from cryptography.fernet import Fernet, InvalidToken

from cardflow.core.config import settings
from cardflow.utils.datetime import utcnow

logger = logging.getLogger("cardflow.services.secret_vault")

SECRET_PREFIX_LENGTH = 12


def _derive_key(raw_key: str) -> bytes:
    """Derive a Fernet key from a raw secret."""
    digest = hashlib.sha256(raw_key.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest)


def mask_secret(secret: str) -> str:
    """Return the displayable prefix of a secret."""
    return secret[:SECRET_PREFIX_LENGTH]


class SecretVault:
    """Encrypt webhook secrets so raw values never sit in the database."""

    def __init__(self, key_material: str | None = None) -> None:
        """Initialize the vault with a stable encryption key."""
        key_material = key_material or settings.secret_vault_key or settings.jwt_secret_key
        self._fernet = Fernet(_derive_key(key_material))

    def encrypt(self, secret: str) -> str:
        """Encrypt a secret for storage."""
        return self._fernet.encrypt(secret.encode("utf-8")).decode("utf-8")

    def decrypt(self, token: str) -> str | None:
        """Decrypt a stored secret, returning None when the key no longer matches."""
        try:
            return self._fernet.decrypt(token.encode("utf-8")).decode("utf-8")
        except InvalidToken:
            logger.error("Stored webhook secret could not be decrypted; was the vault key rotated?")
            return None

    def health(self) -> dict[str, Any]:
        """Return a simple encryption/decryption health check payload."""
        probe = f"probe:{utcnow().isoformat()}"
        healthy = self.decrypt(self.encrypt(probe)) == probe
        return {
            "status": "online" if healthy else "degraded",
            "dedicated_key": bool(settings.secret_vault_key),
        }


secret_vault = SecretVault()
