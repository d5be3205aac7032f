"""
At-rest encryption for stored conversation messages.

AES-256-GCM with a scrypt-derived key. Ciphertexts are hex strings with the
16-byte authentication tag appended; the IV travels separately as hex.
"""

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from .errors import ConfigError, DecryptionError

logger = logging.getLogger(__name__)

KEY_LENGTH = 32
IV_LENGTH = 16
TAG_LENGTH = 16
MIN_SECRET_LENGTH = 32
DEFAULT_ASSOCIATED_DATA = b"chat-message"

# scrypt cost parameters
SCRYPT_N = 2**14
SCRYPT_R = 8
SCRYPT_P = 1


@dataclass(frozen=True)
class EncryptedMessage:
    ciphertext: str  # hex, tag appended
    iv: str  # hex


def derive_key(secret: str, salt: str) -> bytes:
    kdf = Scrypt(salt=salt.encode("utf-8"), length=KEY_LENGTH, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P)
    return kdf.derive(secret.encode("utf-8"))


def validate_encryption_config(env: Optional[Mapping[str, str]] = None) -> bool:
    """True when ENCRYPTION_KEY and ENCRYPTION_SALT are set and long enough."""
    env = os.environ if env is None else env
    key = env.get("ENCRYPTION_KEY") or ""
    salt = env.get("ENCRYPTION_SALT") or ""
    if not key or not salt:
        return False
    if len(key) < MIN_SECRET_LENGTH or len(salt) < MIN_SECRET_LENGTH:
        logger.warning("Encryption secrets should be at least %d characters long", MIN_SECRET_LENGTH)
        return False
    return True


class MessageCipher:
    """Encrypts and decrypts message bodies with a fixed derived key."""

    def __init__(self, key: bytes, associated_data: bytes = DEFAULT_ASSOCIATED_DATA):
        if len(key) != KEY_LENGTH:
            raise ConfigError(f"encryption key must be {KEY_LENGTH} bytes")
        self._aead = AESGCM(key)
        self._aad = associated_data

    @classmethod
    def from_secret(cls, secret: str, salt: str, associated_data: bytes = DEFAULT_ASSOCIATED_DATA) -> "MessageCipher":
        return cls(derive_key(secret, salt), associated_data)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "MessageCipher":
        """Build from ENCRYPTION_KEY and ENCRYPTION_SALT.

        Raises:
            ConfigError: If either variable is missing
        """
        env = os.environ if env is None else env
        secret = env.get("ENCRYPTION_KEY")
        salt = env.get("ENCRYPTION_SALT")
        if not secret:
            raise ConfigError("ENCRYPTION_KEY environment variable is required for message encryption")
        if not salt:
            raise ConfigError("ENCRYPTION_SALT environment variable is required for key derivation")
        return cls.from_secret(secret, salt)

    def encrypt(self, plaintext: str) -> EncryptedMessage:
        iv = os.urandom(IV_LENGTH)
        sealed = self._aead.encrypt(iv, plaintext.encode("utf-8"), self._aad)
        return EncryptedMessage(ciphertext=sealed.hex(), iv=iv.hex())

    def decrypt(self, ciphertext: str, iv: str) -> str:
        """Authenticate and decrypt.

        Raises:
            DecryptionError: On a bad tag, wrong key or malformed input
        """
        try:
            sealed = bytes.fromhex(ciphertext)
            nonce = bytes.fromhex(iv)
        except ValueError as e:
            raise DecryptionError("Ciphertext or IV is not valid hex") from e
        if len(sealed) < TAG_LENGTH:
            raise DecryptionError("Ciphertext is shorter than the authentication tag")
        try:
            plaintext = self._aead.decrypt(nonce, sealed, self._aad)
        except (InvalidTag, ValueError) as e:
            raise DecryptionError("Failed to decrypt message content") from e
        return plaintext.decode("utf-8")
