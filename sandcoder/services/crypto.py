"""Passphrase-based at-rest encryption for conversation files."""

import base64
import os

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from sandcoder.errors import DecryptionError

MAGIC = b"SCENC1"
SALT_SIZE = 16


class PassphraseCipher:
    """Fernet encryption keyed by PBKDF2-HMAC-SHA256 over a passphrase.

    File format: ``MAGIC + salt + fernet_token``. A fresh salt is drawn for
    every encryption, so the same plaintext never encrypts to the same bytes.
    """

    def __init__(self, passphrase: str, iterations: int = 100_000):
        if not passphrase:
            raise ValueError("A non-empty passphrase is required for encryption")
        self._passphrase = passphrase.encode("utf-8")
        self.iterations = iterations

    def _fernet(self, salt: bytes) -> Fernet:
        kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=32, salt=salt, iterations=self.iterations)
        return Fernet(base64.urlsafe_b64encode(kdf.derive(self._passphrase)))

    def encrypt(self, plaintext: bytes) -> bytes:
        salt = os.urandom(SALT_SIZE)
        return MAGIC + salt + self._fernet(salt).encrypt(plaintext)

    def decrypt(self, data: bytes) -> bytes:
        """Decrypt bytes produced by ``encrypt``.

        Raises:
            DecryptionError: wrong passphrase, unknown format or damaged data
        """
        if not data.startswith(MAGIC) or len(data) <= len(MAGIC) + SALT_SIZE:
            raise DecryptionError("Data is not in the encrypted conversation format")
        salt = data[len(MAGIC) : len(MAGIC) + SALT_SIZE]
        token = data[len(MAGIC) + SALT_SIZE :]
        try:
            return self._fernet(salt).decrypt(token)
        except InvalidToken as e:
            raise DecryptionError("Decryption failed: wrong passphrase or corrupted data") from e
