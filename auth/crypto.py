"""
auth/crypto.py -- Reversible field-level encryption for sensitive attributes.

CryptoBox encrypts short strings (SSN, phone number) before they reach the
database and decrypts them for authorized display.

Algorithm:
  key = SHA-256(MASTER_ENCRYPTION_KEY)          32 bytes, AES-256
  iv  = key[:16]                                fixed per installation
  AES-CBC, PKCS#7 padding, base64 text output

Known limitation (deterministic mode, the default):
  The IV is derived from the key, so the same plaintext always produces the
  same ciphertext. Anyone who can read the table can tell which subjects
  share an SSN, and equality searches on ciphertext work. Existing data
  depends on this format, so it stays the default.

  ENCRYPTION_RANDOM_IV=true switches to a fresh random IV per call,
  prepended to the ciphertext before base64 encoding. The two formats are
  not interchangeable: a box in one mode cannot read the other's output.

Failure handling:
  encrypt() only fails on programming errors. decrypt() raises
  DecryptionError for malformed base64, a ciphertext whose length is not a
  multiple of the AES block, bad padding (wrong key or tampered data) and
  non-UTF-8 plaintext. It never lets a low-level exception escape.

Layer rule: imports core/ only.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import os

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from core.config import Settings
from core.errors import ConfigurationError, DecryptionError

_BLOCK_BYTES = 16


class CryptoBox:
    """AES-256-CBC encryption keyed by a single master secret.

    Usage:
        box = CryptoBox.from_settings(get_settings())
        stored = box.encrypt("123-45-6789")
        box.decrypt(stored)   # "123-45-6789"
    """

    def __init__(self, master_key: str, random_iv: bool = False) -> None:
        if not master_key:
            raise ConfigurationError("MASTER_ENCRYPTION_KEY is required for field encryption.")
        self._key = hashlib.sha256(master_key.encode("utf-8")).digest()
        self._fixed_iv = self._key[:_BLOCK_BYTES]
        self.random_iv = random_iv

    @classmethod
    def from_settings(cls, settings: Settings) -> CryptoBox:
        return cls(settings.master_encryption_key, random_iv=settings.encryption_random_iv)

    def encrypt(self, plaintext: str | None) -> str:
        """Encrypt plaintext and return base64 text. None or "" returns ""."""
        if not plaintext:
            return ""
        iv = os.urandom(_BLOCK_BYTES) if self.random_iv else self._fixed_iv

        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()

        if self.random_iv:
            ciphertext = iv + ciphertext
        return base64.b64encode(ciphertext).decode("ascii")

    def decrypt(self, ciphertext: str | None) -> str:
        """Decrypt base64 text produced by encrypt(). None or "" returns ""."""
        if not ciphertext:
            return ""
        try:
            raw = base64.b64decode(ciphertext, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise DecryptionError("Ciphertext is not valid base64.") from exc

        if self.random_iv:
            if len(raw) < 2 * _BLOCK_BYTES:
                raise DecryptionError("Ciphertext is too short.")
            iv, raw = raw[:_BLOCK_BYTES], raw[_BLOCK_BYTES:]
        else:
            iv = self._fixed_iv

        if not raw or len(raw) % _BLOCK_BYTES:
            raise DecryptionError("Ciphertext length is not a multiple of the AES block size.")

        decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(raw) + decryptor.finalize()

        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        try:
            data = unpadder.update(padded) + unpadder.finalize()
        except ValueError as exc:
            # Wrong key or tampered ciphertext almost always lands here.
            raise DecryptionError("Ciphertext padding is invalid.") from exc

        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecryptionError("Decrypted data is not valid UTF-8.") from exc
