"""Credential vault: at-rest encryption for panel API keys.

AES-256-CBC with PKCS7 padding and a fresh random IV per encryption. The
key is derived once with scrypt (fixed work factor, fixed salt) from the
process-wide passphrase. Records are stored as ``<iv hex>:<ciphertext hex>``;
the IV is not secret.
"""

import os
import logging
from typing import Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from ..errors import CorruptCredential

logger = logging.getLogger(__name__)

KDF_SALT = b"panel-link-credential-vault-v1"
KDF_N = 2 ** 14
KDF_R = 8
KDF_P = 1
KEY_LENGTH = 32
IV_LENGTH = 16
BLOCK_BITS = 128


def derive_key(passphrase: str) -> bytes:
    """Derive the 32-byte AES key from a passphrase."""
    if not passphrase:
        raise ValueError("passphrase cannot be empty")
    kdf = Scrypt(salt=KDF_SALT, length=KEY_LENGTH, n=KDF_N, r=KDF_R, p=KDF_P)
    return kdf.derive(passphrase.encode("utf-8"))


class CredentialVault:
    """Encrypts and decrypts credential strings."""

    def __init__(self, passphrase: str):
        self._key = derive_key(passphrase)

    @classmethod
    def from_config(cls, cfg=None) -> "CredentialVault":
        """Build a vault from configuration.

        Raises:
            RuntimeError: Outside development when no passphrase is configured
        """
        if cfg is None:
            from ..config import config as cfg
        if not cfg.ENCRYPTION_KEY and cfg.is_development():
            logger.warning(
                "No PANEL_LINK_ENCRYPTION_KEY configured; using the insecure development key"
            )
        return cls(cfg.resolve_encryption_passphrase())

    def encrypt(self, plaintext: str) -> str:
        """Encrypt ``plaintext`` into an ``iv:ciphertext`` record."""
        if plaintext is None:
            raise ValueError("plaintext cannot be None")
        iv = os.urandom(IV_LENGTH)
        padder = padding.PKCS7(BLOCK_BITS).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        return f"{iv.hex()}:{ciphertext.hex()}"

    def decrypt(self, record: Optional[str]) -> str:
        """Decrypt an ``iv:ciphertext`` record.

        Raises:
            CorruptCredential: If the record is malformed, truncated or was
                encrypted under a different key
        """
        if not record or ":" not in record:
            raise CorruptCredential("Stored credential is malformed. Please enter your API key again.")

        iv_hex, _, body_hex = record.partition(":")
        try:
            iv = bytes.fromhex(iv_hex)
            ciphertext = bytes.fromhex(body_hex)
        except ValueError as e:
            raise CorruptCredential(
                "Stored credential is malformed. Please enter your API key again."
            ) from e

        if len(iv) != IV_LENGTH:
            raise CorruptCredential("Stored credential has an invalid IV. Please enter your API key again.")
        if not ciphertext or len(ciphertext) % (BLOCK_BITS // 8):
            raise CorruptCredential("Stored credential is truncated. Please enter your API key again.")

        try:
            decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()
            unpadder = padding.PKCS7(BLOCK_BITS).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()
            return plaintext.decode("utf-8")
        except (ValueError, UnicodeDecodeError) as e:
            raise CorruptCredential(
                "Stored credential could not be decrypted. Please enter your API key again."
            ) from e
