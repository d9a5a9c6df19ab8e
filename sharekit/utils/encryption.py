"""Envelope encryption for credential records (AES-256-GCM)"""
import base64
import logging
import os
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from sharekit.core.exceptions import EncryptionError, InvalidKeyError

logger = logging.getLogger(__name__)

KEY_SIZE = 32  # bytes (AES-256)
NONCE_SIZE = 12  # bytes (96-bit GCM nonce)
TAG_SIZE = 16  # bytes


@dataclass(frozen=True)
class EncryptedEnvelope:
    """Ciphertext plus its nonce and authentication tag, base64 encoded"""
    ciphertext: str
    iv: str
    auth_tag: str


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _unb64(value: str) -> bytes:
    return base64.b64decode(value.encode("ascii"), validate=True)


def generate_key() -> bytes:
    """Generate a new random 32-byte key"""
    return AESGCM.generate_key(bit_length=256)


def key_from_hex(hex_key: str) -> bytes:
    """Decode a hex encoded key (as found in ENCRYPTION_KEY)

    Raises:
        InvalidKeyError: If the value is not hex or does not decode to 32 bytes
    """
    try:
        key = bytes.fromhex(hex_key or "")
    except ValueError as e:
        raise InvalidKeyError(f"Encryption key is not valid hex: {e}")
    if len(key) != KEY_SIZE:
        raise InvalidKeyError(f"Encryption key must be {KEY_SIZE} bytes, got {len(key)}")
    return key


class EnvelopeCipher:
    """Encrypts and decrypts strings into EncryptedEnvelope values

    A fresh random nonce is drawn for every encrypt call, so encrypting the
    same plaintext twice never yields the same envelope.
    """

    def __init__(self, key: bytes):
        if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_SIZE:
            length = len(key) if isinstance(key, (bytes, bytearray)) else type(key).__name__
            raise InvalidKeyError(f"Encryption key must be exactly {KEY_SIZE} bytes, got {length}")
        self._aead = AESGCM(bytes(key))

    def encrypt(self, plaintext: str) -> EncryptedEnvelope:
        """Encrypt a string"""
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        # AESGCM appends the tag to the ciphertext
        return EncryptedEnvelope(
            ciphertext=_b64(sealed[:-TAG_SIZE]),
            iv=_b64(nonce),
            auth_tag=_b64(sealed[-TAG_SIZE:]),
        )

    def decrypt(self, envelope: EncryptedEnvelope) -> str:
        """Decrypt an envelope

        Raises:
            EncryptionError: If the envelope is malformed, tampered with, or
                was sealed under a different key
        """
        try:
            nonce = _unb64(envelope.iv)
            sealed = _unb64(envelope.ciphertext) + _unb64(envelope.auth_tag)
            if len(nonce) != NONCE_SIZE:
                raise ValueError(f"nonce must be {NONCE_SIZE} bytes")
            return self._aead.decrypt(nonce, sealed, None).decode("utf-8")
        except (InvalidTag, ValueError, TypeError, AttributeError) as e:
            logger.error(f"Decryption failed: {type(e).__name__}: {str(e)}")
            raise EncryptionError(f"Decryption failed: {type(e).__name__}: {str(e)}")
