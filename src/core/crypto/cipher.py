"""
Authenticated encryption for credentials stored at rest.

Blobs are three lowercase hex segments joined by ``:``::

    <nonce>:<tag>:<ciphertext>

The nonce is 12 random bytes per call and the tag is the 16 byte GCM tag.
Decryption is fail-closed: anything that does not parse or verify raises
CipherIntegrityException, it is never treated as a missing value.
"""

import base64
import binascii
import os
import re

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from src.core.errors.exceptions import CipherIntegrityException, ConfigurationException

KEY_LENGTH = 32
NONCE_LENGTH = 12
TAG_LENGTH = 16
SEGMENT_SEPARATOR = ":"

_HEX_SEGMENT = re.compile(r"(?:[0-9a-f]{2})*")


def load_encryption_key(encoded_key: str) -> bytes:
    """Decode a base64 AES-256 key; anything other than 32 bytes is a configuration error."""
    try:
        key = base64.b64decode(encoded_key, validate=True)
    except (binascii.Error, ValueError):
        raise ConfigurationException("Encryption key is not valid base64")
    if len(key) != KEY_LENGTH:
        raise ConfigurationException(
            "Encryption key has wrong length",
            additional_info={"expected_bytes": KEY_LENGTH, "actual_bytes": len(key)},
        )
    return key


def _aead(key: bytes) -> AESGCM:
    if len(key) != KEY_LENGTH:
        raise ConfigurationException("Encryption key has wrong length")
    return AESGCM(key)


def encrypt(plaintext: bytes, key: bytes) -> str:
    nonce = os.urandom(NONCE_LENGTH)
    sealed = _aead(key).encrypt(nonce, plaintext, None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return SEGMENT_SEPARATOR.join((nonce.hex(), tag.hex(), ciphertext.hex()))


def decrypt(blob: str, key: bytes) -> bytes:
    aead = _aead(key)

    segments = blob.split(SEGMENT_SEPARATOR)
    if len(segments) != 3:
        raise CipherIntegrityException(
            "Malformed ciphertext blob",
            additional_info={"segments": len(segments)},
        )
    if not all(_HEX_SEGMENT.fullmatch(segment) for segment in segments):
        raise CipherIntegrityException("Malformed ciphertext blob")

    nonce, tag, ciphertext = (bytes.fromhex(segment) for segment in segments)
    if len(nonce) != NONCE_LENGTH or len(tag) != TAG_LENGTH:
        raise CipherIntegrityException("Malformed ciphertext blob")

    try:
        return aead.decrypt(nonce, ciphertext + tag, None)
    except InvalidTag:
        raise CipherIntegrityException("Ciphertext failed authentication")


def encrypt_token(token: str, key: bytes) -> str:
    return encrypt(token.encode("utf-8"), key)


def decrypt_token(blob: str, key: bytes) -> str:
    plaintext = decrypt(blob, key)
    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError:
        raise CipherIntegrityException("Decrypted credential is not valid UTF-8")
