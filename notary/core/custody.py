from __future__ import annotations

import os
import re

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from notary.core.errors import AuthenticationFailure, ConfigurationError

NONCE_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32
_HEX_KEY_RE = re.compile(r"^[0-9a-fA-F]{64}$")


class KeyCustodian:
    """Encrypts mnemonics at rest as ``<nonceHex>:<tagHex>:<ciphertextHex>`` using AES-256-GCM."""

    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_LENGTH:
            raise ConfigurationError("mnemonic secret key must be exactly 32 bytes")
        self._aead = AESGCM(key)

    @classmethod
    def from_secret(cls, secret: str | None) -> KeyCustodian:
        """Accept either 64 hex characters or 32 raw bytes."""
        if not secret:
            raise ConfigurationError("NOTARY_MNEMONIC_SECRET_KEY is required")
        if _HEX_KEY_RE.match(secret):
            return cls(bytes.fromhex(secret))
        raw = secret.encode("utf-8")
        if len(raw) == KEY_LENGTH:
            return cls(raw)
        raise ConfigurationError(
            "NOTARY_MNEMONIC_SECRET_KEY must be either 32 bytes (raw) or 64 hex characters (hex-encoded)"
        )

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(NONCE_LENGTH)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return f"{nonce.hex()}:{tag.hex()}:{ciphertext.hex()}"

    def decrypt(self, token: str) -> str:
        nonce_hex, separator, remainder = token.partition(":")
        tag_hex, separator_2, ciphertext_hex = remainder.partition(":")
        if not separator or not separator_2:
            raise AuthenticationFailure("malformed encrypted token")
        try:
            nonce = bytes.fromhex(nonce_hex)
            tag = bytes.fromhex(tag_hex)
            ciphertext = bytes.fromhex(ciphertext_hex)
        except ValueError as exc:
            raise AuthenticationFailure("malformed encrypted token") from exc
        if len(nonce) != NONCE_LENGTH or len(tag) != TAG_LENGTH:
            raise AuthenticationFailure("malformed encrypted token")

        try:
            plaintext = self._aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as exc:
            raise AuthenticationFailure("encrypted token failed authentication") from exc
        return plaintext.decode("utf-8")
