"""Credential vault backed by AES-256-GCM envelopes."""

from __future__ import annotations

import binascii
import json
import os
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from portfolio_hub.config import get_settings
from portfolio_hub.core.errors import IntegrityError, ValidationError

NONCE_BYTES = 12
TAG_BYTES = 16
KEY_HEX_LENGTH = 64


class CredentialVault:
    """Encrypt and decrypt provider credentials at rest.

    Envelopes are JSON documents of the form ``{"iv": hex, "data": hex, "tag": hex}``.
    A fresh random nonce is drawn for every call to :meth:`encrypt`.
    """

    def __init__(self, key_hex: str | None = None) -> None:
        key_hex = key_hex if key_hex is not None else get_settings().credential_encryption_key
        if not key_hex or len(key_hex) != KEY_HEX_LENGTH:
            raise ValidationError("Credential encryption key must be 64 hex characters")
        try:
            key = bytes.fromhex(key_hex)
        except ValueError as exc:
            raise ValidationError("Credential encryption key must be 64 hex characters") from exc
        self._cipher = AESGCM(key)

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(NONCE_BYTES)
        sealed = self._cipher.encrypt(nonce, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
        return json.dumps({"iv": nonce.hex(), "data": ciphertext.hex(), "tag": tag.hex()})

    def decrypt(self, envelope: str) -> str:
        try:
            payload = json.loads(envelope)
            nonce = bytes.fromhex(payload["iv"])
            ciphertext = bytes.fromhex(payload["data"])
            tag = bytes.fromhex(payload["tag"])
        except (TypeError, ValueError, KeyError, binascii.Error) as exc:
            raise IntegrityError("Credential envelope is malformed") from exc
        if len(nonce) != NONCE_BYTES or len(tag) != TAG_BYTES:
            raise IntegrityError("Credential envelope is malformed")
        try:
            plaintext = self._cipher.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as exc:
            raise IntegrityError("Credential envelope failed authentication") from exc
        return plaintext.decode("utf-8")

    def encrypt_json(self, data: dict[str, Any]) -> str:
        return self.encrypt(json.dumps(data, separators=(",", ":")))

    def decrypt_json(self, envelope: str) -> dict[str, Any]:
        document = json.loads(self.decrypt(envelope))
        if not isinstance(document, dict):
            raise IntegrityError("Credential envelope does not contain an object")
        return document


__all__ = ["CredentialVault", "NONCE_BYTES", "TAG_BYTES"]
