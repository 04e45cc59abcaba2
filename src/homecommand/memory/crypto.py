"""Per-user envelope encryption for stored conversation text.

One 32-byte master secret (``CONVERSATION_ENCRYPTION_KEY``, 64 hex chars)
yields an independent AES-256 key per identity subject via HKDF-SHA256, with
the subject as salt. Each value is sealed with AES-256-GCM under a fresh
16-byte IV and stored as::

    <iv hex>:<auth tag hex>:<ciphertext hex>

Verification failures never return partial plaintext and carry no detail
about why they failed.
"""

from __future__ import annotations

import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from homecommand.config import ConfigurationError

logger = logging.getLogger(__name__)

KEY_LENGTH = 32
IV_LENGTH = 16
AUTH_TAG_LENGTH = 16
SEPARATOR = ":"
HKDF_INFO = b"homecommand-conversations"
KEY_SETTING = "CONVERSATION_ENCRYPTION_KEY"


class ConversationCryptoError(Exception):
    """Base class for envelope failures. Callers treat all subclasses alike."""


class EnvelopeFormatError(ConversationCryptoError):
    """The stored value is not a well-formed ``iv:tag:ciphertext`` envelope."""


class EnvelopeAuthenticationError(ConversationCryptoError):
    """The authentication tag did not verify."""


class ConversationCrypto:
    """Stateless encrypt/decrypt of conversation text, keyed per user.

    Args:
        master_key: Exactly 32 bytes of secret key material.

    Raises:
        ConfigurationError: If *master_key* is not 32 bytes long.
    """

    def __init__(self, master_key: bytes) -> None:
        if len(master_key) != KEY_LENGTH:
            raise ConfigurationError(
                f"{KEY_SETTING} must be a 64-char hex string (32 bytes)"
            )
        self._master_key = master_key

    def __repr__(self) -> str:
        return f"{type(self).__name__}(master_key=<redacted>)"

    @classmethod
    def from_hex(cls, key_hex: str | None) -> "ConversationCrypto":
        """Build from the 64-character hex form used in configuration.

        Raises:
            ConfigurationError: If *key_hex* is missing, the wrong length, or
                not hexadecimal.
        """
        if not key_hex or len(key_hex) != KEY_LENGTH * 2:
            raise ConfigurationError(
                f"{KEY_SETTING} must be a 64-char hex string (32 bytes)"
            )
        try:
            return cls(bytes.fromhex(key_hex))
        except ValueError as exc:
            raise ConfigurationError(
                f"{KEY_SETTING} must be a 64-char hex string (32 bytes)"
            ) from exc

    def derive_user_key(self, owner_sub: str) -> bytes:
        """Derive the 32-byte key for *owner_sub*.

        Deterministic for a given master key and subject.
        """
        hkdf = HKDF(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=owner_sub.encode("utf-8"),
            info=HKDF_INFO,
        )
        return hkdf.derive(self._master_key)

    def encrypt(self, plaintext: str, owner_sub: str) -> str:
        """Seal *plaintext* for *owner_sub* and return the envelope string."""
        iv = os.urandom(IV_LENGTH)
        sealed = AESGCM(self.derive_user_key(owner_sub)).encrypt(
            iv, plaintext.encode("utf-8"), None
        )
        ciphertext, tag = sealed[:-AUTH_TAG_LENGTH], sealed[-AUTH_TAG_LENGTH:]
        return SEPARATOR.join((iv.hex(), tag.hex(), ciphertext.hex()))

    def decrypt(self, envelope: str, owner_sub: str) -> str:
        """Open an envelope produced by :meth:`encrypt` for the same subject.

        Raises:
            EnvelopeFormatError: If the value does not split into three hex
                fields of the expected sizes.
            EnvelopeAuthenticationError: If the tag does not verify (wrong
                subject, wrong master key, or tampering).
        """
        parts = envelope.split(SEPARATOR)
        if len(parts) != 3:
            logger.error("Invalid encrypted value format")
            raise EnvelopeFormatError("Invalid encrypted value format")

        iv_hex, tag_hex, ciphertext_hex = parts
        try:
            iv = bytes.fromhex(iv_hex)
            tag = bytes.fromhex(tag_hex)
            ciphertext = bytes.fromhex(ciphertext_hex)
        except ValueError as exc:
            logger.error("Invalid encrypted value format")
            raise EnvelopeFormatError("Invalid encrypted value format") from exc
        if len(iv) != IV_LENGTH or len(tag) != AUTH_TAG_LENGTH:
            logger.error("Invalid encrypted value format")
            raise EnvelopeFormatError("Invalid encrypted value format")

        try:
            plaintext = AESGCM(self.derive_user_key(owner_sub)).decrypt(
                iv, ciphertext + tag, None
            )
        except InvalidTag:
            raise EnvelopeAuthenticationError("Unable to decrypt value") from None
        return plaintext.decode("utf-8")
