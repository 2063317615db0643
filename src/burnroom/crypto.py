"""Message encryption for burnroom.

Includes:
- AES-256-GCM codec (default) for encrypting message bodies at rest
- NaCl SecretBox (XSalsa20-Poly1305) codec as an alternative cipher
- HKDF key derivation from the process-wide secret

Ciphertexts are base64url strings so they can be stored in a JSON room record
and delivered to live subscribers unchanged.
"""

import base64
import binascii
import os
import secrets
from abc import ABC, abstractmethod

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from nacl.exceptions import CryptoError
from nacl.secret import SecretBox

from .errors import DecryptionError

AESGCM_NONCE_SIZE = 12
SECRETBOX_NONCE_SIZE = SecretBox.NONCE_SIZE

CIPHERS = ("aesgcm", "secretbox")


def generate_secret_key() -> str:
    """Generate a random URL-safe secret suitable for BURNROOM_SECRET_KEY."""
    return secrets.token_urlsafe(32)


def bytes_to_base64url(data: bytes) -> str:
    """Encode bytes to base64url (URL-safe, no padding)."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def base64url_to_bytes(s: str) -> bytes:
    """Decode base64url string to bytes (handles missing padding)."""
    padding = 4 - (len(s) % 4)
    if padding != 4:
        s += "=" * padding
    return base64.urlsafe_b64decode(s)


def derive_key(secret: str, cipher: str) -> bytes:
    """
    Derive a 32-byte message key from the configured secret using HKDF.

    The cipher name is bound into the info string so switching ciphers never
    reuses the same key material for two algorithms.
    """
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=None,
        info=f"burnroom-message-key:{cipher}".encode("utf-8"),
    )
    return hkdf.derive(secret.encode("utf-8"))


def _decode_payload(ciphertext: str, nonce_size: int) -> tuple[bytes, bytes]:
    """Split a base64url payload into (nonce, sealed bytes)."""
    try:
        raw = base64url_to_bytes(ciphertext)
    except (binascii.Error, ValueError) as e:
        raise DecryptionError("Ciphertext is not valid base64") from e

    # Both AEADs append a 16-byte tag, so anything shorter is truncated
    if len(raw) < nonce_size + 16:
        raise DecryptionError("Ciphertext is truncated")

    return raw[:nonce_size], raw[nonce_size:]


class Codec(ABC):
    """Symmetric message codec keyed by a process-wide secret.

    Implementations hold no mutable state beyond the key set at construction,
    so a single instance can be shared across concurrent coroutines.
    """

    name: str = ""

    @abstractmethod
    def encrypt(self, plaintext: str) -> str:
        """Encrypt plaintext, returning a base64url ciphertext."""

    @abstractmethod
    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a ciphertext produced by encrypt().

        Raises:
            DecryptionError: If the payload is malformed, tampered, or was
                produced with a different key.
        """


class AESGCMCodec(Codec):
    """AES-256-GCM codec.

    Payload layout: nonce (12 bytes) + ciphertext + tag (16 bytes).
    """

    name = "aesgcm"

    def __init__(self, secret: str):
        self._aesgcm = AESGCM(derive_key(secret, self.name))

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(AESGCM_NONCE_SIZE)
        sealed = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
        return bytes_to_base64url(nonce + sealed)

    def decrypt(self, ciphertext: str) -> str:
        nonce, sealed = _decode_payload(ciphertext, AESGCM_NONCE_SIZE)
        try:
            plaintext = self._aesgcm.decrypt(nonce, sealed, None)
        except InvalidTag as e:
            raise DecryptionError("Ciphertext failed authentication") from e
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError("Decrypted message is not valid UTF-8") from e


class SecretBoxCodec(Codec):
    """NaCl SecretBox (XSalsa20-Poly1305) codec.

    Payload layout: nonce (24 bytes) + ciphertext + tag (16 bytes).
    """

    name = "secretbox"

    def __init__(self, secret: str):
        self._box = SecretBox(derive_key(secret, self.name))

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(SECRETBOX_NONCE_SIZE)
        sealed = self._box.encrypt(plaintext.encode("utf-8"), nonce)
        return bytes_to_base64url(bytes(sealed))

    def decrypt(self, ciphertext: str) -> str:
        nonce, sealed = _decode_payload(ciphertext, SECRETBOX_NONCE_SIZE)
        try:
            plaintext = self._box.decrypt(sealed, nonce)
        except CryptoError as e:
            raise DecryptionError("Ciphertext failed authentication") from e
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError("Decrypted message is not valid UTF-8") from e


def make_codec(secret: str, cipher: str = "aesgcm") -> Codec:
    """Build the codec for a cipher name ("aesgcm" or "secretbox")."""
    if cipher == AESGCMCodec.name:
        return AESGCMCodec(secret)
    if cipher == SecretBoxCodec.name:
        return SecretBoxCodec(secret)
    raise ValueError(f"Unknown cipher: {cipher!r}. Supported: {', '.join(CIPHERS)}")
