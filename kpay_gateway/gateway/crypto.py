"""AES and SHA-256 primitives matching the KNET gateway construction.

The gateway uses AES-128-CBC with the resource key doubling as the IV, and a
manual PKCS#5 pad (the cipher itself runs without padding). Ciphertext travels
as lowercase hex.
"""

import binascii
import hashlib
import hmac
import string
from typing import Union
from urllib.parse import parse_qs, quote

from Crypto.Cipher import AES

from kpay_gateway.exceptions import CryptoError

BLOCK_SIZE = 16
KEY_SIZE = 16

_HEX_DIGITS = frozenset(string.hexdigits)

KeyLike = Union[str, bytes]


def _key_bytes(key: KeyLike) -> bytes:
    raw = key.encode("utf-8") if isinstance(key, str) else bytes(key)
    if len(raw) != KEY_SIZE:
        raise CryptoError(f"Resource key must be exactly {KEY_SIZE} bytes, got {len(raw)}")
    return raw


def pkcs5_pad(data: bytes, block_size: int = BLOCK_SIZE) -> bytes:
    pad = block_size - (len(data) % block_size)
    return data + bytes([pad]) * pad


def pkcs5_unpad(data: bytes) -> bytes:
    """Strips PKCS#5 padding, refusing anything that is not a well-formed pad."""
    if not data:
        raise CryptoError("Cannot unpad empty buffer")
    pad = data[-1]
    if pad == 0 or pad > len(data):
        raise CryptoError(f"Invalid padding length {pad} for buffer of {len(data)} bytes")
    if data[-pad:] != bytes([pad]) * pad:
        raise CryptoError("Invalid padding bytes")
    return data[:-pad]


def hex_to_bytes(hex_string: str) -> bytes:
    try:
        return binascii.unhexlify(hex_string.strip())
    except (binascii.Error, ValueError) as e:
        raise CryptoError(f"Invalid hex string: {e}") from e


def bytes_to_hex(data: bytes) -> str:
    return binascii.hexlify(data).decode("ascii")


def encrypt(plaintext: str, key: KeyLike) -> str:
    """Encrypts ``plaintext`` into the URL-safe hex form the gateway accepts as ``trandata``."""
    raw_key = _key_bytes(key)
    cipher = AES.new(raw_key, AES.MODE_CBC, iv=raw_key)
    ciphertext = cipher.encrypt(pkcs5_pad(plaintext.encode("utf-8")))
    return quote(bytes_to_hex(ciphertext), safe="")


def _extract_ciphertext(data: Union[str, bytes]) -> bytes:
    if isinstance(data, bytes):
        try:
            text = data.decode("ascii")
        except UnicodeDecodeError:
            # Not hex text, so these are the cipher bytes themselves.
            return data
    else:
        text = data
    text = text.strip()

    # Some gateway versions post the blob as a form field.
    if "=" in text:
        trandata = parse_qs(text, keep_blank_values=True).get("trandata")
        if trandata:
            text = trandata[0].strip()

    if text and all(ch in _HEX_DIGITS for ch in text):
        return hex_to_bytes(text)
    if isinstance(data, bytes):
        return data
    raise CryptoError("Ciphertext is neither hex nor raw bytes")


def decrypt(data: Union[str, bytes], key: KeyLike) -> str:
    """Decrypts a hex (or raw) ciphertext produced by the gateway and strips its padding."""
    raw_key = _key_bytes(key)
    ciphertext = _extract_ciphertext(data)
    if not ciphertext or len(ciphertext) % BLOCK_SIZE != 0:
        raise CryptoError(f"Ciphertext length {len(ciphertext)} is not a positive multiple of {BLOCK_SIZE}")
    cipher = AES.new(raw_key, AES.MODE_CBC, iv=raw_key)
    plaintext = pkcs5_unpad(cipher.decrypt(ciphertext))
    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise CryptoError(f"Decrypted payload is not valid UTF-8: {e}") from e


def sign(message: str) -> str:
    """SHA-256 of the signing string as uppercase hex."""
    return hashlib.sha256(message.encode("utf-8")).hexdigest().upper()


def verify(received_digest: str | None, expected_digest: str) -> bool:
    """Timing-safe comparison of two hex digests, ignoring case."""
    if not received_digest:
        return False
    received = received_digest.strip().upper().encode("utf-8")
    expected = expected_digest.strip().upper().encode("utf-8")
    return hmac.compare_digest(received, expected)
