from __future__ import annotations

import hashlib
import hmac
import os
import struct
from dataclasses import dataclass
from typing import Any, Dict, Optional, Type

try:  # pragma: no cover - availability depends on environment
    from argon2.low_level import Type as _ArgonType, hash_secret_raw as _argon_hash  # type: ignore
    _HAS_ARGON2 = True
except ImportError:  # pragma: no cover
    _ArgonType = None  # type: ignore
    _argon_hash = None  # type: ignore
    _HAS_ARGON2 = False

try:  # pragma: no cover - availability depends on environment
    from Cryptodome.Cipher import ChaCha20  # type: ignore
    _HAS_CRYPTODOME = True
except ImportError:  # pragma: no cover
    ChaCha20 = None  # type: ignore
    _HAS_CRYPTODOME = False

from .constants import (
    ARGON_MAX_MEMORY_COST_KIB,
    ARGON_MAX_PARALLELISM,
    ARGON_MAX_TIME_COST,
    ARGON_MEMORY_COST_KIB,
    ARGON_PARALLELISM,
    ARGON_TIME_COST,
)
from .errors import DecryptError, MalformedHeader


_HAS_CRYPTO = bool(_HAS_ARGON2 and _HAS_CRYPTODOME)

NONCE_SIZE = 24
KEY_SIZE = 32
SALT_SIZE = 16
CHECK_SIZE = 16


class StreamTransform:
    """Stateful, length-preserving transform over one file body."""

    def update(self, data: bytes) -> bytes:
        raise NotImplementedError

    def seek(self, position: int) -> None:
        raise NotImplementedError


class ContentCipher:
    """Pluggable cipher applied to stored file bodies.

    Implementations must be length preserving: the data section layout of
    an encrypted archive is identical to an unencrypted one. ``offset`` is
    the entry's data section offset and is unique per stored file, so it
    can feed per-file nonce derivation.
    """

    name = ""

    def encryptor(self, offset: int) -> StreamTransform:
        raise NotImplementedError

    def decryptor(self, offset: int) -> StreamTransform:
        raise NotImplementedError

    def to_header(self) -> Dict[str, Any]:
        raise NotImplementedError

    @classmethod
    def from_header(cls, params: Dict[str, Any], password: str) -> "ContentCipher":
        raise NotImplementedError


_CIPHERS: Dict[str, Type[ContentCipher]] = {}


def register_cipher(cls: Type[ContentCipher]) -> Type[ContentCipher]:
    if not cls.name:
        raise ValueError("Cipher class must define a name")
    _CIPHERS[cls.name] = cls
    return cls


def cipher_from_header(params: Dict[str, Any], password: str) -> ContentCipher:
    """Resolve the cipher described by a header ``encryption`` object."""
    name = params.get("cipher")
    cls = _CIPHERS.get(name) if isinstance(name, str) else None
    if cls is None:
        raise DecryptError(f"Unsupported cipher: {name!r}")
    return cls.from_header(params, password)


@dataclass
class EncryptionParams:
    salt: bytes
    time_cost: int
    memory_cost_kib: int
    parallelism: int


def _derive_key(password: str, params: EncryptionParams) -> bytes:
    if not (_HAS_CRYPTO and _argon_hash is not None and _ArgonType is not None):
        raise RuntimeError("argon2-cffi and PyCryptodomex are required for encryption support")
    return _argon_hash(
        password.encode("utf-8"),
        params.salt,
        time_cost=params.time_cost,
        memory_cost=params.memory_cost_kib,
        parallelism=params.parallelism,
        hash_len=KEY_SIZE,
        type=_ArgonType.ID,
    )


class _ChaChaTransform(StreamTransform):
    def __init__(self, key: bytes, nonce: bytes, encrypt: bool):
        self._cipher = ChaCha20.new(key=key, nonce=nonce)
        self._op = self._cipher.encrypt if encrypt else self._cipher.decrypt

    def update(self, data: bytes) -> bytes:
        return self._op(data)

    def seek(self, position: int) -> None:
        self._cipher.seek(position)


@register_cipher
class XChaCha20Cipher(ContentCipher):
    """XChaCha20 keyed by Argon2id(password, salt).

    The per-file nonce is HMAC-SHA512(key, "ASAR_FILE_NONCE" || u64 offset)
    truncated to 24 bytes.
    """

    name = "xchacha20"
    kdf = "argon2id"

    def __init__(self, key: bytes, params: EncryptionParams):
        if len(key) != KEY_SIZE:
            raise ValueError("Key must be 32 bytes for XChaCha20")
        self.key = key
        self.params = params

    @classmethod
    def create(
        cls,
        password: str,
        *,
        time_cost: int = ARGON_TIME_COST,
        memory_cost_kib: int = ARGON_MEMORY_COST_KIB,
        parallelism: int = ARGON_PARALLELISM,
    ) -> "XChaCha20Cipher":
        params = EncryptionParams(
            salt=os.urandom(SALT_SIZE),
            time_cost=time_cost,
            memory_cost_kib=memory_cost_kib,
            parallelism=parallelism,
        )
        return cls(_derive_key(password, params), params)

    @classmethod
    def from_header(cls, params: Dict[str, Any], password: str) -> "XChaCha20Cipher":
        if params.get("kdf") != cls.kdf:
            raise DecryptError(f"Unsupported KDF: {params.get('kdf')!r}")
        try:
            salt = bytes.fromhex(params["salt"])
            check = bytes.fromhex(params["check"])
            ep = EncryptionParams(
                salt=salt,
                time_cost=params["time_cost"],
                memory_cost_kib=params["memory_cost"],
                parallelism=params["parallelism"],
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise MalformedHeader(f"Invalid encryption parameters: {exc}") from exc
        for value, upper in (
            (ep.time_cost, ARGON_MAX_TIME_COST),
            (ep.memory_cost_kib, ARGON_MAX_MEMORY_COST_KIB),
            (ep.parallelism, ARGON_MAX_PARALLELISM),
        ):
            if not isinstance(value, int) or isinstance(value, bool) or not 1 <= value <= upper:
                raise MalformedHeader("Encryption parameters out of range")
        if len(salt) != SALT_SIZE or len(check) != CHECK_SIZE:
            raise MalformedHeader("Invalid salt or key check length")
        cipher = cls(_derive_key(password, ep), ep)
        if not hmac.compare_digest(cipher.key_check(), check):
            raise DecryptError("Wrong password for encrypted archive")
        return cipher

    def key_check(self) -> bytes:
        return hmac.new(self.key, b"ASAR_KEY_CHECK", hashlib.sha256).digest()[:CHECK_SIZE]

    def _derive_nonce(self, offset: int) -> bytes:
        material = b"ASAR_FILE_NONCE" + struct.pack("<Q", offset)
        return hmac.new(self.key, material, hashlib.sha512).digest()[:NONCE_SIZE]

    def encryptor(self, offset: int) -> StreamTransform:
        return _ChaChaTransform(self.key, self._derive_nonce(offset), encrypt=True)

    def decryptor(self, offset: int) -> StreamTransform:
        return _ChaChaTransform(self.key, self._derive_nonce(offset), encrypt=False)

    def to_header(self) -> Dict[str, Any]:
        return {
            "cipher": self.name,
            "kdf": self.kdf,
            "salt": self.params.salt.hex(),
            "time_cost": self.params.time_cost,
            "memory_cost": self.params.memory_cost_kib,
            "parallelism": self.params.parallelism,
            "check": self.key_check().hex(),
        }


def resolve_cipher(params: Optional[Dict[str, Any]], password: Optional[str]) -> Optional[ContentCipher]:
    """Return the archive cipher, or None when it cannot be unlocked yet."""
    if params is None or password is None:
        return None
    return cipher_from_header(params, password)
