from __future__ import annotations

import base64
import hashlib
from typing import Union

from argon2.low_level import Type as _ArgonType, hash_secret_raw as _argon_hash

from .constants import (
    ALGORITHMS,
    KDF_SHA256,
    KDF_ARGON2ID,
    KDF_SALT_DOMAIN,
    KDF_SALT_SIZE,
    ARGON_TIME_COST,
    ARGON_MEMORY_COST_KIB,
    ARGON_PARALLELISM,
)


Passphrase = Union[str, bytes]


def key_size(algorithm: str) -> int:
    try:
        return ALGORITHMS[algorithm]
    except KeyError:
        raise ValueError(f"Unsupported algorithm: {algorithm}") from None


def _to_bytes(passphrase: Passphrase) -> bytes:
    if isinstance(passphrase, str):
        return passphrase.encode("utf-8")
    return bytes(passphrase)


def _derive_sha256(secret: bytes, size: int) -> bytes:
    # base64 text of the digest, truncated; keeps keys interchangeable with
    # artifacts produced by earlier releases of the tool.
    digest = hashlib.sha256(secret).digest()
    return base64.b64encode(digest)[:size]


def _derive_argon2id(secret: bytes, size: int) -> bytes:
    salt = hashlib.sha256(KDF_SALT_DOMAIN + secret).digest()[:KDF_SALT_SIZE]
    return _argon_hash(
        secret,
        salt,
        time_cost=ARGON_TIME_COST,
        memory_cost=ARGON_MEMORY_COST_KIB,
        parallelism=ARGON_PARALLELISM,
        hash_len=size,
        type=_ArgonType.ID,
    )


def derive_key(passphrase: Passphrase, algorithm: str, *, kdf: str = KDF_SHA256) -> bytes:
    """Turn a passphrase into key material sized for ``algorithm``.

    Deterministic for a given (passphrase, algorithm, kdf) triple.

    Args:
        passphrase: User secret; ``str`` values are UTF-8 encoded.
        algorithm: Cipher id from ``constants.ALGORITHMS``.
        kdf: ``"sha256"`` (default, compatible) or ``"argon2id"`` (hardened).

    Raises:
        ValueError: Unknown algorithm or KDF id.
    """
    size = key_size(algorithm)
    secret = _to_bytes(passphrase)
    if kdf == KDF_SHA256:
        return _derive_sha256(secret, size)
    if kdf == KDF_ARGON2ID:
        return _derive_argon2id(secret, size)
    raise ValueError(f"Unsupported key derivation: {kdf}")
