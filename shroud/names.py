from __future__ import annotations

import base64
import binascii
import os

from .encryption import FrameCodec
from .errors import WrongKeyOrCorruptError


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(text: str) -> bytes:
    padded = text + "=" * (-len(text) % 4)
    try:
        return base64.b64decode(padded.encode("ascii"), altchars=b"-_", validate=True)
    except (binascii.Error, UnicodeEncodeError, ValueError) as exc:
        raise WrongKeyOrCorruptError(f"Not an encrypted name: {text!r}") from exc


def _has_separator(name: str) -> bool:
    return "/" in name or "\x00" in name or os.sep in name or bool(os.altsep and os.altsep in name)


def encode_name(codec: FrameCodec, name: str, *, plain: bool) -> str:
    if plain:
        return name
    return b64url_encode(codec.encrypt_buffer(name.encode("utf-8")))


def decode_name(codec: FrameCodec, name: str, *, plain: bool) -> str:
    """Recover an original entry name.

    Raises:
        WrongKeyOrCorruptError: The name does not decrypt, or decrypts to
            something that is not a single path component.
    """
    if plain:
        clear = name
    else:
        raw = codec.decrypt_buffer(b64url_decode(name))
        try:
            clear = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise WrongKeyOrCorruptError(f"Encrypted name is not valid UTF-8: {name!r}") from exc
    if clear in ("", ".", "..") or _has_separator(clear):
        raise WrongKeyOrCorruptError(f"Unsafe entry name: {clear!r}")
    return clear
