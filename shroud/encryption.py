from __future__ import annotations

import enum
import os
import threading
from dataclasses import dataclass
from typing import Iterator, Optional

from Cryptodome.Cipher import AES

from .constants import (
    DEFAULT_ALGORITHM,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_KDF,
    IV_SIZE,
    MARKER,
    MARKER_SIZE,
)
from .errors import WrongKeyOrCorruptError
from .keyderive import Passphrase, derive_key, key_size
from .pipeline import Source, Stage, iter_chunks, pipe, run_transform


@dataclass(frozen=True)
class CipherContext:
    """Immutable key material bound to a cipher id; safe to share across threads."""

    key: bytes
    algorithm: str = DEFAULT_ALGORITHM

    def __post_init__(self):
        if len(self.key) != key_size(self.algorithm):
            raise ValueError(
                f"{self.algorithm} requires a {key_size(self.algorithm)}-byte key, got {len(self.key)}"
            )

    @classmethod
    def create(cls, passphrase: Passphrase, *, algorithm: str = DEFAULT_ALGORITHM, kdf: str = DEFAULT_KDF) -> "CipherContext":
        return cls(derive_key(passphrase, algorithm, kdf=kdf), algorithm)

    def new_cipher(self, iv: bytes):
        """Build a fresh counter-mode cipher whose initial counter block is ``iv``.

        Raises:
            ValueError: The IV (or key) is rejected by the cipher.
        """
        if len(iv) != IV_SIZE:
            raise ValueError(f"IV must be {IV_SIZE} bytes")
        return AES.new(self.key, AES.MODE_CTR, nonce=b"", initial_value=iv)


class StreamState(enum.Enum):
    HEAD = "head"                        # encrypt: nothing emitted yet
    AWAITING_IV = "awaiting-iv"          # decrypt/validate: fewer than 16 bytes seen
    AWAITING_MARKER = "awaiting-marker"  # decrypt/validate: cipher built, marker incomplete
    STREAMING = "streaming"
    DONE = "done"
    FAILED = "failed"


class FrameEncryptor:
    """Per-stream encrypting transform.

    Emits ``IV || E(MARKER || payload)``. The IV goes out with the first emitted
    chunk and the marker is folded into the first plaintext chunk; an empty input
    still yields a complete 20-byte frame on ``finalize``.
    """

    def __init__(self, context: CipherContext, *, iv: Optional[bytes] = None):
        self.iv = iv if iv is not None else os.urandom(IV_SIZE)
        self._cipher = context.new_cipher(self.iv)
        self.state = StreamState.HEAD

    def _head(self, chunk: bytes) -> bytes:
        self.state = StreamState.STREAMING
        return self.iv + self._cipher.encrypt(MARKER + chunk)

    def update(self, chunk: bytes) -> bytes:
        if self.state is StreamState.HEAD:
            return self._head(chunk)
        if self.state is not StreamState.STREAMING:
            raise ValueError(f"Cannot update a stream in state {self.state.value}")
        return self._cipher.encrypt(chunk)

    def finalize(self) -> bytes:
        out = self._head(b"") if self.state is StreamState.HEAD else b""
        self.state = StreamState.DONE
        return out


class FrameDecryptor:
    """Per-stream decrypting transform.

    Buffers input until the whole IV is available (a single chunk may carry only
    part of it), then until the 4 marker bytes are decrypted. Payload is only
    emitted once the marker has been checked.
    """

    def __init__(self, context: CipherContext):
        self._context = context
        self._cipher = None
        self._pending = bytearray()
        self.state = StreamState.AWAITING_IV

    def _fail(self, message: str) -> WrongKeyOrCorruptError:
        self.state = StreamState.FAILED
        self._pending.clear()
        return WrongKeyOrCorruptError(message)

    def update(self, chunk: bytes) -> bytes:
        if self.state is StreamState.STREAMING:
            return self._cipher.decrypt(chunk)
        if self.state is StreamState.AWAITING_IV:
            self._pending += chunk
            if len(self._pending) < IV_SIZE:
                return b""
            iv = bytes(self._pending[:IV_SIZE])
            rest = bytes(self._pending[IV_SIZE:])
            self._pending.clear()
            try:
                self._cipher = self._context.new_cipher(iv)
            except ValueError as exc:
                raise self._fail(f"Cipher rejected the frame IV: {exc}") from exc
            self.state = StreamState.AWAITING_MARKER
            chunk = rest
        if self.state is StreamState.AWAITING_MARKER:
            self._pending += self._cipher.decrypt(chunk)
            if len(self._pending) < MARKER_SIZE:
                return b""
            if bytes(self._pending[:MARKER_SIZE]) != MARKER:
                raise self._fail("Wrong key or corrupted data")
            out = bytes(self._pending[MARKER_SIZE:])
            self._pending.clear()
            self.state = StreamState.STREAMING
            return out
        raise ValueError(f"Cannot update a stream in state {self.state.value}")

    def finalize(self) -> bytes:
        if self.state in (StreamState.AWAITING_IV, StreamState.AWAITING_MARKER):
            raise self._fail("Truncated frame: missing IV or marker")
        if self.state is StreamState.FAILED:
            raise WrongKeyOrCorruptError("Wrong key or corrupted data")
        self.state = StreamState.DONE
        return b""

    @property
    def verified(self) -> bool:
        return self.state in (StreamState.STREAMING, StreamState.DONE)


class FrameCodec:
    """Buffer and stream encryption over the IV/marker frame format.

    One codec can serve any number of concurrent streams: every stream call
    builds its own transform (own IV, own keystream position) and only reads
    the shared ``CipherContext``.
    """

    def __init__(self, context: CipherContext):
        self.context = context

    @classmethod
    def from_passphrase(cls, passphrase: Passphrase, *, algorithm: str = DEFAULT_ALGORITHM, kdf: str = DEFAULT_KDF) -> "FrameCodec":
        return cls(CipherContext.create(passphrase, algorithm=algorithm, kdf=kdf))

    # -------- buffers --------

    def encrypt_buffer(self, plain: bytes, *, iv: Optional[bytes] = None) -> bytes:
        enc = FrameEncryptor(self.context, iv=iv)
        return enc.update(bytes(plain)) + enc.finalize()

    def decrypt_buffer(self, frame: bytes) -> bytes:
        """Decrypt a whole frame.

        Raises:
            WrongKeyOrCorruptError: Marker mismatch, short frame, or rejected IV.
        """
        dec = FrameDecryptor(self.context)
        out = dec.update(bytes(frame))
        return out + dec.finalize()

    def validate_buffer(self, frame: bytes) -> bool:
        try:
            self.decrypt_buffer(frame)
        except (WrongKeyOrCorruptError, ValueError, TypeError):
            return False
        return True

    # -------- streams --------

    def encryptor(self, *, iv: Optional[bytes] = None) -> FrameEncryptor:
        return FrameEncryptor(self.context, iv=iv)

    def decryptor(self) -> FrameDecryptor:
        return FrameDecryptor(self.context)

    def encrypt_iter(
        self,
        source: Source,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        cancel: Optional[threading.Event] = None,
        iv: Optional[bytes] = None,
    ) -> Iterator[bytes]:
        return run_transform(self.encryptor(iv=iv), iter_chunks(source, chunk_size, cancel=cancel))

    def decrypt_iter(
        self,
        source: Source,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        cancel: Optional[threading.Event] = None,
    ) -> Iterator[bytes]:
        return run_transform(self.decryptor(), iter_chunks(source, chunk_size, cancel=cancel))

    def encrypt_stream(
        self,
        source: Source,
        *chain: Stage,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        cancel: Optional[threading.Event] = None,
        iv: Optional[bytes] = None,
    ) -> int:
        """Encrypt ``source`` into ``chain`` without buffering the whole input.

        Args:
            source: Binary file object or iterable of plaintext chunks.
            chain: Transforms and/or a terminating sink receiving the frame bytes in order.
            chunk_size: Read size when ``source`` is a file object.
            cancel: Optional token checked between chunks.
            iv: Fixed IV; random when omitted.

        Returns:
            Number of frame bytes produced.
        """
        return pipe(self.encrypt_iter(source, chunk_size=chunk_size, cancel=cancel, iv=iv), *chain)

    def decrypt_stream(
        self,
        source: Source,
        *chain: Stage,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        cancel: Optional[threading.Event] = None,
    ) -> int:
        """Decrypt a framed ``source`` into ``chain``.

        Returns:
            Number of plaintext bytes produced.

        Raises:
            WrongKeyOrCorruptError: Before any payload byte reaches ``chain``
                when the marker does not match or the frame is truncated.
        """
        return pipe(self.decrypt_iter(source, chunk_size=chunk_size, cancel=cancel), *chain)

    def validate_stream(
        self,
        source: Source,
        *chain: Stage,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        cancel: Optional[threading.Event] = None,
    ) -> bool:
        """Check the key against a framed stream.

        Without a chain, reading stops as soon as the marker is known. With a
        chain, the decrypted payload is delivered to it once the marker checks out.
        Never raises for a wrong key or a corrupt/truncated frame.
        """
        if chain:
            try:
                self.decrypt_stream(source, *chain, chunk_size=chunk_size, cancel=cancel)
            except WrongKeyOrCorruptError:
                return False
            return True
        dec = self.decryptor()
        try:
            for chunk in iter_chunks(source, chunk_size, cancel=cancel):
                dec.update(chunk)
                if dec.verified:
                    return True
            dec.finalize()
        except WrongKeyOrCorruptError:
            return False
        return dec.verified
