"""Byte-stream plumbing shared by the frame codec and the orchestrator.

A *source* is either a readable binary file object or any iterable of
``bytes`` chunks. A *stage* is one of:

- a transform object exposing ``update(chunk) -> bytes`` and
  ``finalize() -> bytes`` (the shape of the frame transforms and of most
  PyCryptodomex cipher objects wrapped accordingly);
- a plain callable taking an iterator of chunks and returning an iterable of
  chunks (generators work well here);
- a sink exposing ``write(chunk)``. A sink consumes the stream, so it may only
  appear as the last stage.

``pipe`` composes a source with an ordered sequence of stages and drains it.
"""

from __future__ import annotations

import threading
from typing import Any, BinaryIO, Iterable, Iterator, Optional, Union

from .constants import DEFAULT_CHUNK_SIZE
from .errors import OperationCancelled


Source = Union[BinaryIO, Iterable[bytes]]
Stage = Any


def iter_chunks(
    source: Source,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    *,
    cancel: Optional[threading.Event] = None,
) -> Iterator[bytes]:
    """Yield non-empty chunks from ``source``.

    Args:
        source: Binary file object (read in ``chunk_size`` pieces) or iterable of chunks.
        chunk_size: Read size for file objects.
        cancel: Optional token; once set, iteration stops with ``OperationCancelled``.
    """
    if hasattr(source, "read"):
        while True:
            if cancel is not None and cancel.is_set():
                raise OperationCancelled("Operation cancelled")
            chunk = source.read(chunk_size)
            if not chunk:
                break
            yield bytes(chunk)
        return
    for chunk in source:
        if cancel is not None and cancel.is_set():
            raise OperationCancelled("Operation cancelled")
        if chunk:
            yield bytes(chunk)


def is_sink(stage: Stage) -> bool:
    return hasattr(stage, "write") and not hasattr(stage, "update")


def run_transform(transform: Any, chunks: Iterable[bytes]) -> Iterator[bytes]:
    """Drive an update/finalize transform over ``chunks``."""
    for chunk in chunks:
        out = transform.update(chunk)
        if out:
            yield out
    tail = transform.finalize()
    if tail:
        yield tail


def _apply(stage: Stage, chunks: Iterator[bytes]) -> Iterator[bytes]:
    if hasattr(stage, "update") and hasattr(stage, "finalize"):
        return run_transform(stage, chunks)
    if callable(stage):
        return iter(stage(chunks))
    raise TypeError(f"Unsupported pipeline stage: {stage!r}")


def compose(source: Source, *stages: Stage, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[bytes]:
    """Lazily chain ``stages`` (no sinks) behind ``source``."""
    stream: Iterator[bytes] = iter_chunks(source, chunk_size)
    for stage in stages:
        if is_sink(stage):
            raise TypeError("A sink can only be the last stage of a pipeline")
        stream = _apply(stage, stream)
    return stream


def pipe(source: Source, *stages: Stage, chunk_size: int = DEFAULT_CHUNK_SIZE) -> int:
    """Compose ``source`` with ``stages`` and drain the result.

    Returns:
        Number of bytes that left the last transform stage (i.e. handed to the
        sink, when one terminates the chain).
    """
    sink: Optional[Any] = None
    if stages and is_sink(stages[-1]):
        sink = stages[-1]
        stages = stages[:-1]
    total = 0
    for chunk in compose(source, *stages, chunk_size=chunk_size):
        total += len(chunk)
        if sink is not None:
            sink.write(chunk)
    return total

