from __future__ import annotations

import concurrent.futures as _fut
import os
import shutil
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from .constants import (
    ALGORITHMS,
    DEFAULT_ALGORITHM,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_JOBS,
    DEFAULT_KDF,
    DECRYPTED_SUFFIX,
    ENCRYPTED_SUFFIX,
    FRAME_OVERHEAD,
    KDFS,
    MANIFEST_NAME,
)
from .encryption import FrameCodec
from .errors import (
    ShroudError,
    InvalidPathError,
    NotFoundError,
    OutputExistsError,
    FileAccessError,
    WrongKeyOrCorruptError,
    UnknownError,
    OperationCancelled,
)
from .keyderive import Passphrase
from .manifest import Manifest, read_manifest, write_manifest
from .names import decode_name, encode_name
from .report import Reporter, SilentReporter, format_size
from .tree import DirNode, FileNode, build_tree, entry_count, file_count


@dataclass
class PathOptions:
    force: bool = False
    output: Optional[str] = None
    plain_names: bool = False
    algorithm: str = DEFAULT_ALGORITHM
    kdf: str = DEFAULT_KDF
    jobs: int = DEFAULT_JOBS
    chunk_size: int = DEFAULT_CHUNK_SIZE

    def validate(self) -> None:
        if self.algorithm not in ALGORITHMS:
            raise ValueError(f"Unsupported algorithm: {self.algorithm}")
        if self.kdf not in KDFS:
            raise ValueError(f"Unsupported key derivation: {self.kdf}")
        if int(self.jobs) < 1:
            raise ValueError("jobs must be at least 1")
        if int(self.chunk_size) < 1:
            raise ValueError("chunk_size must be positive")


@dataclass
class RunSummary:
    mode: str  # "file" or "dir"
    input_path: str
    output_path: str
    files: int = 0
    dirs: int = 0
    bytes_in: int = 0
    bytes_out: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def add_file(self, bytes_in: int, bytes_out: int) -> None:
        with self._lock:
            self.files += 1
            self.bytes_in += bytes_in
            self.bytes_out += bytes_out


@dataclass
class ValidationReport:
    path: str
    ok: bool = True
    checked: int = 0
    failed: List[str] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record(self, rel: str, ok: bool) -> None:
        with self._lock:
            self.checked += 1
            if not ok:
                self.ok = False
                self.failed.append(rel)


# -------- error boundary / worker pool --------

@contextmanager
def _error_boundary():
    """Translate anything escaping an operation into the typed taxonomy."""
    try:
        yield
    except ShroudError:
        raise
    except OSError as exc:
        where = f" ({exc.filename})" if getattr(exc, "filename", None) else ""
        raise FileAccessError(f"{exc.strerror or exc}{where}") from exc
    except Exception as exc:
        raise UnknownError(f"Unknown error: {exc!r}") from exc


class _WorkerPool:
    """Bounded executor for one tree walk with a shared cancellation token.

    The first failing job sets the token: queued jobs are dropped, running jobs
    stop at their next chunk, and the originating error is re-raised by
    ``check``/``join`` on the walking thread.
    """

    def __init__(self, jobs: int):
        self.cancel = threading.Event()
        self._executor = _fut.ThreadPoolExecutor(max_workers=max(1, int(jobs)))
        self._futures: List[_fut.Future] = []
        self._lock = threading.Lock()
        self._error: Optional[BaseException] = None

    def __enter__(self) -> "_WorkerPool":
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is not None:
            self.cancel.set()
        self._executor.shutdown(wait=True, cancel_futures=True)
        return False

    def _record(self, exc: BaseException) -> None:
        with self._lock:
            if self._error is None and not isinstance(exc, OperationCancelled):
                self._error = exc
        self.cancel.set()

    def _run(self, fn: Callable, args: tuple):
        if self.cancel.is_set():
            raise OperationCancelled("Operation cancelled")
        try:
            return fn(*args)
        except BaseException as exc:
            self._record(exc)
            raise

    def check(self) -> None:
        if self.cancel.is_set():
            with self._lock:
                error = self._error
            raise error if error is not None else OperationCancelled("Operation cancelled")

    def submit(self, fn: Callable, *args) -> None:
        self.check()
        self._futures.append(self._executor.submit(self._run, fn, args))

    def join(self) -> None:
        _fut.wait(self._futures, return_when=_fut.FIRST_EXCEPTION)
        if self.cancel.is_set():
            for fut in self._futures:
                fut.cancel()
            _fut.wait(self._futures)
            self.check()
        for fut in self._futures:
            fut.result()


# -------- path helpers --------

def _resolve_input(raw: str) -> str:
    try:
        path = os.path.abspath(os.fspath(raw))
    except (TypeError, ValueError) as exc:
        raise InvalidPathError(f"Invalid input path: {raw!r}") from exc
    if not raw or "\x00" in path:
        raise InvalidPathError(f"Invalid input path: {raw!r}")
    if not os.path.lexists(path):
        raise NotFoundError(f"This item doesn't exist. (path: {path})")
    return path


def _resolve_output(src: str, output: Optional[str], default: Callable[[str], str]) -> str:
    try:
        dst = os.path.abspath(os.fspath(output)) if output else default(src)
    except (TypeError, ValueError) as exc:
        raise InvalidPathError(f"Failed to resolve given output path: {output!r}") from exc
    if "\x00" in dst:
        raise InvalidPathError(f"Failed to resolve given output path: {output!r}")
    if dst == src:
        raise InvalidPathError("The output path cannot be the input path")
    common = os.path.commonpath([src, dst])
    if common == dst:
        raise InvalidPathError(f"The output path cannot contain the input (path: {dst})")
    if common == src and os.path.isdir(src):
        raise InvalidPathError(f"The output path cannot be inside the input (path: {dst})")
    return dst


def _default_encrypt_output(src: str) -> str:
    return src + ENCRYPTED_SUFFIX


def _default_decrypt_output(src: str) -> str:
    if src.endswith(ENCRYPTED_SUFFIX) and len(os.path.basename(src)) > len(ENCRYPTED_SUFFIX):
        return src[: -len(ENCRYPTED_SUFFIX)]
    return src + DECRYPTED_SUFFIX


def _prepare_output(dst: str, force: bool) -> None:
    if not os.path.lexists(dst):
        return
    if not force:
        raise OutputExistsError(f"The output already exists. (path: {dst})")
    try:
        if os.path.isdir(dst) and not os.path.islink(dst):
            shutil.rmtree(dst)
        else:
            os.remove(dst)
    except OSError as exc:
        raise FileAccessError(f"Failed to overwrite the output: {exc}") from exc


def _discard(path: str, reporter: Reporter) -> None:
    """Best-effort removal of partial output; never raises."""
    try:
        if os.path.isdir(path) and not os.path.islink(path):
            shutil.rmtree(path)
        elif os.path.lexists(path):
            os.remove(path)
    except OSError as exc:
        reporter.warn(f"failed to clean up {path}: {exc}")


def _transfer(stream_fn: Callable, src: str, dst: str, chunk_size: int, cancel: Optional[threading.Event]) -> int:
    with open(src, "rb") as rf:
        with open(dst, "xb") as wf:
            return stream_fn(rf, wf, chunk_size=chunk_size, cancel=cancel)


def _file_block(action: str, src: str, dst: str) -> str:
    return f'- {action} file\n  from "{src}"\n  to "{dst}"'


def _single_file(
    stream_fn: Callable,
    action: str,
    node: FileNode,
    dst: str,
    options: PathOptions,
    reporter: Reporter,
    summary: RunSummary,
) -> RunSummary:
    reporter.detail(_file_block(action, node.path, dst))
    reporter.info(f"The file to process is {format_size(node.size)}")
    try:
        produced = _transfer(stream_fn, node.path, dst, options.chunk_size, None)
    except BaseException:
        _discard(dst, reporter)
        raise
    summary.add_file(node.size, produced)
    return summary


def _validate_file(codec: FrameCodec, node: FileNode, chunk_size: int, cancel: Optional[threading.Event]) -> bool:
    # Shorter than IV plus marker: truncated, no need to open it.
    if node.size < FRAME_OVERHEAD:
        return False
    with open(node.path, "rb") as fh:
        return codec.validate_stream(fh, chunk_size=chunk_size, cancel=cancel)


def _codec_for_directory(src: str, passphrase: Passphrase) -> Tuple[FrameCodec, Manifest]:
    manifest = read_manifest(src)
    codec = FrameCodec.from_passphrase(passphrase, algorithm=manifest.algorithm, kdf=manifest.kdf)
    if not manifest.check_key(codec):
        raise WrongKeyOrCorruptError(f"Key test failed against the manifest of {src}")
    return codec, manifest


# -------- encrypt --------

def encrypt_path(
    input_path: str,
    passphrase: Passphrase,
    options: Optional[PathOptions] = None,
    *,
    reporter: Optional[Reporter] = None,
) -> RunSummary:
    """Encrypt a file or a directory tree.

    A file becomes a single frame. A directory is mirrored into an output
    directory holding a manifest plus one frame per file, names optionally
    encrypted. On any failure inside a directory run the whole output tree is
    removed before the error is raised.

    Args:
        input_path: File or directory to encrypt.
        passphrase: Secret used to derive the key.
        options: Output location, overwrite policy, name policy, cipher and workers.
        reporter: Progress sink; silent when omitted.

    Returns:
        Counts and byte totals of the run.

    Raises:
        InvalidPathError, NotFoundError, OutputExistsError, FileAccessError,
        UnknownError.
    """
    options = options or PathOptions()
    options.validate()
    reporter = reporter or SilentReporter()
    with _error_boundary():
        src = _resolve_input(input_path)
        dst = _resolve_output(src, options.output, _default_encrypt_output)
        codec = FrameCodec.from_passphrase(passphrase, algorithm=options.algorithm, kdf=options.kdf)
        try:
            tree = build_tree(src)
        except FileAccessError as exc:
            raise FileAccessError(f"Failed to read directory: {exc}") from exc
        if isinstance(tree, DirNode) and options.plain_names:
            if any(child.name == MANIFEST_NAME for child in tree.children):
                raise InvalidPathError(
                    f"{MANIFEST_NAME} at the top of the input clashes with the manifest; "
                    "encrypt without --plain-names or rename it"
                )
        _prepare_output(dst, options.force)
        mode = "dir" if isinstance(tree, DirNode) else "file"
        summary = RunSummary(mode=mode, input_path=src, output_path=dst)
        if isinstance(tree, FileNode):
            reporter.info("Encrypting...")
            return _single_file(codec.encrypt_stream, "encrypting", tree, dst, options, reporter, summary)
        return _encrypt_tree(codec, tree, dst, options, reporter, summary)


def _encrypt_tree(
    codec: FrameCodec,
    tree: DirNode,
    dst: str,
    options: PathOptions,
    reporter: Reporter,
    summary: RunSummary,
) -> RunSummary:
    reporter.info(f"Found {entry_count(tree)} items ({file_count(tree)} files, totalizing {format_size(tree.size)}).")
    try:
        os.mkdir(dst)
    except OSError as exc:
        raise FileAccessError(f"Failed to create base directory: {exc}") from exc
    try:
        write_manifest(dst, Manifest.create(codec, plain_names=options.plain_names, kdf=options.kdf))
        reporter.info("Encrypting...")
        with _WorkerPool(options.jobs) as pool:

            def encrypt_one(node: FileNode, target: str) -> None:
                reporter.detail(_file_block("encrypting", node.path, target))
                produced = _transfer(codec.encrypt_stream, node.path, target, options.chunk_size, pool.cancel)
                summary.add_file(node.size, produced)

            def mirror(dir_node: DirNode, parent: str) -> None:
                for child in dir_node.children:
                    pool.check()
                    target = os.path.join(parent, encode_name(codec, child.name, plain=options.plain_names))
                    if isinstance(child, DirNode):
                        os.mkdir(target)
                        summary.dirs += 1
                        mirror(child, target)
                    else:
                        pool.submit(encrypt_one, child, target)

            mirror(tree, dst)
            pool.join()
    except BaseException:
        _discard(dst, reporter)
        raise
    return summary


# -------- decrypt --------

def decrypt_path(
    input_path: str,
    passphrase: Passphrase,
    options: Optional[PathOptions] = None,
    *,
    reporter: Optional[Reporter] = None,
) -> RunSummary:
    """Decrypt a file or directory produced by ``encrypt_path``.

    For a directory the manifest key test runs first; a wrong key fails with
    ``WrongKeyOrCorruptError`` before any encrypted file is opened. The
    manifest's cipher settings take precedence over ``options``.
    """
    options = options or PathOptions()
    options.validate()
    reporter = reporter or SilentReporter()
    with _error_boundary():
        src = _resolve_input(input_path)
        dst = _resolve_output(src, options.output, _default_decrypt_output)
        if os.path.isdir(src) and not os.path.islink(src):
            codec, manifest = _codec_for_directory(src, passphrase)
            tree = build_tree(src)
            _prepare_output(dst, options.force)
            summary = RunSummary(mode="dir", input_path=src, output_path=dst)
            return _decrypt_tree(codec, manifest, tree, dst, options, reporter, summary)
        codec = FrameCodec.from_passphrase(passphrase, algorithm=options.algorithm, kdf=options.kdf)
        tree = build_tree(src)
        _prepare_output(dst, options.force)
        summary = RunSummary(mode="file", input_path=src, output_path=dst)
        reporter.info("Decrypting...")
        return _single_file(codec.decrypt_stream, "decrypting", tree, dst, options, reporter, summary)


def _decrypt_tree(
    codec: FrameCodec,
    manifest: Manifest,
    tree: DirNode,
    dst: str,
    options: PathOptions,
    reporter: Reporter,
    summary: RunSummary,
) -> RunSummary:
    # The manifest is not part of the payload tree.
    reporter.info(f"Found {entry_count(tree) - 1} items ({file_count(tree) - 1} files, totalizing {format_size(tree.size)}).")
    try:
        os.mkdir(dst)
    except OSError as exc:
        raise FileAccessError(f"Failed to create base directory: {exc}") from exc
    try:
        reporter.info("Decrypting...")
        with _WorkerPool(options.jobs) as pool:

            def decrypt_one(node: FileNode, target: str) -> None:
                reporter.detail(_file_block("decrypting", node.path, target))
                produced = _transfer(codec.decrypt_stream, node.path, target, options.chunk_size, pool.cancel)
                summary.add_file(node.size, produced)

            def mirror(dir_node: DirNode, parent: str) -> None:
                for child in dir_node.children:
                    if dir_node is tree and child.name == MANIFEST_NAME:
                        continue
                    pool.check()
                    target = os.path.join(parent, decode_name(codec, child.name, plain=manifest.plain_names))
                    if isinstance(child, DirNode):
                        os.mkdir(target)
                        summary.dirs += 1
                        mirror(child, target)
                    else:
                        pool.submit(decrypt_one, child, target)

            mirror(tree, dst)
            pool.join()
    except BaseException:
        _discard(dst, reporter)
        raise
    return summary


# -------- validate --------

def validate_path(
    input_path: str,
    passphrase: Passphrase,
    options: Optional[PathOptions] = None,
    *,
    reporter: Optional[Reporter] = None,
) -> ValidationReport:
    """Check that ``passphrase`` opens an encrypted file or directory.

    Only frame heads are decrypted; nothing is written. Corrupt files and names
    are listed in the report.

    Raises:
        WrongKeyOrCorruptError: Directory manifest rejects the key (raised
            before any encrypted file is opened).
    """
    options = options or PathOptions()
    options.validate()
    reporter = reporter or SilentReporter()
    with _error_boundary():
        src = _resolve_input(input_path)
        report = ValidationReport(path=src)
        if os.path.isdir(src) and not os.path.islink(src):
            codec, manifest = _codec_for_directory(src, passphrase)
            tree = build_tree(src)
            reporter.info("Validating...")
            return _validate_tree(codec, manifest, tree, options, reporter, report)
        codec = FrameCodec.from_passphrase(passphrase, algorithm=options.algorithm, kdf=options.kdf)
        node = build_tree(src)
        reporter.info("Validating...")
        report.record(node.name, _validate_file(codec, node, options.chunk_size, None))
        return report


def _validate_tree(
    codec: FrameCodec,
    manifest: Manifest,
    tree: DirNode,
    options: PathOptions,
    reporter: Reporter,
    report: ValidationReport,
) -> ValidationReport:
    with _WorkerPool(options.jobs) as pool:

        def validate_one(node: FileNode, rel: str) -> None:
            ok = _validate_file(codec, node, options.chunk_size, pool.cancel)
            reporter.detail(f"- {'ok' if ok else 'FAIL'}: {rel}")
            report.record(rel, ok)

        def visit(dir_node: DirNode, parent_rel: str) -> None:
            for child in dir_node.children:
                if dir_node is tree and child.name == MANIFEST_NAME:
                    continue
                pool.check()
                try:
                    clear = decode_name(codec, child.name, plain=manifest.plain_names)
                except WrongKeyOrCorruptError:
                    clear = None
                rel = os.path.join(parent_rel, clear if clear is not None else child.name)
                if isinstance(child, DirNode):
                    report.record(rel, clear is not None)
                    visit(child, rel)
                elif clear is None:
                    report.record(rel, False)
                else:
                    pool.submit(validate_one, child, rel)

        visit(tree, "")
        pool.join()
    return report
