from __future__ import annotations

import argparse
import getpass as _getpass
import sys
import time
from typing import List, Optional

from shroud.constants import ALGORITHMS, DEFAULT_ALGORITHM, DEFAULT_JOBS, DEFAULT_KDF, KDFS
from shroud.errors import ShroudError, WrongKeyOrCorruptError
from shroud.orchestrator import PathOptions, RunSummary, decrypt_path, encrypt_path, validate_path
from shroud.report import NORMAL, QUIET, VERBOSE, Reporter, format_size


def _read_key(key: Optional[str], *, confirm: bool) -> str:
    """Return the key given on the command line, or prompt for it."""
    if key is not None:
        return key
    pw = _getpass.getpass("Key: ")
    if confirm and _getpass.getpass("Confirm key: ") != pw:
        raise ValueError("Keys do not match")
    return pw


def _print_done(reporter: Reporter, verb: str, summary: RunSummary, t0: float) -> None:
    dt = max(0.000001, time.time() - t0)
    mib = summary.bytes_in / (1024.0 * 1024.0)
    if summary.mode == "dir":
        reporter.summary(
            f"Done: {verb} {summary.files} files, {summary.dirs} dirs "
            f"({format_size(summary.bytes_in)}) in {dt:.1f}s; {mib / dt:.2f} MiB/s"
        )
    else:
        reporter.summary(f"Done: {verb} {format_size(summary.bytes_in)} in {dt:.1f}s; {mib / dt:.2f} MiB/s")
    reporter.info(f"Output: {summary.output_path}")


def cmd_encrypt(
    path: str,
    key: str,
    *,
    force: bool = False,
    output: Optional[str] = None,
    plain_names: bool = False,
    algorithm: str = DEFAULT_ALGORITHM,
    kdf: str = DEFAULT_KDF,
    jobs: int = DEFAULT_JOBS,
    level: int = NORMAL,
) -> bool:
    """Encrypt a file or directory.

    Args:
        path: File or directory to encrypt.
        key: Passphrase.
        force: Overwrite the output if it already exists.
        output: Custom output path (default: ``<path>.encrypted``).
        plain_names: Keep file and directory names unencrypted.
        algorithm: Cipher id.
        kdf: Key derivation id.
        jobs: Maximum parallel file workers.
        level: Reporter verbosity.
    """
    reporter = Reporter(level)
    opts = PathOptions(force=force, output=output, plain_names=plain_names, algorithm=algorithm, kdf=kdf, jobs=jobs)
    t0 = time.time()
    summary = encrypt_path(path, key, opts, reporter=reporter)
    _print_done(reporter, "encrypted", summary, t0)
    return True


def cmd_decrypt(
    path: str,
    key: str,
    *,
    force: bool = False,
    output: Optional[str] = None,
    algorithm: str = DEFAULT_ALGORITHM,
    kdf: str = DEFAULT_KDF,
    jobs: int = DEFAULT_JOBS,
    level: int = NORMAL,
) -> bool:
    """Decrypt a file or directory produced by ``encrypt``.

    For directories the cipher settings stored in the manifest win over
    ``algorithm``/``kdf``.
    """
    reporter = Reporter(level)
    opts = PathOptions(force=force, output=output, algorithm=algorithm, kdf=kdf, jobs=jobs)
    t0 = time.time()
    summary = decrypt_path(path, key, opts, reporter=reporter)
    _print_done(reporter, "decrypted", summary, t0)
    return True


def cmd_validate(
    path: str,
    key: str,
    *,
    algorithm: str = DEFAULT_ALGORITHM,
    kdf: str = DEFAULT_KDF,
    jobs: int = DEFAULT_JOBS,
    level: int = NORMAL,
) -> bool:
    """Check a key against an encrypted file or directory.

    Prints:
        "OK" when every item opens with the key, otherwise "FAIL" and the
        offending relative paths.
    """
    reporter = Reporter(level)
    opts = PathOptions(algorithm=algorithm, kdf=kdf, jobs=jobs)
    try:
        report = validate_path(path, key, opts, reporter=reporter)
    except WrongKeyOrCorruptError as exc:
        reporter.summary("FAIL")
        print(f"  {exc}", file=sys.stderr)
        return False
    if report.ok:
        reporter.summary(f"OK ({report.checked} item(s) checked)")
        return True
    reporter.summary(f"FAIL ({len(report.failed)}/{report.checked} item(s) rejected)")
    for rel in report.failed:
        print(f"  {rel}")
    return False


def _add_common(ap: argparse.ArgumentParser) -> None:
    ap.add_argument("path", help="Path of the file/directory")
    ap.add_argument("key", nargs="?", help="Key (prompted when omitted)")
    ap.add_argument("--algorithm", choices=sorted(ALGORITHMS), default=DEFAULT_ALGORITHM, help=f"Cipher (default {DEFAULT_ALGORITHM})")
    ap.add_argument("--kdf", choices=list(KDFS), default=DEFAULT_KDF, help=f"Key derivation (default {DEFAULT_KDF})")
    ap.add_argument("--jobs", "-j", type=int, default=DEFAULT_JOBS, help=f"Parallel file workers (default {DEFAULT_JOBS})")
    ap.add_argument("--quiet", "-q", action="store_true", help="limit outputs to summaries only")
    ap.add_argument("--verbose", "-v", action="store_true", help="print every file processed")


def _add_output(ap: argparse.ArgumentParser) -> None:
    ap.add_argument("--force", "-f", action="store_true", help="overwrite the output if it already exists")
    ap.add_argument("--output", "-o", help="set a custom output path")


def main(argv: List[str] | None = None):
    ap = argparse.ArgumentParser(
        prog="shroud",
        description="Encrypt, decrypt or validate a file or a whole directory tree with a key",
        epilog="Directory outputs carry a _config.json manifest used to check the key before any file is touched.",
    )
    sub = ap.add_subparsers(dest="cmd", required=True)

    ap_enc = sub.add_parser("encrypt", aliases=["e"], help="encrypt a file/directory")
    _add_common(ap_enc)
    _add_output(ap_enc)
    ap_enc.add_argument("--plain-names", "-n", action="store_true", help="keep file and directory names plain, do not encrypt them")

    ap_dec = sub.add_parser("decrypt", aliases=["d"], help="decrypt a file/directory")
    _add_common(ap_dec)
    _add_output(ap_dec)

    ap_val = sub.add_parser("validate", aliases=["v"], help="check a key against an encrypted file/directory")
    _add_common(ap_val)

    args = ap.parse_args(argv)
    level = QUIET if args.quiet else (VERBOSE if args.verbose else NORMAL)
    cmd = {"e": "encrypt", "d": "decrypt", "v": "validate"}.get(args.cmd, args.cmd)
    try:
        key = _read_key(args.key, confirm=(cmd == "encrypt"))
        common = dict(algorithm=args.algorithm, kdf=args.kdf, jobs=args.jobs, level=level)
        if cmd == "encrypt":
            cmd_encrypt(args.path, key, force=args.force, output=args.output, plain_names=args.plain_names, **common)
        elif cmd == "decrypt":
            cmd_decrypt(args.path, key, force=args.force, output=args.output, **common)
        elif cmd == "validate":
            ok = cmd_validate(args.path, key, **common)
            sys.exit(0 if ok else 1)
        else:
            raise RuntimeError("Unknown command")
    except WrongKeyOrCorruptError as e:
        print(f"Error: {e} (the given key might be wrong)", file=sys.stderr)
        sys.exit(2)
    except ShroudError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except (ValueError, RuntimeError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        sys.exit(130)


if __name__ == "__main__":
    main()
