from __future__ import annotations

import base64
import importlib
import io
import json
import os
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import shroud
from shroud import orchestrator
from shroud.constants import MANIFEST_NAME
from shroud.encryption import FrameCodec
from shroud.errors import (
    FileAccessError,
    InvalidPathError,
    NotFoundError,
    OutputExistsError,
    WrongKeyOrCorruptError,
)
from shroud.names import decode_name
from shroud.orchestrator import PathOptions, decrypt_path, encrypt_path, validate_path
from shroud.report import NORMAL, QUIET, Reporter, SilentReporter, format_size

KEY = "p@ssw0rd"


def _build_fixture_tree(root: Path) -> dict:
    """Two files plus one nested directory holding one file."""
    files = {
        "alpha.txt": b"hello world\n" * 20,
        "beta.bin": os.urandom(70_000),
        "sub/gamma.txt": b"nested",
    }
    (root / "sub").mkdir()
    for rel, data in files.items():
        (root / rel).write_bytes(data)
    return files


def _read_tree(root: Path) -> dict:
    out = {}
    for dirpath, _dirs, filenames in os.walk(root):
        for fn in filenames:
            full = Path(dirpath) / fn
            out[full.relative_to(root).as_posix()] = full.read_bytes()
    return out


class OrchestratorTests(unittest.TestCase):
    def run_with_tmpdir(self, func):
        with tempfile.TemporaryDirectory() as tmp:
            func(Path(tmp))

    def test_directory_roundtrip_encrypted_names(self):
        def scenario(tmp: Path):
            src = tmp / "data"
            src.mkdir()
            files = _build_fixture_tree(src)
            summary = encrypt_path(str(src), KEY, PathOptions(chunk_size=4096, jobs=3))
            enc = tmp / "data.encrypted"
            self.assertEqual(summary.output_path, str(enc))
            self.assertEqual(summary.files, 3)
            self.assertEqual(summary.dirs, 1)

            top = sorted(os.listdir(enc))
            self.assertEqual(top.count(MANIFEST_NAME), 1)
            leaves = [p for p in enc.rglob("*") if p.is_file() and p.name != MANIFEST_NAME]
            self.assertEqual(len(leaves), 3)
            depths = sorted(len(p.relative_to(enc).parts) for p in leaves)
            self.assertEqual(depths, [1, 1, 2])
            self.assertFalse(list(enc.rglob(MANIFEST_NAME))[1:], "manifest must only be at the root")

            codec = FrameCodec.from_passphrase(KEY)
            clear = sorted(decode_name(codec, n, plain=False) for n in top if n != MANIFEST_NAME)
            self.assertEqual(clear, ["alpha.txt", "beta.bin", "sub"])

            manifest = json.loads((enc / MANIFEST_NAME).read_text())
            self.assertIs(manifest["plainNames"], False)
            self.assertTrue(codec.validate_buffer(base64.b64decode(manifest["test"])))

            out = tmp / "restored"
            decrypt_path(str(enc), KEY, PathOptions(output=str(out)))
            self.assertEqual(_read_tree(out), files)

        self.run_with_tmpdir(scenario)

    def test_directory_roundtrip_plain_names(self):
        def scenario(tmp: Path):
            src = tmp / "data"
            src.mkdir()
            files = _build_fixture_tree(src)
            encrypt_path(str(src), KEY, PathOptions(plain_names=True))
            enc = tmp / "data.encrypted"
            self.assertTrue((enc / "alpha.txt").is_file())
            self.assertTrue((enc / "sub" / "gamma.txt").is_file())
            self.assertNotEqual((enc / "alpha.txt").read_bytes(), files["alpha.txt"])

            shutil.rmtree(src)
            decrypt_path(str(enc), KEY)
            self.assertEqual(_read_tree(src), files)  # default output strips the suffix

        self.run_with_tmpdir(scenario)

    def test_wrong_key_fails_before_touching_files(self):
        def scenario(tmp: Path):
            src = tmp / "data"
            src.mkdir()
            _build_fixture_tree(src)
            encrypt_path(str(src), KEY)
            enc = tmp / "data.encrypted"
            out = tmp / "out"
            with mock.patch.object(orchestrator, "_transfer") as transfer, \
                    mock.patch.object(orchestrator, "build_tree") as walk:
                with self.assertRaises(WrongKeyOrCorruptError):
                    decrypt_path(str(enc), "wrong", PathOptions(output=str(out)))
                with self.assertRaises(WrongKeyOrCorruptError):
                    validate_path(str(enc), "wrong")
                transfer.assert_not_called()
                walk.assert_not_called()
            self.assertFalse(out.exists())

        self.run_with_tmpdir(scenario)

    def test_empty_file_frame(self):
        def scenario(tmp: Path):
            src = tmp / "empty.txt"
            src.write_bytes(b"")
            encrypt_path(str(src), KEY)
            enc = tmp / "empty.txt.encrypted"
            self.assertEqual(enc.stat().st_size, 20)
            out = tmp / "back.txt"
            decrypt_path(str(enc), KEY, PathOptions(output=str(out)))
            self.assertEqual(out.read_bytes(), b"")

        self.run_with_tmpdir(scenario)

    def test_single_file_wrong_key_leaves_no_output(self):
        def scenario(tmp: Path):
            src = tmp / "f.bin"
            src.write_bytes(os.urandom(1000))
            encrypt_path(str(src), KEY)
            with self.assertRaises(WrongKeyOrCorruptError):
                decrypt_path(str(tmp / "f.bin.encrypted"), "wrong", PathOptions(output=str(tmp / "g.bin")))
            self.assertFalse((tmp / "g.bin").exists())

        self.run_with_tmpdir(scenario)

    def test_output_exists_and_force(self):
        def scenario(tmp: Path):
            src = tmp / "data"
            src.mkdir()
            files = _build_fixture_tree(src)
            enc = tmp / "data.encrypted"
            enc.mkdir()
            (enc / "stale").write_text("old")
            with self.assertRaises(OutputExistsError):
                encrypt_path(str(src), KEY)
            encrypt_path(str(src), KEY, PathOptions(force=True, plain_names=True))
            self.assertFalse((enc / "stale").exists())
            out = tmp / "restored"
            decrypt_path(str(enc), KEY, PathOptions(output=str(out)))
            self.assertEqual(_read_tree(out), files)

        self.run_with_tmpdir(scenario)

    def test_failure_removes_partial_directory(self):
        def scenario(tmp: Path):
            src = tmp / "data"
            src.mkdir()
            _build_fixture_tree(src)
            real_transfer = orchestrator._transfer

            def flaky(stream_fn, s, d, chunk_size, cancel):
                if s.endswith("gamma.txt"):
                    raise PermissionError(13, "Permission denied", s)
                return real_transfer(stream_fn, s, d, chunk_size, cancel)

            with mock.patch.object(orchestrator, "_transfer", side_effect=flaky):
                with self.assertRaises(FileAccessError) as ctx:
                    encrypt_path(str(src), KEY, PathOptions(jobs=2))
            self.assertIn("Permission denied", str(ctx.exception))
            self.assertFalse((tmp / "data.encrypted").exists())

        self.run_with_tmpdir(scenario)

    def test_validate_reports_corrupt_file(self):
        def scenario(tmp: Path):
            src = tmp / "data"
            src.mkdir()
            _build_fixture_tree(src)
            encrypt_path(str(src), KEY, PathOptions(plain_names=True))
            enc = tmp / "data.encrypted"
            report = validate_path(str(enc), KEY)
            self.assertTrue(report.ok)
            self.assertEqual(report.checked, 4)  # 3 files + 1 directory

            target = enc / "sub" / "gamma.txt"
            raw = bytearray(target.read_bytes())
            raw[16] ^= 0xFF  # first marker byte
            target.write_bytes(bytes(raw))
            report = validate_path(str(enc), KEY)
            self.assertFalse(report.ok)
            self.assertEqual(report.failed, [os.path.join("sub", "gamma.txt")])

            with self.assertRaises(WrongKeyOrCorruptError):
                decrypt_path(str(enc), KEY, PathOptions(output=str(tmp / "out")))
            self.assertFalse((tmp / "out").exists())

        self.run_with_tmpdir(scenario)

    def test_validate_single_file(self):
        def scenario(tmp: Path):
            src = tmp / "f.txt"
            src.write_text("content")
            encrypt_path(str(src), KEY, PathOptions(algorithm="aes-128-ctr"))
            enc = str(tmp / "f.txt.encrypted")
            self.assertTrue(validate_path(enc, KEY, PathOptions(algorithm="aes-128-ctr")).ok)
            self.assertFalse(validate_path(enc, KEY).ok)
            self.assertFalse(validate_path(enc, "other", PathOptions(algorithm="aes-128-ctr")).ok)

        self.run_with_tmpdir(scenario)

    def test_manifest_overrides_cipher_options(self):
        def scenario(tmp: Path):
            src = tmp / "data"
            src.mkdir()
            files = _build_fixture_tree(src)
            encrypt_path(str(src), KEY, PathOptions(algorithm="aes-192-ctr"))
            out = tmp / "restored"
            decrypt_path(str(tmp / "data.encrypted"), KEY, PathOptions(output=str(out)))
            self.assertEqual(_read_tree(out), files)

        self.run_with_tmpdir(scenario)

    def test_path_errors(self):
        def scenario(tmp: Path):
            with self.assertRaises(NotFoundError):
                encrypt_path(str(tmp / "missing"), KEY)
            with self.assertRaises(InvalidPathError):
                encrypt_path("", KEY)
            src = tmp / "data"
            src.mkdir()
            (src / MANIFEST_NAME).write_text("{}")
            with self.assertRaises(InvalidPathError):
                encrypt_path(str(src), KEY, PathOptions(plain_names=True))
            with self.assertRaises(InvalidPathError):
                encrypt_path(str(src), KEY, PathOptions(output=str(tmp)))
            with self.assertRaises(NotFoundError):
                decrypt_path(str(src / "nested-missing"), KEY)
            plain_dir = tmp / "plain"
            plain_dir.mkdir()
            with self.assertRaises(NotFoundError):
                decrypt_path(str(plain_dir), KEY)

        self.run_with_tmpdir(scenario)

    def test_output_inside_input_is_rejected_before_removal(self):
        def scenario(tmp: Path):
            src = tmp / "data"
            src.mkdir()
            files = _build_fixture_tree(src)
            with self.assertRaises(InvalidPathError):
                encrypt_path(str(src), KEY, PathOptions(output=str(src / "sub"), force=True))
            self.assertEqual(_read_tree(src), files)

            encrypt_path(str(src), KEY, PathOptions(plain_names=True))
            enc = tmp / "data.encrypted"
            kept = (enc / "sub" / "gamma.txt").read_bytes()
            with self.assertRaises(InvalidPathError):
                decrypt_path(str(enc), KEY, PathOptions(output=str(enc / "sub"), force=True))
            self.assertEqual((enc / "sub" / "gamma.txt").read_bytes(), kept)
            self.assertTrue(validate_path(str(enc), KEY).ok)

        self.run_with_tmpdir(scenario)

    def test_silent_reporter_never_prints(self):
        def scenario(tmp: Path):
            target = tmp / "partial"
            target.mkdir()
            err = io.StringIO()
            with mock.patch.object(orchestrator.shutil, "rmtree", side_effect=PermissionError(13, "denied")), \
                    mock.patch("sys.stderr", err), mock.patch("sys.stdout", io.StringIO()) as out:
                orchestrator._discard(str(target), SilentReporter())
            self.assertEqual(err.getvalue(), "")
            self.assertEqual(out.getvalue(), "")

            loud = io.StringIO()
            with mock.patch.object(orchestrator.shutil, "rmtree", side_effect=PermissionError(13, "denied")):
                orchestrator._discard(str(target), Reporter(QUIET, err=loud))
            self.assertIn("failed to clean up", loud.getvalue())

        self.run_with_tmpdir(scenario)

    def test_progress_lines_use_readable_sizes(self):
        self.assertEqual(format_size(0), "0 B")
        self.assertEqual(format_size(1536), "1.50 KiB")
        self.assertEqual(format_size(3 * 1024 * 1024), "3.00 MiB")

        def scenario(tmp: Path):
            src = tmp / "data"
            src.mkdir()
            (src / "one.bin").write_bytes(b"x" * 2048)
            out = io.StringIO()
            encrypt_path(str(src), KEY, reporter=Reporter(NORMAL, out=out))
            self.assertIn("Found 1 items (1 files, totalizing 2.00 KiB).", out.getvalue())

        self.run_with_tmpdir(scenario)

    def test_package_exports_import(self):
        for name in shroud.__all__:
            self.assertTrue(hasattr(importlib.import_module(f"shroud.{name}"), "__name__"))

    def test_validate_rejects_short_file_without_reading(self):
        def scenario(tmp: Path):
            short = tmp / "short.bin"
            short.write_bytes(b"\x00" * 19)
            with mock.patch.object(FrameCodec, "validate_stream") as check:
                report = validate_path(str(short), KEY)
            self.assertFalse(report.ok)
            self.assertEqual(report.failed, ["short.bin"])
            check.assert_not_called()

        self.run_with_tmpdir(scenario)


if __name__ == "__main__":
    unittest.main()
