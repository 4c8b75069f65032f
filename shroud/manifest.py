from __future__ import annotations

import base64
import binascii
import json
import os
from dataclasses import dataclass

from .constants import ALGORITHMS, DEFAULT_ALGORITHM, DEFAULT_KDF, KDFS, MANIFEST_NAME
from .encryption import FrameCodec
from .errors import FileAccessError, NotFoundError, WrongKeyOrCorruptError


@dataclass
class Manifest:
    """Record written at the root of an encrypted directory.

    ``test`` is a frame with an empty payload: decrypting it is enough to tell
    whether a key matches before any file is opened.
    """

    test: bytes
    plain_names: bool = False
    algorithm: str = DEFAULT_ALGORITHM
    kdf: str = DEFAULT_KDF

    @classmethod
    def create(cls, codec: FrameCodec, *, plain_names: bool, kdf: str = DEFAULT_KDF) -> "Manifest":
        return cls(
            test=codec.encrypt_buffer(b""),
            plain_names=bool(plain_names),
            algorithm=codec.context.algorithm,
            kdf=kdf,
        )

    def check_key(self, codec: FrameCodec) -> bool:
        return codec.validate_buffer(self.test)

    def to_json(self) -> str:
        return json.dumps(
            {
                "test": base64.b64encode(self.test).decode("ascii"),
                "plainNames": self.plain_names,
                "algorithm": self.algorithm,
                "kdf": self.kdf,
            }
        )

    @classmethod
    def from_json(cls, text: str) -> "Manifest":
        try:
            obj = json.loads(text)
            test = base64.b64decode(obj["test"], validate=True)
            plain_names = obj.get("plainNames", False)
            algorithm = obj.get("algorithm", DEFAULT_ALGORITHM)
            kdf = obj.get("kdf", DEFAULT_KDF)
        except (ValueError, KeyError, TypeError, AttributeError, binascii.Error) as exc:
            raise WrongKeyOrCorruptError(f"Malformed manifest: {exc}") from exc
        if not isinstance(plain_names, bool):
            raise WrongKeyOrCorruptError("Malformed manifest: plainNames must be a boolean")
        if algorithm not in ALGORITHMS or kdf not in KDFS:
            raise WrongKeyOrCorruptError(f"Manifest names an unsupported cipher ({algorithm}/{kdf})")
        return cls(test=test, plain_names=plain_names, algorithm=algorithm, kdf=kdf)


def manifest_path(root: str) -> str:
    return os.path.join(root, MANIFEST_NAME)


def write_manifest(root: str, manifest: Manifest) -> str:
    path = manifest_path(root)
    try:
        with open(path, "w", encoding="utf-8") as fh:
            fh.write(manifest.to_json())
    except OSError as exc:
        raise FileAccessError(f"Failed to create manifest {path}: {exc}") from exc
    return path


def read_manifest(root: str) -> Manifest:
    """Load the manifest of an encrypted directory.

    Raises:
        NotFoundError: ``root`` carries no manifest (not an encrypted directory).
        WrongKeyOrCorruptError: The manifest cannot be parsed.
        FileAccessError: The manifest exists but cannot be read.
    """
    path = manifest_path(root)
    try:
        with open(path, "r", encoding="utf-8") as fh:
            text = fh.read()
    except FileNotFoundError as exc:
        raise NotFoundError(f"No {MANIFEST_NAME} in {root}; not an encrypted directory") from exc
    except UnicodeDecodeError as exc:
        raise WrongKeyOrCorruptError(f"Malformed manifest: {exc}") from exc
    except OSError as exc:
        raise FileAccessError(f"Failed to read manifest {path}: {exc}") from exc
    return Manifest.from_json(text)
