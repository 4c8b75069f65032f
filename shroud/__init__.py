"""
Shroud: passphrase encryption for single files and whole directory trees.

Features:

- Self-describing frames: ``IV(16) || AES-CTR(MARKER(4 zero bytes) || payload)``.
  The marker gives a cheap wrong-key check; it is not an authentication tag.
- Streaming encrypt/decrypt/validate over arbitrarily chunked input, composable
  with any chain of transforms and a terminating sink (see shroud.pipeline).
- Directory mode mirrors the tree, optionally encrypting every file and
  directory name, with a ``_config.json`` manifest whose key test runs before
  any file is touched.
- Bounded worker pool with a tree-wide cancellation token; a failure removes
  the partial output.
"""

__version__ = "0.1"

__all__ = [
    "cli",
    "constants",
    "encryption",
    "errors",
    "keyderive",
    "manifest",
    "names",
    "orchestrator",
    "pipeline",
    "report",
    "tree",
]

# Programmatic API: shroud.orchestrator (encrypt_path/decrypt_path/validate_path)
# and shroud.encryption.FrameCodec for buffers and streams.
