# Frame layout
IV_SIZE = 16
MARKER = b"\x00\x00\x00\x00"  # 4 zero bytes, encrypted ahead of every payload
MARKER_SIZE = len(MARKER)
FRAME_OVERHEAD = IV_SIZE + MARKER_SIZE


# Cipher ids -> key material length in bytes (counter mode only)
ALGORITHMS = {
    "aes-128-ctr": 16,
    "aes-192-ctr": 24,
    "aes-256-ctr": 32,
}
DEFAULT_ALGORITHM = "aes-256-ctr"


# Key derivation
KDF_SHA256 = "sha256"
KDF_ARGON2ID = "argon2id"
KDFS = (KDF_SHA256, KDF_ARGON2ID)
DEFAULT_KDF = KDF_SHA256

KDF_SALT_DOMAIN = b"shroud-kdf-salt"
KDF_SALT_SIZE = 16
ARGON_TIME_COST = 3
ARGON_MEMORY_COST_KIB = 64 * 1024  # 64 MiB
ARGON_PARALLELISM = 4


# Directory output
MANIFEST_NAME = "_config.json"
ENCRYPTED_SUFFIX = ".encrypted"
DECRYPTED_SUFFIX = ".decrypted"


DEFAULT_CHUNK_SIZE = 65_536  # 64 KiB
DEFAULT_JOBS = 4
