class ShroudError(Exception):
    """Base class for shroud-specific errors."""


# Input/output paths
class InvalidPathError(ShroudError):
    pass


class NotFoundError(ShroudError):
    pass


class OutputExistsError(ShroudError):
    pass


class FileAccessError(ShroudError):
    """Read/write/permission failure, or an entry that is neither file nor directory."""


# Cryptographic
class WrongKeyOrCorruptError(ShroudError):
    """Marker mismatch, truncated frame, or a cipher that rejects the key/IV."""


class UnknownError(ShroudError):
    pass


class OperationCancelled(ShroudError):
    """Raised inside sibling work once a tree walk has been cancelled."""
