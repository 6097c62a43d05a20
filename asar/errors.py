class AsarError(Exception):
    """Base class for archive codec errors."""


# Binary framing
class MalformedRecord(AsarError):
    pass


# Header JSON schema
class MalformedHeader(AsarError):
    pass


# Data section access
class OutOfRange(AsarError):
    pass


class NotStored(AsarError):
    """Entry content lives outside the archive (unpacked)."""


class DecryptError(AsarError):
    pass
