"""
Error taxonomy

Validation errors are raised by the store and the key helper; the CLI
turns every WgcmError into a one-line message and a non-zero exit.
"""


class WgcmError(Exception):
    """Base class for errors reported to the user"""


class NoRecord(WgcmError):
    """Name or id lookup found nothing"""


class ConstraintFailed(WgcmError):
    """A uniqueness or foreign key constraint rejected the change"""


class InvalidIP(WgcmError):
    """Address or prefix does not parse"""


class InvalidKey(WgcmError):
    """Key is not base64 for exactly 32 bytes"""


class InvalidValue(WgcmError):
    """Field value outside what the field accepts"""


class SchemaTooNew(WgcmError):
    """Database was written by a newer wgcm"""

    def __init__(self, found: int, known: int):
        super().__init__(
            f"database schema version {found} is newer than this wgcm supports ({known})"
        )
        self.found = found
        self.known = known
