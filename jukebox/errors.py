"""Failure taxonomy for the jukebox core.

Only precondition failures abort a whole operation (a bad scan root, a
bad sync source).  Everything local to one track or one file is logged
and absorbed where it happens.
"""


class JukeboxError(Exception):
    """Base class for all jukebox failures."""


class ScanFailure(JukeboxError):
    """Scan root missing or unreadable.  Callers degrade to an empty catalog."""


class PlaybackFailure(JukeboxError):
    """Media could not be loaded, decoded or started."""


class SyncFailure(JukeboxError):
    """Sync source root missing or not a directory."""


class PersistenceFailure(JukeboxError):
    """A settings document could not be written."""


class StreamingFailure(JukeboxError):
    status = 500
    reason = "Error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.reason)


class Forbidden(StreamingFailure):
    status = 403
    reason = "Forbidden"


class NotFound(StreamingFailure):
    status = 404
    reason = "Not found"


class UnsupportedMediaType(StreamingFailure):
    status = 415
    reason = "Unsupported Media Type"


class RangeNotSatisfiable(StreamingFailure):
    status = 416
    reason = "Range Not Satisfiable"

    def __init__(self, size: int, message: str | None = None):
        super().__init__(message)
        self.size = size


class InternalError(StreamingFailure):
    status = 500
    reason = "Internal Server Error"
