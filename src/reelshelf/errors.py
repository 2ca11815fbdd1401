"""
Typed errors raised by the session coordinator and its collaborators.

Every error carries a short ``code`` that the RPC layer sends back to the CLI,
so callers can react to the failure kind without parsing messages.
"""


class ReelshelfError(Exception):
    """Base exception for all application-specific errors."""

    code = "error"


class StoreUnavailable(ReelshelfError):
    """Raised when the library store cannot be reached. Retry the load."""

    code = "store_unavailable"


class PersistenceFailed(ReelshelfError):
    """Raised when the store rejects a commit. The edit overlay is kept."""

    code = "persistence_failed"


class SessionConflict(ReelshelfError):
    """
    Raised when a request breaks a structural rule: editing while playing,
    playing while editing, or starting a second session of the same kind.
    """

    code = "session_conflict"


class InvalidSessionState(ReelshelfError):
    """Raised for out-of-order requests, such as saving a consumed edit session."""

    code = "invalid_session_state"


class AttachFailed(ReelshelfError):
    """Raised by a playback surface that could not attach to a content locator."""

    code = "attach_failed"


class PlaybackStartFailed(ReelshelfError):
    """Raised when playback could not start. The library stays browsable."""

    code = "playback_start_failed"


class Busy(ReelshelfError):
    """Raised when a request arrives while another one is still in flight."""

    code = "busy"


class InvalidEdit(ReelshelfError):
    """Raised when an edit operation cannot be applied to the library."""

    code = "invalid_edit"
