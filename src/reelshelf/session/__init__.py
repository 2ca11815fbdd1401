"""Session layer: edit-mode state machine, playback controller and the coordinator."""

from reelshelf.session.coordinator import SessionCoordinator
from reelshelf.session.editing import EditSession
from reelshelf.session.playback import PlaybackController
from reelshelf.session.state import Browsing, Editing, Playing, SessionMode, SessionState

__all__ = [
    "Browsing",
    "EditSession",
    "Editing",
    "PlaybackController",
    "Playing",
    "SessionCoordinator",
    "SessionMode",
    "SessionState",
]
