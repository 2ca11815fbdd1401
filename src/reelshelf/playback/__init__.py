"""Playback surfaces: where a selected entry is handed off to be played."""

from reelshelf.playback.base import PlaybackHandle, PlaybackSurface
from reelshelf.playback.process import ProcessSurface

__all__ = ["PlaybackHandle", "PlaybackSurface", "ProcessSurface"]
