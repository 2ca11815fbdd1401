"""Reelshelf: browse, edit and play a media library from a background daemon."""

__version__ = "0.1.0"
